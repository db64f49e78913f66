"""
Frame driver that keeps the instruction and timer cadences for a host.

A host calls :meth:`Runner.run_frame` once per display frame; the runner
executes the frame's share of instructions and timer ticks, then the host
renders ``runner.machine.framebuffer``.
"""

import logging
import os
import pickle
from typing import List, Optional

from .constants import MachineConfig
from .errors import MachineError
from .machine import Machine, MachineState

logger = logging.getLogger(__name__)

MAX_SPEED = 8


class Runner:
    """Headless emulation loop: pacing, pause, speed, reset and save states"""

    def __init__(self, machine: Machine = None, config: MachineConfig = None):
        self.machine = machine or Machine(config)
        self.config = self.machine.config

        # State
        self.paused = False
        self.halted = False
        self.error: Optional[MachineError] = None
        self.speed_multiplier = 1
        self.frames = 0
        self._timer_accumulator = 0.0

        # ROM info
        self.rom: Optional[bytes] = None
        self.rom_name = ""

    @property
    def rom_loaded(self) -> bool:
        return self.rom is not None

    @property
    def cycles_per_frame(self) -> int:
        cfg = self.config
        return max(1, (cfg.cpu_frequency * self.speed_multiplier) // cfg.target_fps)

    def load_rom(self, data: bytes, name: str = ""):
        """Reset the machine and load a program image"""
        self.machine.reset()
        self.machine.load_program(data)
        self.rom = bytes(data)
        self.rom_name = name or "Unknown"
        self.halted = False
        self.error = None
        self._timer_accumulator = 0.0
        logger.info("Loaded ROM %s (%d bytes)", self.rom_name, len(data))

    def load_rom_file(self, filepath: str):
        """Load ROM from file"""
        with open(filepath, 'rb') as f:
            data = f.read()
        self.load_rom(data, os.path.basename(filepath))

    def run_frame(self, raise_errors: bool = False) -> bool:
        """
        Run one frame worth of instructions followed by the frame's timer
        ticks. Returns False when nothing ran (no ROM, paused or halted).

        A MachineError halts the runner and is kept on ``self.error``; it is
        re-raised only if ``raise_errors`` is set.
        """
        if not self.rom_loaded or self.paused or self.halted:
            return False

        try:
            for _ in range(self.cycles_per_frame):
                self.machine.step()
        except MachineError as e:
            self.halted = True
            self.error = e
            logger.error("CPU Error: %s", e)
            if raise_errors:
                raise
            return False

        self._timer_accumulator += self.config.timer_frequency / self.config.target_fps
        while self._timer_accumulator >= 1.0:
            self.machine.update_timers()
            self._timer_accumulator -= 1.0

        self.frames += 1
        return True

    def run(self, frames: int, raise_errors: bool = False) -> int:
        """Run up to ``frames`` frames, stopping early on a halt"""
        ran = 0
        for _ in range(frames):
            if not self.run_frame(raise_errors=raise_errors):
                break
            ran += 1
        return ran

    def reset(self):
        """Reset machine, reloading the current ROM if there is one"""
        if self.rom is not None:
            self.load_rom(self.rom, self.rom_name)
        else:
            self.machine.reset()
            self.halted = False
            self.error = None

    def toggle_pause(self):
        self.paused = not self.paused

    def increase_speed(self):
        """Increase emulation speed"""
        if self.speed_multiplier < MAX_SPEED:
            self.speed_multiplier *= 2

    def decrease_speed(self):
        """Decrease emulation speed"""
        if self.speed_multiplier > 1:
            self.speed_multiplier //= 2

    def save_state(self, save_path: str):
        """Pickle the current machine state to ``save_path``"""
        state = self.machine.snapshot()
        with open(save_path, 'wb') as f:
            pickle.dump(state, f)
        logger.info("Saved state to %s", save_path)

    def load_state(self, save_path: str):
        """Restore the machine state pickled at ``save_path``"""
        with open(save_path, 'rb') as f:
            state = pickle.load(f)
        if not isinstance(state, MachineState):
            raise ValueError(f"{save_path} does not hold a saved machine state")
        self.machine.restore(state)
        self.halted = False
        self.error = None
        logger.info("Loaded state from %s", save_path)

    def default_save_path(self) -> str:
        return f"{self.rom_name}.sav"

    def render_text(self, on: str = "#", off: str = ".") -> List[str]:
        """Framebuffer as one string per row"""
        return ["".join(on if pixel else off for pixel in row)
                for row in self.machine.framebuffer]
