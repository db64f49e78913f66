"""Command line entry point"""

import argparse
import logging
import random
import sys
from typing import List, Optional

from .constants import CPU_FREQUENCY, MachineConfig
from .errors import MachineError
from .machine import Machine
from .runner import Runner

logger = logging.getLogger(__name__)

QUIRKS = ('vf_reset', 'shift_vy', 'memory_increment', 'jump_vx', 'clipping')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="catchip8", description="Cat's Chip-8 Emulator")
    parser.add_argument('rom', nargs='?',
        help="A CHIP-8 program image to load")
    parser.add_argument('--headless',
        help="Run N frames without a window and print the final display",
        metavar="FRAMES",
        type=int)
    parser.add_argument('--hz',
        help="Instructions per second (default %(default)s)",
        type=int,
        default=CPU_FREQUENCY)
    parser.add_argument('--speed',
        help="Speed multiplier (1, 2, 4 or 8)",
        type=int,
        choices=(1, 2, 4, 8),
        default=1)
    parser.add_argument('--seed',
        help="Seed for the random number instruction",
        type=int)
    parser.add_argument('--no-controller',
        help="Do not poll for gamepads",
        action="store_true")
    parser.add_argument('--debug',
        help="Enable verbose debug logging",
        action="store_true")
    for quirk in QUIRKS:
        parser.add_argument('--quirk-' + quirk.replace('_', '-'),
            dest='quirk_' + quirk,
            help=f"Enable the {quirk.replace('_', ' ')} compatibility quirk",
            action="store_true")
    return parser


def build_runner(args: argparse.Namespace) -> Runner:
    config = MachineConfig(cpu_frequency=args.hz)
    for quirk in QUIRKS:
        name = 'quirk_' + quirk
        setattr(config, name, getattr(args, name))
    rng = random.Random(args.seed) if args.seed is not None else None
    runner = Runner(Machine(config, rng=rng))
    while runner.speed_multiplier < args.speed:
        runner.increase_speed()
    return runner


def run_headless(runner: Runner, frames: int) -> int:
    ran = runner.run(frames)
    for line in runner.render_text():
        print(line)
    if runner.error is not None:
        print(f"Halted after {ran} frames: {runner.error}", file=sys.stderr)
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO,
                        format="[%(levelname)s] %(name)s: %(message)s")

    runner = build_runner(args)
    if args.rom:
        try:
            runner.load_rom_file(args.rom)
        except (OSError, MachineError) as e:
            logger.error("Failed to load ROM %s: %s", args.rom, e)
            return 2

    if args.headless is not None:
        if not args.rom:
            logger.error("--headless needs a ROM")
            return 2
        return run_headless(runner, args.headless)

    from .gui import App
    App(runner, use_controller=not args.no_controller).run()
    return 0
