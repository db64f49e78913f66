"""
CHIP-8 machine: memory, registers, stack, display, keys and timers, plus
the fetch/decode/execute cycle that mutates them.

The caller drives two independent cadences::

    machine.step()           # one instruction, several hundred times a second
    machine.update_timers()  # delay/sound countdown, 60 times a second

and reads ``machine.framebuffer`` to render a frame. Host key events are
pushed in with ``machine.set_key(key, held)``.
"""

import logging
import random
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .constants import FONTSET, FONT_GLYPH_SIZE, MachineConfig
from .errors import (
    OutOfBoundsError,
    ProgramTooLargeError,
    StackOverflowError,
    StackUnderflowError,
)
from .instructions import Instruction, Op, decode, disassemble

logger = logging.getLogger(__name__)

Framebuffer = Tuple[Tuple[bool, ...], ...]


@dataclass
class MachineState:
    """Complete serializable machine state for save/load"""
    memory: bytes
    v: List[int]
    i: int
    pc: int
    stack: List[int]
    sp: int
    delay_timer: int
    sound_timer: int
    display: List[List[bool]]
    keys: List[bool]


class Machine:
    """
    CHIP-8 interpreter core.

    Register VF doubles as the flag output of ADD, SUB, SUBN, SHR, SHL and
    DRW; it is written after the result, so VF as destination holds the flag.

    Any out-of-range memory access, stack misuse or undecodable word raises
    a :class:`~catchip8.errors.MachineError` subclass from the step in which
    it happens. Nothing is masked or wrapped except the 8-bit register and
    16-bit index arithmetic the instruction set defines.
    """

    # Handler method for each instruction kind
    DISPATCH = {
        Op.NOP: '_op_nop',
        Op.CLS: '_op_cls',
        Op.RET: '_op_ret',
        Op.JP: '_op_jp',
        Op.CALL: '_op_call',
        Op.SE_VX_NN: '_op_se_vx_nn',
        Op.SNE_VX_NN: '_op_sne_vx_nn',
        Op.SE_VX_VY: '_op_se_vx_vy',
        Op.LD_VX_NN: '_op_ld_vx_nn',
        Op.ADD_VX_NN: '_op_add_vx_nn',
        Op.LD_VX_VY: '_op_ld_vx_vy',
        Op.OR: '_op_or',
        Op.AND: '_op_and',
        Op.XOR: '_op_xor',
        Op.ADD_VX_VY: '_op_add_vx_vy',
        Op.SUB: '_op_sub',
        Op.SHR: '_op_shr',
        Op.SUBN: '_op_subn',
        Op.SHL: '_op_shl',
        Op.SNE_VX_VY: '_op_sne_vx_vy',
        Op.LD_I: '_op_ld_i',
        Op.JP_V0: '_op_jp_v0',
        Op.RND: '_op_rnd',
        Op.DRW: '_op_drw',
        Op.SKP: '_op_skp',
        Op.SKNP: '_op_sknp',
        Op.LD_VX_DT: '_op_ld_vx_dt',
        Op.LD_VX_K: '_op_ld_vx_k',
        Op.LD_DT_VX: '_op_ld_dt_vx',
        Op.LD_ST_VX: '_op_ld_st_vx',
        Op.ADD_I_VX: '_op_add_i_vx',
        Op.LD_F_VX: '_op_ld_f_vx',
        Op.LD_B_VX: '_op_ld_b_vx',
        Op.LD_MEM_VX: '_op_ld_mem_vx',
        Op.LD_VX_MEM: '_op_ld_vx_mem',
    }

    def __init__(self, config: MachineConfig = None, rng: Optional[random.Random] = None):
        self.config = config or MachineConfig()
        self.rng = rng or random.Random()
        self._handlers = {op: getattr(self, name) for op, name in self.DISPATCH.items()}
        self.reset()

    def reset(self):
        """Reset machine to initial power-on state"""
        cfg = self.config

        # Main memory (4KB) with the font in the reserved region
        self.memory = bytearray(cfg.memory_size)
        self.memory[cfg.font_start:cfg.font_start + len(FONTSET)] = FONTSET

        # 16 general-purpose 8-bit registers V0-VF
        self.v = [0] * cfg.num_registers

        # 16-bit index register
        self.i = 0

        # Program counter (starts at 0x200)
        self.pc = cfg.program_start

        # Stack (16 levels of 16-bit addresses)
        self.stack = [0] * cfg.stack_size
        self.sp = 0

        # Timers (decrement at 60Hz when non-zero)
        self.delay_timer = 0
        self.sound_timer = 0

        # Display buffer, row-major
        self.display = [[False] * cfg.display_width for _ in range(cfg.display_height)]

        # Input state (16 keys)
        self.keys = [False] * cfg.num_keys

        # Screen needs redraw
        self.draw_flag = True

        logger.debug("Machine reset, PC=%03X", self.pc)

    def load_program(self, data: bytes):
        """Copy a program image into memory at the program start address"""
        start = self.config.program_start
        max_size = self.config.max_program_size
        if len(data) > max_size:
            raise ProgramTooLargeError(len(data), max_size)
        self.memory[start:start + len(data)] = data
        logger.debug("Loaded %d bytes at %03X", len(data), start)

    # ==================== FETCH / DECODE / EXECUTE ====================

    def fetch(self) -> int:
        """Read the big-endian word at PC and advance PC past it"""
        word = (self._read(self.pc) << 8) | self._read(self.pc + 1)
        self.pc = (self.pc + 2) & 0xFFFF
        return word

    def step(self):
        """Execute exactly one instruction"""
        address = self.pc
        word = self.fetch()
        instr = decode(word, address)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("%03X: %04X  %s", address, word, disassemble(word))
        self._handlers[instr.op](instr)

    def update_timers(self):
        """Update delay and sound timers (call at 60Hz)"""
        if self.delay_timer > 0:
            self.delay_timer -= 1
        if self.sound_timer > 0:
            self.sound_timer -= 1

    # ==================== ACCESSORS ====================

    @property
    def framebuffer(self) -> Framebuffer:
        """Read-only copy of the display, one tuple of pixels per row"""
        return tuple(tuple(row) for row in self.display)

    @property
    def sound_active(self) -> bool:
        return self.sound_timer > 0

    def set_key(self, key: int, held: bool):
        """Record a host key press or release for keypad index ``key``"""
        if not 0 <= key < self.config.num_keys:
            raise OutOfBoundsError(f"Key index out of range: {key}")
        self.keys[key] = bool(held)

    def snapshot(self) -> MachineState:
        """Get complete machine state for saving"""
        return MachineState(
            memory=bytes(self.memory),
            v=list(self.v),
            i=self.i,
            pc=self.pc,
            stack=list(self.stack),
            sp=self.sp,
            delay_timer=self.delay_timer,
            sound_timer=self.sound_timer,
            display=[row[:] for row in self.display],
            keys=list(self.keys),
        )

    def restore(self, state: MachineState):
        """Restore machine state from save"""
        cfg = self.config
        if (len(state.memory) != cfg.memory_size
                or len(state.stack) != cfg.stack_size
                or len(state.v) != cfg.num_registers
                or len(state.keys) != cfg.num_keys
                or len(state.display) != cfg.display_height
                or any(len(row) != cfg.display_width for row in state.display)):
            raise ValueError("Saved state does not match machine configuration")
        self.memory = bytearray(state.memory)
        self.v = list(state.v)
        self.i = state.i
        self.pc = state.pc
        self.stack = list(state.stack)
        self.sp = state.sp
        self.delay_timer = state.delay_timer
        self.sound_timer = state.sound_timer
        self.display = [list(row) for row in state.display]
        self.keys = list(state.keys)
        self.draw_flag = True

    def dump(self) -> str:
        """Register dump for the debug overlay"""
        regs = " ".join(f"V{idx:X}={value:02X}" for idx, value in enumerate(self.v))
        return "\n".join([
            f"PC: {self.pc:04X}  I: {self.i:04X}  SP: {self.sp:X}",
            f"DT: {self.delay_timer:02X}  ST: {self.sound_timer:02X}",
            regs,
        ])

    # ==================== MEMORY ====================

    def _read(self, address: int) -> int:
        if not 0 <= address < self.config.memory_size:
            raise OutOfBoundsError(f"Memory read out of bounds: {address:04X}")
        return self.memory[address]

    def _span(self, start: int, length: int) -> range:
        """Addresses start..start+length-1, all of which must be in memory"""
        end = start + length
        if start < 0 or end > self.config.memory_size:
            raise OutOfBoundsError(f"Memory range out of bounds: {start:04X}-{end - 1:04X}")
        return range(start, end)

    def _skip_if(self, condition: bool):
        if condition:
            self.pc = (self.pc + 2) & 0xFFFF

    # ==================== FLOW CONTROL ====================

    def _op_nop(self, instr: Instruction):
        pass

    def _op_cls(self, instr: Instruction):
        for row in self.display:
            for idx in range(len(row)):
                row[idx] = False
        self.draw_flag = True

    def _op_ret(self, instr: Instruction):
        if self.sp == 0:
            raise StackUnderflowError("Return with empty call stack")
        self.sp -= 1
        self.pc = self.stack[self.sp]

    def _op_jp(self, instr: Instruction):
        self.pc = instr.nnn

    def _op_call(self, instr: Instruction):
        if self.sp >= self.config.stack_size:
            raise StackOverflowError(f"Call stack full ({self.config.stack_size} entries)")
        self.stack[self.sp] = self.pc
        self.sp += 1
        self.pc = instr.nnn

    def _op_jp_v0(self, instr: Instruction):
        if self.config.quirk_jump_vx:
            self.pc = instr.nnn + self.v[instr.x]
        else:
            self.pc = instr.nnn + self.v[0]

    # ==================== SKIPS ====================

    def _op_se_vx_nn(self, instr: Instruction):
        self._skip_if(self.v[instr.x] == instr.nn)

    def _op_sne_vx_nn(self, instr: Instruction):
        self._skip_if(self.v[instr.x] != instr.nn)

    def _op_se_vx_vy(self, instr: Instruction):
        self._skip_if(self.v[instr.x] == self.v[instr.y])

    def _op_sne_vx_vy(self, instr: Instruction):
        self._skip_if(self.v[instr.x] != self.v[instr.y])

    def _op_skp(self, instr: Instruction):
        self._skip_if(self._key_held(self.v[instr.x]))

    def _op_sknp(self, instr: Instruction):
        self._skip_if(not self._key_held(self.v[instr.x]))

    def _key_held(self, key: int) -> bool:
        if not 0 <= key < self.config.num_keys:
            raise OutOfBoundsError(f"Key index out of range: {key}")
        return self.keys[key]

    # ==================== REGISTERS ====================

    def _op_ld_vx_nn(self, instr: Instruction):
        self.v[instr.x] = instr.nn

    def _op_add_vx_nn(self, instr: Instruction):
        # No carry flag
        self.v[instr.x] = (self.v[instr.x] + instr.nn) & 0xFF

    def _op_ld_vx_vy(self, instr: Instruction):
        self.v[instr.x] = self.v[instr.y]

    def _op_or(self, instr: Instruction):
        self.v[instr.x] |= self.v[instr.y]
        if self.config.quirk_vf_reset:
            self.v[0xF] = 0

    def _op_and(self, instr: Instruction):
        self.v[instr.x] &= self.v[instr.y]
        if self.config.quirk_vf_reset:
            self.v[0xF] = 0

    def _op_xor(self, instr: Instruction):
        self.v[instr.x] ^= self.v[instr.y]
        if self.config.quirk_vf_reset:
            self.v[0xF] = 0

    def _op_add_vx_vy(self, instr: Instruction):
        result = self.v[instr.x] + self.v[instr.y]
        self.v[instr.x] = result & 0xFF
        self.v[0xF] = 1 if result > 0xFF else 0

    def _op_sub(self, instr: Instruction):
        vx, vy = self.v[instr.x], self.v[instr.y]
        self.v[instr.x] = (vx - vy) & 0xFF
        self.v[0xF] = 0 if vx < vy else 1

    def _op_subn(self, instr: Instruction):
        vx, vy = self.v[instr.x], self.v[instr.y]
        self.v[instr.x] = (vy - vx) & 0xFF
        self.v[0xF] = 0 if vy < vx else 1

    def _shift_source(self, instr: Instruction) -> int:
        if self.config.quirk_shift_vy:
            return self.v[instr.y]
        return self.v[instr.x]

    def _op_shr(self, instr: Instruction):
        src = self._shift_source(instr)
        self.v[instr.x] = src >> 1
        self.v[0xF] = src & 0x01

    def _op_shl(self, instr: Instruction):
        src = self._shift_source(instr)
        self.v[instr.x] = (src << 1) & 0xFF
        self.v[0xF] = (src >> 7) & 0x01

    def _op_rnd(self, instr: Instruction):
        self.v[instr.x] = self.rng.randint(0, 255) & instr.nn

    # ==================== INDEX / MEMORY ====================

    def _op_ld_i(self, instr: Instruction):
        self.i = instr.nnn

    def _op_add_i_vx(self, instr: Instruction):
        self.i = (self.i + self.v[instr.x]) & 0xFFFF

    def _op_ld_f_vx(self, instr: Instruction):
        self.i = self.config.font_start + self.v[instr.x] * FONT_GLYPH_SIZE

    def _op_ld_b_vx(self, instr: Instruction):
        value = self.v[instr.x]
        hundreds, tens, ones = self._span(self.i, 3)
        self.memory[hundreds] = value // 100
        self.memory[tens] = (value // 10) % 10
        self.memory[ones] = value % 10

    def _op_ld_mem_vx(self, instr: Instruction):
        for reg, address in enumerate(self._span(self.i, instr.x + 1)):
            self.memory[address] = self.v[reg]
        if self.config.quirk_memory_increment:
            self.i = (self.i + instr.x + 1) & 0xFFFF

    def _op_ld_vx_mem(self, instr: Instruction):
        for reg, address in enumerate(self._span(self.i, instr.x + 1)):
            self.v[reg] = self.memory[address]
        if self.config.quirk_memory_increment:
            self.i = (self.i + instr.x + 1) & 0xFFFF

    # ==================== TIMERS / INPUT ====================

    def _op_ld_vx_dt(self, instr: Instruction):
        self.v[instr.x] = self.delay_timer

    def _op_ld_dt_vx(self, instr: Instruction):
        self.delay_timer = self.v[instr.x]

    def _op_ld_st_vx(self, instr: Instruction):
        self.sound_timer = self.v[instr.x]

    def _op_ld_vx_k(self, instr: Instruction):
        # Re-execute this instruction until some key is held
        for key, held in enumerate(self.keys):
            if held:
                self.v[instr.x] = key
                return
        self.pc = (self.pc - 2) & 0xFFFF

    # ==================== DISPLAY ====================

    def _op_drw(self, instr: Instruction):
        """
        DXYN: Draw sprite at (Vx, Vy) with height N

        Sprites are XORed onto the display, each pixel wrapping around the
        screen edges (or clipped with ``quirk_clipping``).
        VF is set to 1 if any pixel is erased (collision).
        """
        width = self.config.display_width
        height = self.config.display_height
        clipping = self.config.quirk_clipping
        sprite = [self.memory[address] for address in self._span(self.i, instr.n)]

        vx = self.v[instr.x] % width
        vy = self.v[instr.y] % height
        collision = 0

        for row, sprite_byte in enumerate(sprite):
            py = vy + row
            if clipping and py >= height:
                break
            py %= height

            for col in range(8):
                px = vx + col
                if clipping and px >= width:
                    break
                px %= width

                if sprite_byte & (0x80 >> col):
                    if self.display[py][px]:
                        collision = 1
                    self.display[py][px] = not self.display[py][px]

        self.v[0xF] = collision
        self.draw_flag = True
