"""
Cat's Chip-8 Emulator

A CHIP-8 interpreter core with a headless frame runner, a Tkinter front end
and gamepad support.
"""

from .constants import MachineConfig
from .errors import (
    InvalidOpcodeError,
    MachineError,
    OutOfBoundsError,
    ProgramTooLargeError,
    StackOverflowError,
    StackUnderflowError,
)
from .instructions import Instruction, Op, decode, disassemble
from .machine import Machine, MachineState
from .runner import Runner

__version__ = "1.0.0"
