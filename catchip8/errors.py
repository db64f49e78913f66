"""Exceptions raised by the machine when a program or caller breaks the rules."""

from typing import Optional


class MachineError(Exception):
    """Base class for every fatal machine condition"""


class OutOfBoundsError(MachineError, IndexError):
    """Memory address, register index or key index outside its range"""


class ProgramTooLargeError(OutOfBoundsError):
    """Program image does not fit between the program start and end of memory"""

    def __init__(self, size: int, max_size: int):
        super().__init__(f"Program too large: {size} bytes (max {max_size})")
        self.size = size
        self.max_size = max_size


class StackOverflowError(MachineError):
    """Subroutine call with the call stack already full"""


class StackUnderflowError(MachineError):
    """Return with an empty call stack"""


class InvalidOpcodeError(MachineError):
    """Instruction word with no matching opcode"""

    def __init__(self, word: int, address: Optional[int] = None):
        self.word = word
        self.address = address
        if address is None:
            message = f"Invalid opcode {word:04X}"
        else:
            message = f"Invalid opcode {word:04X} at {address:03X}"
        super().__init__(message)
