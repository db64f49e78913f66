"""
Instruction decoding.

Every 16-bit word is split into four nibbles::

    C X Y N      C   = instruction class
                 X,Y = register operands
                 N   = 4-bit constant
                 NN  = low byte, NNN = low 12 bits

``decode`` turns a word into an :class:`Instruction` tagged with one
:class:`Op` member, so execution is a single lookup on ``Instruction.op``.
"""

from enum import Enum, auto
from typing import NamedTuple, Optional

from .errors import InvalidOpcodeError


class Op(Enum):
    """Every instruction kind the machine executes"""
    NOP = auto()      # 0000
    CLS = auto()      # 00E0
    RET = auto()      # 00EE
    JP = auto()       # 1NNN
    CALL = auto()     # 2NNN
    SE_VX_NN = auto()   # 3XNN
    SNE_VX_NN = auto()  # 4XNN
    SE_VX_VY = auto()   # 5XY0
    LD_VX_NN = auto()   # 6XNN
    ADD_VX_NN = auto()  # 7XNN
    LD_VX_VY = auto()   # 8XY0
    OR = auto()       # 8XY1
    AND = auto()      # 8XY2
    XOR = auto()      # 8XY3
    ADD_VX_VY = auto()  # 8XY4
    SUB = auto()      # 8XY5
    SHR = auto()      # 8XY6
    SUBN = auto()     # 8XY7
    SHL = auto()      # 8XYE
    SNE_VX_VY = auto()  # 9XY0
    LD_I = auto()     # ANNN
    JP_V0 = auto()    # BNNN
    RND = auto()      # CXNN
    DRW = auto()      # DXYN
    SKP = auto()      # EX9E
    SKNP = auto()     # EXA1
    LD_VX_DT = auto()   # FX07
    LD_VX_K = auto()    # FX0A
    LD_DT_VX = auto()   # FX15
    LD_ST_VX = auto()   # FX18
    ADD_I_VX = auto()   # FX1E
    LD_F_VX = auto()    # FX29
    LD_B_VX = auto()    # FX33
    LD_MEM_VX = auto()  # FX55
    LD_VX_MEM = auto()  # FX65


class Instruction(NamedTuple):
    op: Op
    word: int
    x: int
    y: int
    n: int
    nn: int
    nnn: int


# Words matched exactly
_EXACT = {
    0x0000: Op.NOP,
    0x00E0: Op.CLS,
    0x00EE: Op.RET,
}

# Classes decided by the first nibble alone
_BY_CLASS = {
    0x1: Op.JP,
    0x2: Op.CALL,
    0x3: Op.SE_VX_NN,
    0x4: Op.SNE_VX_NN,
    0x6: Op.LD_VX_NN,
    0x7: Op.ADD_VX_NN,
    0xA: Op.LD_I,
    0xB: Op.JP_V0,
    0xC: Op.RND,
    0xD: Op.DRW,
}

# 8XYN arithmetic/logic, keyed by N
_ALU = {
    0x0: Op.LD_VX_VY,
    0x1: Op.OR,
    0x2: Op.AND,
    0x3: Op.XOR,
    0x4: Op.ADD_VX_VY,
    0x5: Op.SUB,
    0x6: Op.SHR,
    0x7: Op.SUBN,
    0xE: Op.SHL,
}

# EXNN, keyed by NN
_KEYS = {
    0x9E: Op.SKP,
    0xA1: Op.SKNP,
}

# FXNN, keyed by NN
_MISC = {
    0x07: Op.LD_VX_DT,
    0x0A: Op.LD_VX_K,
    0x15: Op.LD_DT_VX,
    0x18: Op.LD_ST_VX,
    0x1E: Op.ADD_I_VX,
    0x29: Op.LD_F_VX,
    0x33: Op.LD_B_VX,
    0x55: Op.LD_MEM_VX,
    0x65: Op.LD_VX_MEM,
}


def _lookup(word: int) -> Optional[Op]:
    cls = word >> 12
    n = word & 0x000F
    nn = word & 0x00FF

    if cls == 0x0:
        return _EXACT.get(word)
    if cls in _BY_CLASS:
        return _BY_CLASS[cls]
    if cls == 0x5:
        return Op.SE_VX_VY if n == 0 else None
    if cls == 0x8:
        return _ALU.get(n)
    if cls == 0x9:
        return Op.SNE_VX_VY if n == 0 else None
    if cls == 0xE:
        return _KEYS.get(nn)
    return _MISC.get(nn)


def decode(word: int, address: Optional[int] = None) -> Instruction:
    """Decode a 16-bit word, raising InvalidOpcodeError if nothing matches"""
    if not 0 <= word <= 0xFFFF:
        raise InvalidOpcodeError(word, address)
    op = _lookup(word)
    if op is None:
        raise InvalidOpcodeError(word, address)
    return Instruction(
        op=op,
        word=word,
        x=(word >> 8) & 0x0F,
        y=(word >> 4) & 0x0F,
        n=word & 0x000F,
        nn=word & 0x00FF,
        nnn=word & 0x0FFF,
    )


# ==================== DISASSEMBLY ====================

_MNEMONICS = {
    Op.NOP: "NOP",
    Op.CLS: "CLS",
    Op.RET: "RET",
    Op.JP: "JP 0x{nnn:03X}",
    Op.CALL: "CALL 0x{nnn:03X}",
    Op.SE_VX_NN: "SE V{x:X}, 0x{nn:02X}",
    Op.SNE_VX_NN: "SNE V{x:X}, 0x{nn:02X}",
    Op.SE_VX_VY: "SE V{x:X}, V{y:X}",
    Op.LD_VX_NN: "LD V{x:X}, 0x{nn:02X}",
    Op.ADD_VX_NN: "ADD V{x:X}, 0x{nn:02X}",
    Op.LD_VX_VY: "LD V{x:X}, V{y:X}",
    Op.OR: "OR V{x:X}, V{y:X}",
    Op.AND: "AND V{x:X}, V{y:X}",
    Op.XOR: "XOR V{x:X}, V{y:X}",
    Op.ADD_VX_VY: "ADD V{x:X}, V{y:X}",
    Op.SUB: "SUB V{x:X}, V{y:X}",
    Op.SHR: "SHR V{x:X}",
    Op.SUBN: "SUBN V{x:X}, V{y:X}",
    Op.SHL: "SHL V{x:X}",
    Op.SNE_VX_VY: "SNE V{x:X}, V{y:X}",
    Op.LD_I: "LD I, 0x{nnn:03X}",
    Op.JP_V0: "JP V0, 0x{nnn:03X}",
    Op.RND: "RND V{x:X}, 0x{nn:02X}",
    Op.DRW: "DRW V{x:X}, V{y:X}, {n}",
    Op.SKP: "SKP V{x:X}",
    Op.SKNP: "SKNP V{x:X}",
    Op.LD_VX_DT: "LD V{x:X}, DT",
    Op.LD_VX_K: "LD V{x:X}, K",
    Op.LD_DT_VX: "LD DT, V{x:X}",
    Op.LD_ST_VX: "LD ST, V{x:X}",
    Op.ADD_I_VX: "ADD I, V{x:X}",
    Op.LD_F_VX: "LD F, V{x:X}",
    Op.LD_B_VX: "LD B, V{x:X}",
    Op.LD_MEM_VX: "LD [I], V{x:X}",
    Op.LD_VX_MEM: "LD V{x:X}, [I]",
}


def disassemble(word: int) -> str:
    """Mnemonic for a word, or a DW data directive if it does not decode"""
    try:
        instr = decode(word)
    except InvalidOpcodeError:
        return f"DW 0x{word:04X}"
    return _MNEMONICS[instr.op].format(**instr._asdict())
