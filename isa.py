"""ISA: CHIP-8 instruction encodings and helpers."""

from __future__ import annotations

from enum import IntEnum
from typing import NamedTuple


class OpCode(IntEnum):
    """Keeps every instruction kind of the base CHIP-8 set.

    Values group kinds by their opcode class (top nibble) followed by the
    distinguishing tail, so `OpCode.SHL == 0x8E` reads like `8xyE`.
    """

    CLS = 0x00  # 00E0
    RET = 0x01  # 00EE

    JP = 0x10  # 1nnn
    CALL = 0x20  # 2nnn
    SE_BYTE = 0x30  # 3xnn
    SNE_BYTE = 0x40  # 4xnn
    SE_REG = 0x50  # 5xy0
    LD_BYTE = 0x60  # 6xnn
    ADD_BYTE = 0x70  # 7xnn

    LD_REG = 0x80  # 8xy0
    OR = 0x81
    AND = 0x82
    XOR = 0x83
    ADD_REG = 0x84
    SUB = 0x85
    SHR = 0x86
    SUBN = 0x87
    SHL = 0x8E

    SNE_REG = 0x90  # 9xy0
    LD_I = 0xA0  # Annn
    JP_V0 = 0xB0  # Bnnn
    RND = 0xC0  # Cxnn
    DRW = 0xD0  # Dxyn

    SKP = 0xE9  # Ex9E
    SKNP = 0xEA  # ExA1

    LD_VX_DT = 0xF0  # Fx07
    LD_VX_K = 0xF1  # Fx0A
    LD_DT_VX = 0xF2  # Fx15
    LD_ST_VX = 0xF3  # Fx18
    ADD_I_VX = 0xF4  # Fx1E
    LD_F_VX = 0xF5  # Fx29
    LD_B_VX = 0xF6  # Fx33
    LD_MEM_VX = 0xF7  # Fx55
    LD_VX_MEM = 0xF8  # Fx65


INSTR_SIZE = 2  # bytes per instruction, big-endian

MEM_SIZE = 4096
PROGRAM_BASE = 0x200
STACK_DEPTH = 16
REGISTER_COUNT = 16
FLAG_REGISTER = 0xF

FONT_BASE = 0x000
FONT_GLYPH_SIZE = 5
FONTSET = bytes(
    [
        0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
        0x20, 0x60, 0x20, 0x20, 0x70,  # 1
        0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
        0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
        0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
        0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
        0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
        0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
        0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
        0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
        0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
        0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
        0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
        0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
        0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
        0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
    ]
)  # fmt: skip

# Operand layout of each kind. The layout fixes which bits belong to the
# operands and therefore which bits the decoder has to match literally.
_LAYOUT_MASK = {
    "": 0xFFFF,
    "x": 0xF0FF,
    "xy": 0xF00F,
    "xnn": 0xF000,
    "xyn": 0xF000,
    "nnn": 0xF000,
}

# kind -> (pattern, layout, mnemonic template)
FORMS: dict[OpCode, tuple[int, str, str]] = {
    OpCode.CLS: (0x00E0, "", "CLS"),
    OpCode.RET: (0x00EE, "", "RET"),
    OpCode.JP: (0x1000, "nnn", "JP {nnn}"),
    OpCode.CALL: (0x2000, "nnn", "CALL {nnn}"),
    OpCode.SE_BYTE: (0x3000, "xnn", "SE {x}, {nn}"),
    OpCode.SNE_BYTE: (0x4000, "xnn", "SNE {x}, {nn}"),
    OpCode.SE_REG: (0x5000, "xy", "SE {x}, {y}"),
    OpCode.LD_BYTE: (0x6000, "xnn", "LD {x}, {nn}"),
    OpCode.ADD_BYTE: (0x7000, "xnn", "ADD {x}, {nn}"),
    OpCode.LD_REG: (0x8000, "xy", "LD {x}, {y}"),
    OpCode.OR: (0x8001, "xy", "OR {x}, {y}"),
    OpCode.AND: (0x8002, "xy", "AND {x}, {y}"),
    OpCode.XOR: (0x8003, "xy", "XOR {x}, {y}"),
    OpCode.ADD_REG: (0x8004, "xy", "ADD {x}, {y}"),
    OpCode.SUB: (0x8005, "xy", "SUB {x}, {y}"),
    OpCode.SHR: (0x8006, "xy", "SHR {x}, {y}"),
    OpCode.SUBN: (0x8007, "xy", "SUBN {x}, {y}"),
    OpCode.SHL: (0x800E, "xy", "SHL {x}, {y}"),
    OpCode.SNE_REG: (0x9000, "xy", "SNE {x}, {y}"),
    OpCode.LD_I: (0xA000, "nnn", "LD I, {nnn}"),
    OpCode.JP_V0: (0xB000, "nnn", "JP V0, {nnn}"),
    OpCode.RND: (0xC000, "xnn", "RND {x}, {nn}"),
    OpCode.DRW: (0xD000, "xyn", "DRW {x}, {y}, {n}"),
    OpCode.SKP: (0xE09E, "x", "SKP {x}"),
    OpCode.SKNP: (0xE0A1, "x", "SKNP {x}"),
    OpCode.LD_VX_DT: (0xF007, "x", "LD {x}, DT"),
    OpCode.LD_VX_K: (0xF00A, "x", "LD {x}, K"),
    OpCode.LD_DT_VX: (0xF015, "x", "LD DT, {x}"),
    OpCode.LD_ST_VX: (0xF018, "x", "LD ST, {x}"),
    OpCode.ADD_I_VX: (0xF01E, "x", "ADD I, {x}"),
    OpCode.LD_F_VX: (0xF029, "x", "LD F, {x}"),
    OpCode.LD_B_VX: (0xF033, "x", "LD B, {x}"),
    OpCode.LD_MEM_VX: (0xF055, "x", "LD [I], {x}"),
    OpCode.LD_VX_MEM: (0xF065, "x", "LD {x}, [I]"),
}

# decode table grouped by opcode class: class -> ((mask, pattern, kind), ...)
_DECODE: dict[int, tuple[tuple[int, int, OpCode], ...]] = {}
for _op, (_pattern, _layout, _tmpl) in FORMS.items():
    _row = (_LAYOUT_MASK[_layout], _pattern, _op)
    _DECODE[_pattern >> 12] = _DECODE.get(_pattern >> 12, ()) + (_row,)


class Instruction(NamedTuple):
    """A fetched 16-bit word split into its fields.

    `op` is None when the word matches no defined pattern.
    """

    word: int
    op: OpCode | None
    x: int
    y: int
    n: int
    nn: int
    nnn: int

    @property
    def klass(self) -> int:
        return self.word >> 12


def decode_op(word: int) -> OpCode | None:
    """Return the instruction kind for `word` or None if it is undefined."""
    for mask, pattern, op in _DECODE.get((word >> 12) & 0xF, ()):
        if word & mask == pattern:
            return op
    return None


def decode(word: int) -> Instruction:
    """Split a 16-bit word into its fields."""
    word &= 0xFFFF
    return Instruction(
        word=word,
        op=decode_op(word),
        x=(word >> 8) & 0xF,
        y=(word >> 4) & 0xF,
        n=word & 0xF,
        nn=word & 0xFF,
        nnn=word & 0xFFF,
    )


def decode_instr(blob: bytes, offset: int) -> Instruction:
    """Decode instruction from bytes at offset.

    Raises EOFError if not enough bytes.
    """
    b = blob[offset : offset + INSTR_SIZE]
    if len(b) < INSTR_SIZE:
        err = "End of program"
        raise EOFError(err)
    return decode(int.from_bytes(b, byteorder="big"))


def encode_instr(opcode: OpCode, x: int = 0, y: int = 0, arg: int = 0) -> bytes:
    """Encode instruction into 2 big-endian bytes.

    `arg` is nnn, nn or n depending on the layout of `opcode`; fields the
    layout does not use are ignored. Raises ValueError when a used field
    does not fit.
    """
    pattern, layout, _ = FORMS[opcode]
    word = pattern
    if "x" in layout:
        word |= _field(x, 0xF, "x") << 8
    if "y" in layout:
        word |= _field(y, 0xF, "y") << 4
    if layout.endswith("nnn"):
        word |= _field(arg, 0xFFF, "nnn")
    elif layout.endswith("nn"):
        word |= _field(arg, 0xFF, "nn")
    elif layout.endswith("n"):
        word |= _field(arg, 0xF, "n")
    return word.to_bytes(INSTR_SIZE, byteorder="big")


def _field(value: int, limit: int, name: str) -> int:
    v = int(value)
    if not 0 <= v <= limit:
        err = f"{name} operand {v} out of range 0..{limit}"
        raise ValueError(err)
    return v


def mnemonic(word: int) -> str:
    """Get instruction mnemonic (Cowgod syntax). Never raises."""
    ins = decode(word)
    if ins.op is None:
        return f"DW 0x{ins.word:04X}"
    _, _, tmpl = FORMS[ins.op]
    return tmpl.format(
        x=f"V{ins.x:X}",
        y=f"V{ins.y:X}",
        n=ins.n,
        nn=f"0x{ins.nn:02X}",
        nnn=f"0x{ins.nnn:03X}",
    )


def listing(blob: bytes, base: int = PROGRAM_BASE) -> list[str]:
    """Disassemble a ROM image into "<addr> - <HEX> - <mnemonic>" lines.

    A trailing odd byte is dumped as hex with a DB mnemonic.
    """
    lines: list[str] = []
    pc = 0
    while pc + INSTR_SIZE <= len(blob):
        ins = decode_instr(blob, pc)
        hexbytes = blob[pc : pc + INSTR_SIZE].hex().upper()
        lines.append(f"{base + pc:03X} - {hexbytes} - {mnemonic(ins.word)}")
        pc += INSTR_SIZE
    if pc < len(blob):
        rest = blob[pc:].hex().upper()
        lines.append(f"{base + pc:03X} - {rest} - DB 0x{rest}")
    return lines
