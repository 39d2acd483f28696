"""Module: assemble CHIP-8 source into a ROM image.

This module contains:
- tokenize(line) -> list of tokens
- parse(source) -> list of statements
- Assembler class that assembles statements into a code bytearray

Syntax is the one `isa.mnemonic` prints (Cowgod style), plus `name:`
labels, `;` comments and the DB/DW data directives.
"""

from __future__ import annotations

import argparse
import re
from pathlib import Path
from typing import NamedTuple

from isa import PROGRAM_BASE, OpCode, encode_instr, listing

TOKEN_RE = re.compile(
    r"""
    \s*                 # skip leading whitespace
    (;[^\n]*|           # comment until end-of-line
     ,|                 # operand separator
     \[[Ii]\]|          # indirect operand [I]
     [^\s,;]+)          # mnemonic, register, number, label or label definition
    """,
    re.VERBOSE,
)
_LABEL_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_REGISTER_RE = re.compile(r"^V[0-9A-F]$")
KEYWORDS = {"I", "DT", "ST", "K", "F", "B", "[I]"}

# (mnemonic, operand kinds) -> (kind, role of each operand)
# kinds: "V" register, "N" number or label, otherwise a literal keyword.
# roles: "x"/"y" register fields, "arg" for nnn/nn/n, "v0" must be V0, None for keywords.
_SYNTAX: dict[tuple[str, tuple[str, ...]], tuple[OpCode, tuple[str | None, ...]]] = {
    ("CLS", ()): (OpCode.CLS, ()),
    ("RET", ()): (OpCode.RET, ()),
    ("JP", ("N",)): (OpCode.JP, ("arg",)),
    ("JP", ("V", "N")): (OpCode.JP_V0, ("v0", "arg")),
    ("CALL", ("N",)): (OpCode.CALL, ("arg",)),
    ("SE", ("V", "N")): (OpCode.SE_BYTE, ("x", "arg")),
    ("SNE", ("V", "N")): (OpCode.SNE_BYTE, ("x", "arg")),
    ("SE", ("V", "V")): (OpCode.SE_REG, ("x", "y")),
    ("SNE", ("V", "V")): (OpCode.SNE_REG, ("x", "y")),
    ("LD", ("V", "N")): (OpCode.LD_BYTE, ("x", "arg")),
    ("ADD", ("V", "N")): (OpCode.ADD_BYTE, ("x", "arg")),
    ("LD", ("V", "V")): (OpCode.LD_REG, ("x", "y")),
    ("OR", ("V", "V")): (OpCode.OR, ("x", "y")),
    ("AND", ("V", "V")): (OpCode.AND, ("x", "y")),
    ("XOR", ("V", "V")): (OpCode.XOR, ("x", "y")),
    ("ADD", ("V", "V")): (OpCode.ADD_REG, ("x", "y")),
    ("SUB", ("V", "V")): (OpCode.SUB, ("x", "y")),
    ("SHR", ("V", "V")): (OpCode.SHR, ("x", "y")),
    ("SHR", ("V",)): (OpCode.SHR, ("x",)),
    ("SUBN", ("V", "V")): (OpCode.SUBN, ("x", "y")),
    ("SHL", ("V", "V")): (OpCode.SHL, ("x", "y")),
    ("SHL", ("V",)): (OpCode.SHL, ("x",)),
    ("LD", ("I", "N")): (OpCode.LD_I, (None, "arg")),
    ("RND", ("V", "N")): (OpCode.RND, ("x", "arg")),
    ("DRW", ("V", "V", "N")): (OpCode.DRW, ("x", "y", "arg")),
    ("SKP", ("V",)): (OpCode.SKP, ("x",)),
    ("SKNP", ("V",)): (OpCode.SKNP, ("x",)),
    ("LD", ("V", "DT")): (OpCode.LD_VX_DT, ("x", None)),
    ("LD", ("V", "K")): (OpCode.LD_VX_K, ("x", None)),
    ("LD", ("DT", "V")): (OpCode.LD_DT_VX, (None, "x")),
    ("LD", ("ST", "V")): (OpCode.LD_ST_VX, (None, "x")),
    ("ADD", ("I", "V")): (OpCode.ADD_I_VX, (None, "x")),
    ("LD", ("F", "V")): (OpCode.LD_F_VX, (None, "x")),
    ("LD", ("B", "V")): (OpCode.LD_B_VX, (None, "x")),
    ("LD", ("[I]", "V")): (OpCode.LD_MEM_VX, (None, "x")),
    ("LD", ("V", "[I]")): (OpCode.LD_VX_MEM, ("x", None)),
}


class AssemblyError(ValueError):
    """Raised for malformed source; the message carries the line number."""

    def __init__(self, line_no: int, msg: str) -> None:
        self.line_no = line_no
        super().__init__(f"line {line_no}: {msg}")


class Statement(NamedTuple):
    line_no: int
    label: str | None
    mnemonic: str | None
    operands: tuple[str, ...]


def tokenize(s: str) -> list[str]:
    """Find tokens in one source line and return them (skip comments)."""
    tokens: list[str] = []
    for m in TOKEN_RE.finditer(s):
        tok = m.group(1)
        if tok.startswith(";"):
            break
        tokens.append(tok)
    return tokens


def _operand_kind(tok: str) -> str:
    u = tok.upper()
    if _REGISTER_RE.fullmatch(u):
        return "V"
    if u in KEYWORDS:
        return u
    return "N"


def _parse_line(line_no: int, line: str) -> Statement | None:
    toks = tokenize(line)
    label = None
    if toks and toks[0].endswith(":"):
        label = toks.pop(0)[:-1]
        if not _LABEL_RE.fullmatch(label) or _operand_kind(label) != "N":
            raise AssemblyError(line_no, f"bad label name {label!r}")
    if not toks:
        return Statement(line_no, label, None, ()) if label else None

    mnemonic = toks[0].upper()
    operands: list[str] = []
    expect_operand = True
    for tok in toks[1:]:
        if tok == ",":
            if expect_operand:
                raise AssemblyError(line_no, "missing operand before ','")
            expect_operand = True
            continue
        if not expect_operand:
            raise AssemblyError(line_no, f"missing ',' before {tok!r}")
        operands.append(tok)
        expect_operand = False
    if operands and expect_operand:
        raise AssemblyError(line_no, "trailing ','")
    return Statement(line_no, label, mnemonic, tuple(operands))


def parse(source: str) -> list[Statement]:
    """Parse source text into statements, one per non-empty line."""
    statements: list[Statement] = []
    for line_no, line in enumerate(source.splitlines(), start=1):
        st = _parse_line(line_no, line)
        if st is not None:
            statements.append(st)
    return statements


class Assembler:
    """Assembler: transforms statements into a ROM image placed at `origin`."""

    def __init__(self, statements: list[Statement], origin: int = PROGRAM_BASE) -> None:
        """Create an Assembler for `statements`, addressing labels from `origin`."""
        self.statements = statements
        self.origin = origin
        self.code = bytearray()
        self.labels: dict[str, int] = {}

    def assemble(self) -> bytearray:
        """Run both passes and return the code buffer."""
        self._collect_labels()
        for st in self.statements:
            self._assemble_statement(st)
        return self.code

    def _size(self, st: Statement) -> int:
        if st.mnemonic is None:
            return 0
        if st.mnemonic == "DB":
            return len(st.operands)
        if st.mnemonic == "DW":
            return 2 * len(st.operands)
        return 2

    def _collect_labels(self) -> None:
        pc = self.origin
        for st in self.statements:
            if st.label is not None:
                if st.label in self.labels:
                    raise AssemblyError(st.line_no, f"duplicate label {st.label!r}")
                self.labels[st.label] = pc
            pc += self._size(st)

    def _value(self, st: Statement, tok: str) -> int:
        if tok in self.labels:
            return self.labels[tok]
        try:
            return int(tok, 0)
        except ValueError:
            pass
        if _LABEL_RE.fullmatch(tok):
            raise AssemblyError(st.line_no, f"undefined label {tok!r}")
        raise AssemblyError(st.line_no, f"bad number {tok!r}")

    def _data(self, st: Statement, width: int) -> None:
        if not st.operands:
            raise AssemblyError(st.line_no, f"{st.mnemonic} needs at least one value")
        limit = (1 << (8 * width)) - 1
        for tok in st.operands:
            v = self._value(st, tok)
            if not 0 <= v <= limit:
                raise AssemblyError(st.line_no, f"{st.mnemonic} value {v} out of range 0..{limit}")
            self.code += v.to_bytes(width, byteorder="big")

    def emit(self, st: Statement, opcode: OpCode, x: int, y: int, arg: int) -> None:
        """Encode one instruction and append it to the code buffer."""
        try:
            b = encode_instr(opcode, x, y, arg)
        except ValueError as e:
            raise AssemblyError(st.line_no, str(e)) from e
        self.code += b

    def _assemble_statement(self, st: Statement) -> None:
        if st.mnemonic is None:
            return
        if st.mnemonic == "DB":
            self._data(st, 1)
            return
        if st.mnemonic == "DW":
            self._data(st, 2)
            return

        kinds = tuple(_operand_kind(tok) for tok in st.operands)
        form = _SYNTAX.get((st.mnemonic, kinds))
        if form is None:
            shown = ", ".join(st.operands)
            raise AssemblyError(st.line_no, f"unknown instruction form: {st.mnemonic} {shown}".rstrip())
        opcode, roles = form
        x = y = arg = 0
        for role, tok in zip(roles, st.operands):
            if role == "x":
                x = int(tok[1], 16)
            elif role == "y":
                y = int(tok[1], 16)
            elif role == "v0":
                if tok.upper() != "V0":
                    raise AssemblyError(st.line_no, f"indexed jump needs V0, got {tok}")
            elif role == "arg":
                arg = self._value(st, tok)
        self.emit(st, opcode, x, y, arg)


def assemble_source(source: str, origin: int = PROGRAM_BASE) -> bytes:
    """Assemble source text and return the ROM image."""
    return bytes(Assembler(parse(source), origin=origin).assemble())


def assemble_file(input_path: str, out_path: str | None = None, origin: int = PROGRAM_BASE, debug: bool = False) -> str:
    """Assemble a source file and write the ROM ("<stem>.ch8" by default).

    When debug is set also write a disassembly listing next to it ("<out>.hex").
    Returns the output path.
    """
    p = Path(input_path)
    if not p.exists():
        err = f"Source file not found: {input_path}"
        raise FileNotFoundError(err)

    rom = assemble_source(p.read_text(encoding="utf-8"), origin=origin)
    out = p.with_suffix(".ch8") if out_path is None else Path(out_path)
    out.write_bytes(rom)
    if debug:
        Path(str(out) + ".hex").write_text("\n".join(listing(rom, origin)), encoding="utf-8")
    return str(out)


# --- CLI ---
if __name__ == "__main__":
    ap = argparse.ArgumentParser(description="Assemble CHIP-8 source to a raw ROM image")
    ap.add_argument("input", help="source file (e.g. program.asm)")
    ap.add_argument("-o", "--out", help="output ROM file (default: <input>.ch8)")
    ap.add_argument("--origin", type=lambda s: int(s, 0), default=PROGRAM_BASE, help="load address (default: 0x200)")
    ap.add_argument("--debug", action="store_true", help="write additional listing file (<out>.hex)")
    args = ap.parse_args()

    print(assemble_file(args.input, out_path=args.out, origin=args.origin, debug=args.debug))
