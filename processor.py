"""Processor (Datapath + ControlUnit) and CLI wrapper.

Provides the CHIP-8 fetch-decode-execute engine, its timer subsystem, a
headless run loop, logging initialization and optional debug output files
(out.bin / out.hex) emitted when debug logging is enabled.
"""

from __future__ import annotations

import argparse
import logging
import random
import sys
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any

from config import ConfigError, load_config
from devices import Display, FrameBuffer, Keypad, NullDisplay, NullKeypad, ScriptedKeypad
from isa import (
    FLAG_REGISTER,
    FONT_BASE,
    FONT_GLYPH_SIZE,
    FONTSET,
    INSTR_SIZE,
    MEM_SIZE,
    PROGRAM_BASE,
    REGISTER_COUNT,
    STACK_DEPTH,
    Instruction,
    OpCode,
    decode,
    listing,
    mnemonic,
)

LOGFILE = "processor.log"


def init_logging(logfile: str = LOGFILE, debug: bool = False, console: bool = False) -> None:
    """Configure root logger to write to `logfile`.

    If debug=True set DEBUG level. If console=True also echo logs to stdout.
    """
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    lvl = logging.DEBUG if debug else logging.CRITICAL
    root.setLevel(lvl)

    # compact format without timestamps keeps trace files diffable
    if debug:
        file_fmt = "%(levelname)s %(name)s:%(filename)s:%(lineno)d %(message)s"
    else:
        file_fmt = "%(levelname)-5s %(message)s"

    fh = logging.FileHandler(logfile, mode="w", encoding="utf-8")
    fh.setLevel(lvl)
    fh.setFormatter(logging.Formatter(file_fmt))
    root.addHandler(fh)

    if debug and console:
        ch = logging.StreamHandler(sys.stdout)
        ch.setLevel(lvl)
        ch.setFormatter(logging.Formatter("%(levelname)5s %(message)s"))
        root.addHandler(ch)


# --- debug output helpers ---
def _flush_logging_handlers() -> None:
    for h in list(logging.getLogger().handlers):
        h.flush()


def _write_debug_out_files(rom: bytes, base: int = PROGRAM_BASE, out_dir: str | Path = ".") -> None:
    """Write the loaded ROM (out.bin) and its disassembly (out.hex) to `out_dir`."""
    _flush_logging_handlers()
    out = Path(out_dir)
    try:
        (out / "out.bin").write_bytes(rom)
        (out / "out.hex").write_text("\n".join(listing(rom, base)), encoding="utf-8")
    except OSError as e:
        logging.debug("Failed to write debug out files: %s", e)


# --- errors ---
class EmulatorError(Exception):
    """Base class for every error the emulator reports to its host."""


class LoadError(EmulatorError):
    """Raised when a program image does not fit into memory."""


class OutOfBounds(EmulatorError):
    """Raised on any memory access outside capacity."""

    def __init__(self, addr: int, count: int = 1) -> None:
        self.addr = addr
        self.count = count
        if count > 1:
            msg = f"memory access 0x{addr:03X}..0x{addr + count - 1:03X} out of range"
        else:
            msg = f"memory access 0x{addr:03X} out of range"
        super().__init__(msg)


class IllegalInstruction(EmulatorError):
    """Raised for an opcode with no defined semantics."""

    def __init__(self, opcode: int, pc: int) -> None:
        self.opcode = opcode
        self.pc = pc
        super().__init__(f"illegal instruction {opcode:04X} at 0x{pc:03X}")


class StackOverflow(EmulatorError):
    pass


class StackUnderflow(EmulatorError):
    pass


class InvalidState(EmulatorError):
    """Raised when an operation is not allowed in the engine's current state."""


# --- datapath pieces ---
class Memory:
    """Fixed-size byte store with the font set installed at FONT_BASE."""

    cells: bytearray

    def __init__(self, size: int = MEM_SIZE) -> None:
        self.cells = bytearray(size)
        self.reset()

    def __len__(self) -> int:
        return len(self.cells)

    def reset(self) -> None:
        """Zero all memory and reinstall the font glyphs."""
        self.cells[:] = bytes(len(self.cells))
        self.cells[FONT_BASE : FONT_BASE + len(FONTSET)] = FONTSET

    def check_range(self, addr: int, count: int = 1) -> None:
        if addr < 0 or addr + count > len(self.cells):
            raise OutOfBounds(addr, count)

    def load(self, image: bytes, base: int) -> None:
        """Copy `image` into memory at `base`; memory is untouched on failure."""
        if base < 0 or base + len(image) > len(self.cells):
            err = f"image of {len(image)} bytes does not fit at 0x{base:03X} (capacity {len(self.cells)})"
            raise LoadError(err)
        self.cells[base : base + len(image)] = image

    def read_byte(self, addr: int) -> int:
        self.check_range(addr)
        return self.cells[addr]

    def write_byte(self, addr: int, value: int) -> None:
        self.check_range(addr)
        self.cells[addr] = value & 0xFF

    def read_word(self, addr: int) -> int:
        """Read a big-endian 16-bit word at addr, addr+1."""
        self.check_range(addr, 2)
        return (self.cells[addr] << 8) | self.cells[addr + 1]

    def read_bytes(self, addr: int, count: int) -> bytes:
        self.check_range(addr, count)
        return bytes(self.cells[addr : addr + count])

    def write_bytes(self, addr: int, data: bytes) -> None:
        """Write `data` at addr. The whole range is checked before any byte is written."""
        self.check_range(addr, len(data))
        self.cells[addr : addr + len(data)] = data


class RegisterFile:
    """V0..VF, the index register I and the program counter PC."""

    V: bytearray

    def __init__(self) -> None:
        self.V = bytearray(REGISTER_COUNT)
        self._I = 0
        self._PC = 0

    def reset(self) -> None:
        self.V[:] = bytes(REGISTER_COUNT)
        self._I = 0
        self._PC = 0

    @staticmethod
    def _check(i: int) -> None:
        if not 0 <= i < REGISTER_COUNT:
            err = f"register index {i} out of range 0..{REGISTER_COUNT - 1}"
            raise ValueError(err)

    def get(self, i: int) -> int:
        self._check(i)
        return self.V[i]

    def set(self, i: int, value: int) -> None:
        self._check(i)
        self.V[i] = value & 0xFF

    # VF viewed as the flag output; same slot as V15
    def get_flag(self) -> int:
        return self.V[FLAG_REGISTER]

    def set_flag(self, value: int) -> None:
        self.V[FLAG_REGISTER] = value & 0xFF

    @property
    def I(self) -> int:  # noqa: E743
        return self._I

    @I.setter
    def I(self, value: int) -> None:  # noqa: E743
        self._I = value & 0xFFFF

    @property
    def PC(self) -> int:
        return self._PC

    @PC.setter
    def PC(self, value: int) -> None:
        self._PC = value & 0xFFFF

    def snapshot(self) -> tuple[int, ...]:
        return tuple(self.V)


class CallStack:
    """Bounded LIFO of subroutine return addresses."""

    def __init__(self, limit: int = STACK_DEPTH) -> None:
        self.limit = limit
        self._items: list[int] = []

    def __len__(self) -> int:
        return len(self._items)

    @property
    def depth(self) -> int:
        return len(self._items)

    def push(self, addr: int) -> None:
        if len(self._items) >= self.limit:
            err = f"call stack overflow (depth {self.limit}) pushing 0x{addr:03X}"
            raise StackOverflow(err)
        self._items.append(addr)

    def pop(self) -> int:
        if not self._items:
            err = "return with empty call stack"
            raise StackUnderflow(err)
        return self._items.pop()

    def clear(self) -> None:
        self._items.clear()


class Timers:
    """Delay and sound countdown timers aged by elapsed wall-clock time.

    `tick(elapsed_ms)` converts elapsed time into whole timer periods and
    keeps the fractional remainder for the next call, so irregular bursts
    add up to the same number of decrements as one long call.
    """

    delay: int
    sound: int

    def __init__(self, hz: float = 60.0) -> None:
        if hz <= 0:
            err = "timer rate must be positive"
            raise ValueError(err)
        self.hz = float(hz)
        self.reset()

    def reset(self) -> None:
        self.delay = 0
        self.sound = 0
        # time debt measured in (ms * hz); one period is 1000 units
        self._debt = 0.0

    @property
    def sound_active(self) -> bool:
        return self.sound > 0

    def tick(self, elapsed_ms: float) -> int:
        """Age both timers by `elapsed_ms`. Returns the number of periods applied."""
        if elapsed_ms < 0:
            err = f"elapsed time must be non-negative, got {elapsed_ms}"
            raise ValueError(err)
        self._debt += elapsed_ms * self.hz
        periods = int(self._debt // 1000)
        if periods == 0:
            return 0
        self._debt -= periods * 1000
        was_sounding = self.sound > 0
        self.delay = max(0, self.delay - periods)
        self.sound = max(0, self.sound - periods)
        if was_sounding and self.sound == 0:
            logging.debug("sound timer expired (beep off)")
        return periods


class Datapath:
    """Datapath (memory + registers + call stack + timers) for the engine."""

    memory: Memory
    regs: RegisterFile
    stack: CallStack
    timers: Timers

    def __init__(self, timer_hz: float = 60.0) -> None:
        """Initialize Datapath state and memory layout."""
        self.memory = Memory()
        self.regs = RegisterFile()
        self.stack = CallStack()
        self.timers = Timers(timer_hz)

    def reset(self) -> None:
        self.memory.reset()
        self.regs.reset()
        self.stack.clear()
        self.timers.reset()


class EngineState(Enum):
    UNINITIALIZED = "uninitialized"
    RUNNING = "running"
    WAITING_FOR_KEY = "waiting_for_key"
    HALTED = "halted"


class ControlUnit:
    """Control unit implementing the FETCH-DECODE-EXEC cycle for the Datapath.

    `step()` executes exactly one instruction; `tick()` ages the timers.
    The host must not call them concurrently on the same instance.
    """

    dp: Datapath
    display: Display
    keypad: Keypad
    state: EngineState

    def __init__(
        self,
        dp: Datapath,
        display: Display | None = None,
        keypad: Keypad | None = None,
        rng: random.Random | None = None,
        lenient_log: bool = False,
    ) -> None:
        """Create a ControlUnit bound to `dp`."""
        self.dp = dp
        self.display = display if display is not None else NullDisplay()
        self.keypad = keypad if keypad is not None else NullKeypad()
        self.rng = rng if rng is not None else random.Random()
        self.lenient_log = lenient_log

        self.state = EngineState.UNINITIALIZED
        self._key_register: int | None = None
        self.steps = 0  # instructions executed
        self.ticks = 0  # run loop iterations

        self._handlers: dict[OpCode, Callable[[Instruction], int]] = {
            OpCode.CLS: self._cls,
            OpCode.RET: self._ret,
            OpCode.JP: self._jp,
            OpCode.CALL: self._call,
            OpCode.SE_BYTE: self._se_byte,
            OpCode.SNE_BYTE: self._sne_byte,
            OpCode.SE_REG: self._se_reg,
            OpCode.LD_BYTE: self._ld_byte,
            OpCode.ADD_BYTE: self._add_byte,
            OpCode.LD_REG: self._ld_reg,
            OpCode.OR: self._or,
            OpCode.AND: self._and,
            OpCode.XOR: self._xor,
            OpCode.ADD_REG: self._add_reg,
            OpCode.SUB: self._sub,
            OpCode.SHR: self._shr,
            OpCode.SUBN: self._subn,
            OpCode.SHL: self._shl,
            OpCode.SNE_REG: self._sne_reg,
            OpCode.LD_I: self._ld_i,
            OpCode.JP_V0: self._jp_v0,
            OpCode.RND: self._rnd,
            OpCode.DRW: self._drw,
            OpCode.SKP: self._skp,
            OpCode.SKNP: self._sknp,
            OpCode.LD_VX_DT: self._ld_vx_dt,
            OpCode.LD_VX_K: self._ld_vx_k,
            OpCode.LD_DT_VX: self._ld_dt_vx,
            OpCode.LD_ST_VX: self._ld_st_vx,
            OpCode.ADD_I_VX: self._add_i_vx,
            OpCode.LD_F_VX: self._ld_f_vx,
            OpCode.LD_B_VX: self._ld_b_vx,
            OpCode.LD_MEM_VX: self._ld_mem_vx,
            OpCode.LD_VX_MEM: self._ld_vx_mem,
        }

    # --- lifecycle ---
    def load_program(self, image: bytes, base: int = PROGRAM_BASE) -> None:
        """Reset the datapath, copy `image` at `base` and initialize.

        On LoadError the engine stays uninitialized.
        """
        self.state = EngineState.UNINITIALIZED
        self.dp.reset()
        self.dp.memory.load(image, base)
        logging.debug("Loaded %d bytes at 0x%03X", len(image), base)
        self.initialize(base)

    def initialize(self, load_address: int = PROGRAM_BASE) -> None:
        """Set PC to load_address and clear I, V, call stack and timers."""
        dp = self.dp
        dp.regs.reset()
        dp.regs.PC = load_address
        dp.stack.clear()
        dp.timers.reset()
        self._key_register = None
        self.steps = 0
        self.ticks = 0
        self.state = EngineState.RUNNING
        logging.debug("ControlUnit: initialized, PC=0x%03X", load_address)

    @property
    def waiting_for_key(self) -> bool:
        return self.state is EngineState.WAITING_FOR_KEY

    @property
    def sound_active(self) -> bool:
        return self.dp.timers.sound_active

    # --- execution ---
    def step(self) -> Instruction | None:
        """Execute exactly one instruction.

        Returns the executed instruction, or None when the engine is
        waiting for a key and the step did not fetch anything. Fatal
        errors halt the engine and propagate; the failed instruction
        leaves PC and registers as they were.
        """
        if self.state is EngineState.UNINITIALIZED:
            err = "step() called before initialize()"
            raise InvalidState(err)
        if self.state is EngineState.HALTED:
            err = "engine halted after a fatal error"
            raise InvalidState(err)
        if self.state is EngineState.WAITING_FOR_KEY:
            key = self.keypad.wait_for_key()
            if key is not None:
                self.deliver_key(key)
            return None

        dp = self.dp
        pc = dp.regs.PC
        try:
            ins = decode(dp.memory.read_word(pc))
            handler = self._handlers.get(ins.op) if ins.op is not None else None
            if handler is None:
                raise IllegalInstruction(ins.word, pc)
            next_pc = handler(ins)
        except EmulatorError as e:
            self.state = EngineState.HALTED
            logging.debug("[step %d] fatal at PC 0x%03X: %s", self.steps, pc, e)
            raise
        dp.regs.PC = next_pc
        self.steps += 1
        self._log_step("EXECUTION", pc, ins)
        return ins

    def tick(self, elapsed_ms: float) -> int:
        """Age the timers by elapsed_ms. Returns the number of 60 Hz periods applied."""
        return self.dp.timers.tick(elapsed_ms)

    def deliver_key(self, key: int) -> None:
        """Complete a pending key wait: store `key` in Vx and move past the wait."""
        if self.state is not EngineState.WAITING_FOR_KEY or self._key_register is None:
            err = f"no key wait pending (state {self.state.value})"
            raise InvalidState(err)
        if not 0 <= key <= 0xF:
            err = f"key {key} out of range 0..15"
            raise ValueError(err)
        regs = self.dp.regs
        regs.set(self._key_register, key)
        regs.PC = regs.PC + INSTR_SIZE
        logging.debug("key %X delivered to V%X, resuming at 0x%03X", key, self._key_register, regs.PC)
        self._key_register = None
        self.state = EngineState.RUNNING

    def _log_step(self, step: str, pc: int, ins: Instruction) -> None:
        # skip verbose per-step logs in lenient mode to reduce log size
        if self.lenient_log:
            return
        dp = self.dp
        v = " ".join(f"{b:02X}" for b in dp.regs.snapshot())
        logging.debug(
            "STATE: %-15s STEP: %-10s TICK: %5d PC: %03X I: %03X V: %s DT: %3d ST: %3d SP: %2d\tINSTR: %s",
            self.state.name,
            step,
            self.steps,
            pc,
            dp.regs.I,
            v,
            dp.timers.delay,
            dp.timers.sound,
            dp.stack.depth,
            mnemonic(ins.word),
        )

    def run(self, tick_limit: int = 100000, pause_tick: int | None = None, cpu_hz: float = 2000.0) -> tuple[int, str]:
        """Drive the engine: one step() then tick(1000 / cpu_hz) per iteration.

        Stops on a jump to itself ("halted"), at pause_tick ("paused"), on a
        key wait no scheduled input can satisfy ("waiting") or at tick_limit
        ("stopped"). Returns (ticks, state). Emulator errors propagate.
        """
        elapsed = 1000.0 / cpu_hz
        scripted = self.keypad if isinstance(self.keypad, ScriptedKeypad) else None
        while self.ticks < tick_limit:
            if pause_tick is not None and self.ticks == pause_tick:
                logging.debug("[tick %d] pause", self.ticks)
                return self.ticks, "paused"

            if scripted is not None:
                scripted.advance(self.ticks)

            if self.waiting_for_key and not (scripted is not None and scripted.pending()):
                logging.debug("[tick %d] waiting for a key and no more scheduled input -> stop", self.ticks)
                return self.ticks, "waiting"

            pc = self.dp.regs.PC
            ins = self.step()
            self.tick(elapsed)
            self.ticks += 1

            if ins is not None and ins.op is OpCode.JP and self.dp.regs.PC == pc:
                logging.debug("[tick %d] jump to self at 0x%03X -> halt", self.ticks, pc)
                return self.ticks, "halted"
        return self.ticks, "stopped"

    # --- instruction handlers: each returns the next PC ---
    def _next(self, skip: bool = False) -> int:
        return self.dp.regs.PC + (2 * INSTR_SIZE if skip else INSTR_SIZE)

    def _cls(self, ins: Instruction) -> int:
        self.display.clear()
        return self._next()

    def _ret(self, ins: Instruction) -> int:
        return self.dp.stack.pop()

    def _jp(self, ins: Instruction) -> int:
        return ins.nnn

    def _call(self, ins: Instruction) -> int:
        self.dp.stack.push(self._next())
        return ins.nnn

    def _se_byte(self, ins: Instruction) -> int:
        return self._next(self.dp.regs.get(ins.x) == ins.nn)

    def _sne_byte(self, ins: Instruction) -> int:
        return self._next(self.dp.regs.get(ins.x) != ins.nn)

    def _se_reg(self, ins: Instruction) -> int:
        regs = self.dp.regs
        return self._next(regs.get(ins.x) == regs.get(ins.y))

    def _sne_reg(self, ins: Instruction) -> int:
        regs = self.dp.regs
        return self._next(regs.get(ins.x) != regs.get(ins.y))

    def _ld_byte(self, ins: Instruction) -> int:
        self.dp.regs.set(ins.x, ins.nn)
        return self._next()

    def _add_byte(self, ins: Instruction) -> int:
        # no carry flag for 7xnn
        regs = self.dp.regs
        regs.set(ins.x, (regs.get(ins.x) + ins.nn) & 0xFF)
        return self._next()

    def _ld_reg(self, ins: Instruction) -> int:
        regs = self.dp.regs
        regs.set(ins.x, regs.get(ins.y))
        return self._next()

    def _or(self, ins: Instruction) -> int:
        regs = self.dp.regs
        regs.set(ins.x, regs.get(ins.x) | regs.get(ins.y))
        return self._next()

    def _and(self, ins: Instruction) -> int:
        regs = self.dp.regs
        regs.set(ins.x, regs.get(ins.x) & regs.get(ins.y))
        return self._next()

    def _xor(self, ins: Instruction) -> int:
        regs = self.dp.regs
        regs.set(ins.x, regs.get(ins.x) ^ regs.get(ins.y))
        return self._next()

    # Flag-setting handlers read every source first and write VF last, so a
    # source VF is consumed before the flag overwrites it.
    def _add_reg(self, ins: Instruction) -> int:
        regs = self.dp.regs
        vx, vy = regs.get(ins.x), regs.get(ins.y)
        total = vx + vy
        regs.set(ins.x, total & 0xFF)
        regs.set_flag(1 if total > 0xFF else 0)
        return self._next()

    def _sub(self, ins: Instruction) -> int:
        regs = self.dp.regs
        vx, vy = regs.get(ins.x), regs.get(ins.y)
        regs.set(ins.x, (vx - vy) & 0xFF)
        regs.set_flag(1 if vy <= vx else 0)
        return self._next()

    def _shr(self, ins: Instruction) -> int:
        regs = self.dp.regs
        vx = regs.get(ins.x)
        regs.set(ins.x, vx >> 1)
        regs.set_flag(vx & 1)
        return self._next()

    def _subn(self, ins: Instruction) -> int:
        regs = self.dp.regs
        vx, vy = regs.get(ins.x), regs.get(ins.y)
        regs.set(ins.x, (vy - vx) & 0xFF)
        regs.set_flag(1 if vx <= vy else 0)
        return self._next()

    def _shl(self, ins: Instruction) -> int:
        regs = self.dp.regs
        vx = regs.get(ins.x)
        regs.set(ins.x, (vx << 1) & 0xFF)
        regs.set_flag((vx >> 7) & 1)
        return self._next()

    def _ld_i(self, ins: Instruction) -> int:
        self.dp.regs.I = ins.nnn
        return self._next()

    def _jp_v0(self, ins: Instruction) -> int:
        return ins.nnn + self.dp.regs.get(0)

    def _rnd(self, ins: Instruction) -> int:
        self.dp.regs.set(ins.x, self.rng.getrandbits(8) & ins.nn)
        return self._next()

    def _drw(self, ins: Instruction) -> int:
        dp = self.dp
        sprite = dp.memory.read_bytes(dp.regs.I, ins.n)
        collided = self.display.draw(dp.regs.get(ins.x), dp.regs.get(ins.y), sprite)
        dp.regs.set_flag(1 if collided else 0)
        return self._next()

    def _skp(self, ins: Instruction) -> int:
        return self._next(self.keypad.is_down(self.dp.regs.get(ins.x) & 0xF))

    def _sknp(self, ins: Instruction) -> int:
        return self._next(not self.keypad.is_down(self.dp.regs.get(ins.x) & 0xF))

    def _ld_vx_dt(self, ins: Instruction) -> int:
        self.dp.regs.set(ins.x, self.dp.timers.delay)
        return self._next()

    def _ld_vx_k(self, ins: Instruction) -> int:
        # PC stays on Fx0A until deliver_key() moves past it
        self._key_register = ins.x
        self.state = EngineState.WAITING_FOR_KEY
        logging.debug("waiting for key -> V%X", ins.x)
        return self.dp.regs.PC

    def _ld_dt_vx(self, ins: Instruction) -> int:
        self.dp.timers.delay = self.dp.regs.get(ins.x)
        return self._next()

    def _ld_st_vx(self, ins: Instruction) -> int:
        self.dp.timers.sound = self.dp.regs.get(ins.x)
        return self._next()

    def _add_i_vx(self, ins: Instruction) -> int:
        regs = self.dp.regs
        total = regs.I + regs.get(ins.x)
        regs.I = total
        regs.set_flag(1 if total > 0xFFF else 0)
        return self._next()

    def _ld_f_vx(self, ins: Instruction) -> int:
        self.dp.regs.I = FONT_BASE + self.dp.regs.get(ins.x) * FONT_GLYPH_SIZE
        return self._next()

    def _ld_b_vx(self, ins: Instruction) -> int:
        dp = self.dp
        vx = dp.regs.get(ins.x)
        dp.memory.write_bytes(dp.regs.I, bytes((vx // 100, vx // 10 % 10, vx % 10)))
        return self._next()

    def _ld_mem_vx(self, ins: Instruction) -> int:
        dp = self.dp
        dp.memory.write_bytes(dp.regs.I, bytes(dp.regs.snapshot()[: ins.x + 1]))
        return self._next()

    def _ld_vx_mem(self, ins: Instruction) -> int:
        dp = self.dp
        data = dp.memory.read_bytes(dp.regs.I, ins.x + 1)
        for i, b in enumerate(data):
            dp.regs.set(i, b)
        return self._next()


def parse_schedule_file(path: str) -> list[tuple[int, int, bool]]:
    """Parse schedule file with lines "<tick> <key> [down|up]".

    `key` is a hex digit 0-F; the direction defaults to down. Blank lines
    and lines starting with '#' are skipped. Raises ValueError on bad lines.
    """
    result: list[tuple[int, int, bool]] = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            parts = line.split()
            if len(parts) not in (2, 3):
                err = f"Bad schedule line: {line!r}"
                raise ValueError(err)
            try:
                tick = int(parts[0])
                key = int(parts[1], 16)
            except ValueError as e:
                err = f"Bad schedule line (bad tick or key): {line!r}"
                raise ValueError(err) from e
            direction = parts[2].lower() if len(parts) == 3 else "down"
            if direction not in ("down", "up") or not 0 <= key <= 0xF:
                err = f"Bad schedule line: {line!r}"
                raise ValueError(err)
            result.append((tick, key, direction == "down"))
    return result


def build_control_unit(
    config: dict[str, Any] | None,
    display: Display | None = None,
    keypad: Keypad | None = None,
) -> ControlUnit:
    """Create a Datapath + ControlUnit pair configured from `config`."""
    cfg = load_config(config)
    dp = Datapath(timer_hz=cfg["timer_hz"])
    rng = random.Random(cfg["seed"])
    return ControlUnit(dp, display=display, keypad=keypad, rng=rng, lenient_log=cfg["lenient_log"])


def run_bytes(
    rom: bytes,
    config: dict[str, Any] | None,
    display: Display | None = None,
    keypad: Keypad | None = None,
) -> tuple[int, str, ControlUnit]:
    """Load `rom`, run it under `config` and return (ticks, state, control unit)."""
    cfg = load_config(config)
    cu = build_control_unit(cfg, display=display, keypad=keypad)
    cu.load_program(rom, cfg["load_address"])
    ticks, state = cu.run(tick_limit=cfg["tick_limit"], pause_tick=cfg["pause_tick"], cpu_hz=cfg["cpu_hz"])
    return ticks, state, cu


def main(argv: list[str] | None = None) -> int:
    """Command line entry point. Returns the process exit code."""
    from assembler import AssemblyError, assemble_source

    ap = argparse.ArgumentParser(
        description="CHIP-8 runner. Accepts assembly source (.asm) or a raw ROM image. "
        "Key input can be provided via --input-schedule (tick key [down|up] per line)."
    )
    ap.add_argument("program", help="program.asm or program.ch8 (raw ROM image).")
    ap.add_argument(
        "--input-schedule",
        help="key schedule file. Each non-empty line: '<tick> <key> [down|up]'",
        default=None,
    )
    ap.add_argument("--config", help="path to yaml config", default=None)
    ap.add_argument("--debug", action="store_true", help="enable debug logging to logfile (per-step trace).")
    ap.add_argument("--logfile", default=LOGFILE, help="path to processor log")
    ap.add_argument("--console", action="store_true", help="also echo logs to console (only when --debug)")
    ap.add_argument("--screen", action="store_true", help="print the final screen contents")
    args = ap.parse_args(argv)

    init_logging(logfile=args.logfile, debug=args.debug, console=args.console)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print("Bad config:", e)
        return 2

    sched: list[tuple[int, int, bool]] = []
    if args.input_schedule:
        if not Path(args.input_schedule).exists():
            print("Input schedule file not found:", args.input_schedule)
            return 2
        try:
            sched = parse_schedule_file(args.input_schedule)
        except ValueError as e:
            print("Bad input schedule:", e)
            return 2
        logging.debug("CLI: parsed schedule from %s: %r", args.input_schedule, sched)

    program = Path(args.program)
    if not program.exists():
        print("Program file not found:", args.program)
        return 2
    if program.suffix == ".asm":
        try:
            rom = assemble_source(program.read_text(encoding="utf-8"), origin=cfg["load_address"])
        except AssemblyError as e:
            print("Assembly failed:", e)
            return 2
    else:
        rom = program.read_bytes()

    screen = FrameBuffer()
    try:
        ticks, state, cu = run_bytes(rom, cfg, display=screen, keypad=ScriptedKeypad(sched))
    except EmulatorError as e:
        logging.error("Emulation error: %s", e)
        print("Emulation error:", e, file=sys.stderr)
        return 1

    if logging.getLogger().getEffectiveLevel() == logging.DEBUG:
        _write_debug_out_files(rom, cfg["load_address"], Path(args.logfile).parent)

    if args.screen:
        sys.stdout.write(screen.render())
        sys.stdout.write("\n")
    regs = cu.dp.regs
    sys.stdout.write("V: " + " ".join(f"{b:02X}" for b in regs.snapshot()) + f" I: {regs.I:03X} PC: {regs.PC:03X}\n")
    sys.stdout.write(f"STATE: {state}\n")
    sys.stdout.write(f"TICKS: {ticks}\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
