"""Golden-test runner for the assembler -> engine pipeline.

This test loads golden YAML records, assembles their source, runs it on the
engine with a framebuffer and a scripted keypad, then compares the listing,
final machine state, screen and trace log against the expectations.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import pytest

import processor
from assembler import assemble_source
from config import load_config
from devices import FrameBuffer, ScriptedKeypad
from generate_golden_fields import build_code_hex


def _schedule(golden: dict[str, Any]) -> list[tuple[int, int, bool]]:
    events = []
    for e in golden.get("input_schedule") or []:
        tick, key = int(e[0]), int(e[1])
        down = bool(e[2]) if len(e) > 2 else True
        events.append((tick, key, down))
    return events


def _close_logging() -> None:
    root = logging.getLogger()
    for h in list(root.handlers):
        h.flush()
        h.close()
        root.removeHandler(h)


def _check_state(golden: dict[str, Any], cu: processor.ControlUnit, screen: FrameBuffer) -> None:
    expect = golden.get("expect") or {}
    regs = cu.dp.regs

    if "pc" in expect:
        assert regs.PC == int(expect["pc"]), f"PC mismatch: got {regs.PC:#05x} expected {int(expect['pc']):#05x}"
    if "index" in expect:
        assert regs.I == int(expect["index"]), f"I mismatch: got {regs.I:#05x}"
    if "stack_depth" in expect:
        assert cu.dp.stack.depth == int(expect["stack_depth"])
    if "delay" in expect:
        assert cu.dp.timers.delay == int(expect["delay"])

    for name, value in (expect.get("registers") or {}).items():
        idx = int(str(name)[1:], 16)
        assert regs.get(idx) == int(value), f"{name} mismatch: got {regs.get(idx)} expected {value}"

    for addr, value in (expect.get("memory") or {}).items():
        got = cu.dp.memory.read_byte(int(addr))
        assert got == int(value), f"memory[{int(addr):#05x}] mismatch: got {got} expected {value}"

    rows = screen.render().splitlines()
    for row, prefix in (expect.get("screen_rows") or {}).items():
        assert rows[int(row)].startswith(prefix), f"screen row {row} mismatch:\n{rows[int(row)]}\n{prefix}"


@pytest.mark.golden_test("golden/*.yaml")
def test_assembler_and_engine(golden: Any, tmp_path: Path) -> None:
    """Run one golden record: assemble, run and compare outputs."""
    assert "__yaml_load_error__" not in golden, golden.get("__yaml_load_error__")

    cfg = load_config(golden.get("config") or {})
    rom = assemble_source(golden["source"], origin=cfg["load_address"])
    expect = golden.get("expect") or {}

    # 1) listing and, if recorded, the raw bytes
    if "out_code_hex" in expect:
        got = build_code_hex(rom, cfg["load_address"]).strip()
        assert got == expect["out_code_hex"].strip(), f"code hex mismatch\n--- got ---\n{got}"
    if "out_code" in expect:
        assert bytes(expect["out_code"]) == rom, "machine code bytes mismatch"

    # 2) run with debug logging into tmp
    log_path = tmp_path / "processor.log"
    processor.init_logging(logfile=str(log_path), debug=True, console=False)
    screen = FrameBuffer()
    keypad = ScriptedKeypad(_schedule(golden))
    cu = processor.build_control_unit(cfg, display=screen, keypad=keypad)
    cu.load_program(rom, cfg["load_address"])
    try:
        if "error" in expect:
            err_cls = getattr(processor, expect["error"])
            with pytest.raises(err_cls):
                cu.run(tick_limit=cfg["tick_limit"], pause_tick=cfg["pause_tick"], cpu_hz=cfg["cpu_hz"])
            assert cu.state is processor.EngineState.HALTED
        else:
            ticks, state = cu.run(tick_limit=cfg["tick_limit"], pause_tick=cfg["pause_tick"], cpu_hz=cfg["cpu_hz"])
            if "state" in expect:
                assert state == expect["state"], f"state mismatch: got {state} expected {expect['state']}"
            if "ticks" in expect:
                assert ticks == int(expect["ticks"]), f"ticks mismatch: got {ticks} expected {expect['ticks']}"
        processor._write_debug_out_files(rom, cfg["load_address"], tmp_path)
    finally:
        _close_logging()

    # 3) machine state and screen
    _check_state(golden, cu, screen)

    # 4) trace log and debug artifacts
    log_text = log_path.read_text(encoding="utf-8")
    assert "INSTR:" in log_text
    assert (tmp_path / "out.bin").read_bytes() == rom
    listing_text = (tmp_path / "out.hex").read_text(encoding="utf-8")
    assert listing_text.strip() == build_code_hex(rom, cfg["load_address"]).strip()


def test_golden_files_present() -> None:
    root = Path(__file__).resolve().parent.parent
    assert sorted(root.glob("golden/*.yaml")), "no golden records found"
