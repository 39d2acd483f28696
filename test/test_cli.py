"""Command line and golden-field helper tests."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

import processor
from generate_golden_fields import fill_fields


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        if h not in handlers:
            h.close()
            root.removeHandler(h)
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)


def test_main_runs_assembly(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    src = tmp_path / "prog.asm"
    src.write_text("LD V0, 0x2A\nLD I, 0x123\nhalt: JP halt\n", encoding="utf-8")
    code = processor.main([str(src), "--logfile", str(tmp_path / "run.log")])
    out = capsys.readouterr().out.splitlines()
    assert code == 0
    assert out[0].startswith("V: 2A 00")
    assert out[0].endswith("I: 123 PC: 204")
    assert out[1] == "STATE: halted"
    assert out[2] == "TICKS: 3"


def test_main_debug_writes_trace_and_out_files(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    rom = tmp_path / "prog.ch8"
    rom.write_bytes(bytes.fromhex("A000 6000 6100 D015 1208"))
    log = tmp_path / "run.log"
    code = processor.main([str(rom), "--debug", "--screen", "--logfile", str(log)])
    out = capsys.readouterr().out
    assert code == 0
    # glyph "0" top row
    assert out.splitlines()[0].startswith("####....")
    assert "INSTR: DRW V0, V1, 5" in log.read_text(encoding="utf-8")
    assert (tmp_path / "out.bin").read_bytes() == rom.read_bytes()
    assert (tmp_path / "out.hex").read_text(encoding="utf-8").startswith("200 - A000 - LD I, 0x000")


def test_main_with_schedule(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    src = tmp_path / "wait.asm"
    src.write_text("LD V7, K\nhalt: JP halt\n", encoding="utf-8")
    sched = tmp_path / "keys.txt"
    sched.write_text("# press C\n2 c\n", encoding="utf-8")
    code = processor.main([str(src), "--input-schedule", str(sched), "--logfile", str(tmp_path / "run.log")])
    out = capsys.readouterr().out
    assert code == 0
    assert "STATE: halted" in out
    assert out.startswith("V: 00 00 00 00 00 00 00 0C")


def test_main_reports_emulation_errors(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    rom = tmp_path / "bad.ch8"
    rom.write_bytes(bytes.fromhex("9001"))
    code = processor.main([str(rom), "--logfile", str(tmp_path / "run.log")])
    assert code == 1
    assert "illegal instruction 9001 at 0x200" in capsys.readouterr().err


@pytest.mark.parametrize(
    ("files", "extra", "message"),
    [
        ({"p.asm": "LD V0\n"}, [], "Assembly failed"),
        ({}, [], "Program file not found"),
        ({"p.asm": "CLS\n", "c.yaml": "cpu_hz: 0\n"}, ["--config", "c.yaml"], "Bad config"),
        ({"p.asm": "CLS\n", "k.txt": "1 Z\n"}, ["--input-schedule", "k.txt"], "Bad input schedule"),
        ({"p.asm": "CLS\n"}, ["--input-schedule", "k.txt"], "Input schedule file not found"),
    ],
)
def test_main_usage_errors(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], files: dict[str, str], extra: list[str], message: str
) -> None:
    for name, text in files.items():
        (tmp_path / name).write_text(text, encoding="utf-8")
    args = [str(tmp_path / "p.asm"), "--logfile", str(tmp_path / "run.log")]
    args += [str(tmp_path / a) if a.endswith((".yaml", ".txt")) else a for a in extra]
    assert processor.main(args) == 2
    assert message in capsys.readouterr().out


def test_parse_schedule_file(tmp_path: Path) -> None:
    p = tmp_path / "keys.txt"
    p.write_text("# comment\n\n3 a\n10 A up\n12 f down\n", encoding="utf-8")
    assert processor.parse_schedule_file(str(p)) == [(3, 0xA, True), (10, 0xA, False), (12, 0xF, True)]

    p.write_text("3 a sideways\n", encoding="utf-8")
    with pytest.raises(ValueError):
        processor.parse_schedule_file(str(p))


def test_fill_fields() -> None:
    doc = {"source": "CLS\nJP 0x202\n", "config": {"load_address": 0x200}}
    fill_fields(doc)
    assert doc["expect"]["out_code"] == b"\x00\xe0\x12\x02"
    assert doc["expect"]["out_code_hex"] == "200 - 00E0 - CLS\n202 - 1202 - JP 0x202\n"
    with pytest.raises(ValueError):
        fill_fields({})
