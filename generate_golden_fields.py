#!/usr/bin/env python3
"""
Generate out_code (!!binary) and out_code_hex for a golden YAML record.
Usage: python generate_golden_fields.py path/to/golden.yaml
"""

from __future__ import annotations

import os
import sys
from typing import Any

import yaml

from assembler import assemble_source
from isa import PROGRAM_BASE, listing


def build_code_hex(rom: bytes, origin: int = PROGRAM_BASE) -> str:
    return "\n".join(listing(rom, origin)) + "\n"


def fill_fields(doc: dict[str, Any]) -> dict[str, Any]:
    """Assemble doc["source"] and store the ROM and its listing under expect."""
    src = doc.get("source")
    if not src:
        raise ValueError("No 'source' found in YAML - nothing to assemble")

    origin = int((doc.get("config") or {}).get("load_address", PROGRAM_BASE))
    rom = assemble_source(src, origin=origin)

    target = doc.setdefault("expect", {})
    target["out_code"] = rom  # bytes -> yaml !!binary
    target["out_code_hex"] = build_code_hex(rom, origin)
    return doc


def main(path: str) -> None:
    if not os.path.exists(path):
        print("File not found:", path)
        sys.exit(2)

    with open(path, encoding="utf-8") as f:
        doc = yaml.safe_load(f) or {}

    try:
        fill_fields(doc)
    except ValueError as e:
        print(e)
        sys.exit(2)

    # write back YAML (use block style where possible)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(doc, f, default_flow_style=False, sort_keys=False, allow_unicode=True)

    print(f"Updated {path} with out_code (!!binary) and out_code_hex (text).")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: generate_golden_fields.py path/to/golden.yaml")
        sys.exit(1)
    main(sys.argv[1])
