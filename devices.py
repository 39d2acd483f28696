"""Display and keypad collaborators used by the control unit.

The control unit only relies on the `Display` and `Keypad` protocols. The
null implementations keep the core usable on its own; `FrameBuffer` and
`ScriptedKeypad` are the headless devices used by the CLI and golden tests.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Protocol

SCREEN_WIDTH = 64
SCREEN_HEIGHT = 32
KEY_COUNT = 16


class Display(Protocol):
    def clear(self) -> None: ...

    def draw(self, x: int, y: int, sprite: bytes) -> bool: ...


class Keypad(Protocol):
    def is_down(self, key: int) -> bool: ...

    def wait_for_key(self) -> int | None:
        """Return a key pressed since the last call, or None. Must not block."""
        ...


class NullDisplay:
    """Display that ignores everything and never reports a collision."""

    def clear(self) -> None:
        pass

    def draw(self, x: int, y: int, sprite: bytes) -> bool:
        return False


class NullKeypad:
    """Keypad with no keys; a key wait on it never completes."""

    def is_down(self, key: int) -> bool:
        return False

    def wait_for_key(self) -> int | None:
        return None


class FrameBuffer:
    """Monochrome 64x32 framebuffer with XOR sprite drawing.

    Sprites wrap around both screen edges. `draw` reports a collision when
    any lit pixel is switched off.
    """

    width: int
    height: int
    pixels: list[int]

    def __init__(self, width: int = SCREEN_WIDTH, height: int = SCREEN_HEIGHT) -> None:
        self.width = width
        self.height = height
        self.pixels = [0] * (width * height)

    def clear(self) -> None:
        self.pixels = [0] * (self.width * self.height)

    def draw(self, x: int, y: int, sprite: bytes) -> bool:
        x %= self.width
        y %= self.height
        collision = 0
        for row, bits in enumerate(sprite):
            if bits == 0:
                continue
            base = ((y + row) % self.height) * self.width
            for col in range(8):
                if bits & (0x80 >> col):
                    idx = base + (x + col) % self.width
                    collision |= self.pixels[idx]
                    self.pixels[idx] ^= 1
        return bool(collision)

    def pixel(self, x: int, y: int) -> int:
        return self.pixels[(y % self.height) * self.width + (x % self.width)]

    def render(self, on: str = "#", off: str = ".") -> str:
        """Return the screen as text, one line per row."""
        rows = []
        for y in range(self.height):
            line = self.pixels[y * self.width : (y + 1) * self.width]
            rows.append("".join(on if p else off for p in line))
        return "\n".join(rows)


class ScriptedKeypad:
    """Keypad driven by a schedule of (tick, key, down) events.

    The run loop calls `advance(tick)` before every step; events whose tick
    has been reached are applied in order. A press stays queued for
    `wait_for_key` until it is consumed or the key is released.
    """

    def __init__(self, schedule: list[tuple[int, int, bool]] | None = None) -> None:
        self.keys = [False] * KEY_COUNT
        self.schedule: deque[tuple[int, int, bool]] = deque(sorted(schedule or [], key=lambda e: e[0]))
        self._presses: deque[int] = deque()
        for _, key, _ in self.schedule:
            _check_key(key)

    def press(self, key: int) -> None:
        _check_key(key)
        self.keys[key] = True
        self._presses.append(key)

    def release(self, key: int) -> None:
        _check_key(key)
        self.keys[key] = False
        # a released key no longer completes a later key wait
        if key in self._presses:
            self._presses = deque(k for k in self._presses if k != key)

    def advance(self, tick: int) -> None:
        while self.schedule and self.schedule[0][0] <= tick:
            t, key, down = self.schedule.popleft()
            logging.debug("[tick %d] key %X %s (scheduled for %d)", tick, key, "down" if down else "up", t)
            if down:
                self.press(key)
            else:
                self.release(key)

    def pending(self) -> bool:
        """Return True while scheduled events or unconsumed presses remain."""
        return bool(self.schedule or self._presses)

    def is_down(self, key: int) -> bool:
        return self.keys[key]

    def wait_for_key(self) -> int | None:
        if self._presses:
            return self._presses.popleft()
        return None


def _check_key(key: int) -> None:
    if not 0 <= key < KEY_COUNT:
        err = f"key {key} out of range 0..{KEY_COUNT - 1}"
        raise ValueError(err)
