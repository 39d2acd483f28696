"""Framebuffer and keypad tests."""

from __future__ import annotations

import pytest

from devices import FrameBuffer, NullDisplay, NullKeypad, ScriptedKeypad


def test_draw_xor_and_collision() -> None:
    fb = FrameBuffer()
    assert fb.draw(0, 0, b"\xf0") is False
    assert [fb.pixel(x, 0) for x in range(5)] == [1, 1, 1, 1, 0]
    # drawing the same sprite again erases it and reports the collision
    assert fb.draw(0, 0, b"\xf0") is True
    assert fb.pixel(0, 0) == 0


def test_draw_wraps_edges() -> None:
    fb = FrameBuffer()
    fb.draw(62, 31, b"\xc0\xc0")
    assert fb.pixel(62, 31) == 1
    assert fb.pixel(63, 31) == 1
    assert fb.pixel(62, 0) == 1
    assert fb.pixel(63, 0) == 1
    # start coordinates wrap as well
    fb.clear()
    assert not any(fb.pixels)
    fb.draw(64 + 1, 32 + 2, b"\x80")
    assert fb.pixel(1, 2) == 1


def test_render() -> None:
    fb = FrameBuffer(width=4, height=2)
    fb.draw(1, 1, b"\x80")
    assert fb.render() == "....\n.#.."
    assert fb.render(on="X", off=" ") == "    \n X  "


def test_null_devices() -> None:
    assert NullDisplay().draw(0, 0, b"\xff") is False
    kp = NullKeypad()
    assert kp.is_down(3) is False
    assert kp.wait_for_key() is None


def test_scripted_keypad() -> None:
    kp = ScriptedKeypad([(4, 0xA, False), (2, 0xA, True)])
    kp.advance(1)
    assert not kp.is_down(0xA)
    assert kp.pending()
    kp.advance(2)
    assert kp.is_down(0xA)
    assert kp.wait_for_key() == 0xA
    assert kp.wait_for_key() is None
    kp.advance(4)
    assert not kp.is_down(0xA)
    assert not kp.pending()


def test_released_key_is_not_queued() -> None:
    kp = ScriptedKeypad([(0, 3, True), (1, 3, False), (1, 5, True)])
    kp.advance(0)
    kp.press(3)
    kp.advance(1)
    assert kp.wait_for_key() == 5
    assert kp.wait_for_key() is None
    assert not kp.pending()


def test_scripted_keypad_rejects_bad_keys() -> None:
    with pytest.raises(ValueError):
        ScriptedKeypad([(0, 16, True)])
    with pytest.raises(ValueError):
        ScriptedKeypad().press(-1)
