"""
CHIP-8 Peripheral / Device Layer
================================
The parts of the machine that sit beside the CPU core:

  Framebuffer    64×32 monochrome pixel grid, written only by sprite XOR
  CountdownTimer 8-bit delay / sound counters decremented at 60 Hz
  Keypad         16 key-pressed flags, filled in by the host each frame

None of these touch windowing, audio or keyboard hardware; the host
collaborators in display.py and sound.py read and feed them.
"""

from __future__ import annotations
from typing import Optional, Sequence

import numpy as np

# Classic display resolution
WIDTH  = 64
HEIGHT = 32

# Sprites are always one byte wide
SPRITE_WIDTH = 8
MAX_SPRITE_ROWS = 15

TIMER_HZ = 60
TIMER_PERIOD = 1.0 / TIMER_HZ
_PHASE_EPSILON = 1e-9

NUM_KEYS = 16

_BIT_OFFSETS = np.arange(SPRITE_WIDTH)


# ---------------------------------------------------------------------------
#  Device base class
# ---------------------------------------------------------------------------

class Device:
    """A piece of machine state owned by the engine and cleared on reset."""

    def __init__(self, name: str):
        self.name = name

    def reset(self):
        """Return to the power-on state."""
        pass


# ---------------------------------------------------------------------------
#  Framebuffer
# ---------------------------------------------------------------------------

class Framebuffer(Device):
    """Boolean pixel grid indexed ``pixels[y, x]``.

    Both axes wrap independently: a sprite that runs off the right edge
    continues at column 0 of the same row, and one that runs off the bottom
    continues at row 0.
    """

    def __init__(self, width: int = WIDTH, height: int = HEIGHT):
        super().__init__("Framebuffer")
        if width < SPRITE_WIDTH or height < MAX_SPRITE_ROWS:
            raise ValueError(
                f"Framebuffer must be at least {SPRITE_WIDTH}x{MAX_SPRITE_ROWS}, "
                f"got {width}x{height}")
        self.width = width
        self.height = height
        self.pixels = np.zeros((height, width), dtype=bool)

    def reset(self):
        self.clear()

    def clear(self):
        self.pixels[:, :] = False

    def draw(self, x: int, y: int, sprite: bytes | bytearray) -> bool:
        """XOR an 8-pixel-wide sprite onto the grid at (x, y).

        Returns True if any lit pixel was turned off.
        """
        rows = len(sprite)
        if rows == 0:
            return False
        bits = np.unpackbits(np.frombuffer(bytes(sprite), dtype=np.uint8))
        bits = bits.reshape(rows, SPRITE_WIDTH).astype(bool)

        ys = (y + np.arange(rows)) % self.height
        xs = (x + _BIT_OFFSETS) % self.width
        window = np.ix_(ys, xs)

        region = self.pixels[window]
        collision = bool(np.any(region & bits))
        self.pixels[window] = region ^ bits
        return collision

    def lit_count(self) -> int:
        return int(np.count_nonzero(self.pixels))

    def is_blank(self) -> bool:
        return not self.pixels.any()

    def to_text(self, on: str = "#", off: str = ".") -> str:
        """Render the grid as text, one line per row."""
        return "\n".join(
            "".join(on if p else off for p in row) for row in self.pixels
        )


# ---------------------------------------------------------------------------
#  Countdown timers
# ---------------------------------------------------------------------------

class CountdownTimer(Device):
    """8-bit counter that decays by one every 1/60 s of elapsed host time.

    Elapsed time accumulates in ``phase``.  Each whole period consumed
    decrements the counter and leaves the remainder in the accumulator, so
    irregular frame deltas still average out to 60 Hz.  While the counter is
    zero, ``advance`` does nothing and the accumulator is left alone.
    """

    def __init__(self, name: str):
        super().__init__(name)
        self.value: int = 0
        self.phase: float = 0.0

    def reset(self):
        self.value = 0
        self.phase = 0.0

    def load(self, value: int):
        self.value = value & 0xFF

    @property
    def active(self) -> bool:
        return self.value > 0

    def advance(self, dt: float) -> int:
        """Feed `dt` seconds of wall-clock time. Returns decrements applied."""
        if self.value == 0:
            return 0
        self.phase += dt
        steps = 0
        while self.value > 0 and self.phase >= TIMER_PERIOD - _PHASE_EPSILON:
            self.value -= 1
            self.phase -= TIMER_PERIOD
            steps += 1
        if self.value == 0 or self.phase < 0.0:
            self.phase = 0.0
        return steps


# ---------------------------------------------------------------------------
#  Keypad
# ---------------------------------------------------------------------------

class Keypad(Device):
    """Sixteen key flags, 0x0-0xF.  Written by the input source only."""

    def __init__(self):
        super().__init__("Keypad")
        self.keys: list[bool] = [False] * NUM_KEYS

    def reset(self):
        self.keys = [False] * NUM_KEYS

    def set_state(self, states: Sequence[bool]):
        """Replace all sixteen flags at once (one call per host frame)."""
        if len(states) != NUM_KEYS:
            raise ValueError(f"Keypad state needs {NUM_KEYS} entries, got {len(states)}")
        self.keys = [bool(s) for s in states]

    def press(self, key: int):
        self.keys[key & 0xF] = True

    def release(self, key: int):
        self.keys[key & 0xF] = False

    def is_pressed(self, key: int) -> bool:
        return self.keys[key & 0xF]

    def lowest_pressed(self) -> Optional[int]:
        for k, down in enumerate(self.keys):
            if down:
                return k
        return None

    def pressed(self) -> list[int]:
        return [k for k, down in enumerate(self.keys) if down]
