"""
CHIP-8 Display / Input
======================
pygame window that shows the 64×32 framebuffer and polls the keyboard.

The engine hands every new frame to ``draw()``; the window repaints once
per host frame in ``tick()``, scaled by the largest whole factor that fits
and centred on a black border.  ``poll()`` fills the keypad from the
current keyboard state and turns hotkeys into host commands:

    Esc / close   quit            F3   reset
    =             speed up        F8   pause / resume
    -             slow down       F12  debug trace on / off

Usage (programmatic):
    disp = Chip8Display(scale=10, fg="#8bac0f", bg="#0f380f")
    disp.start()
    system = Chip8System(display=disp)
    system.run()
    disp.stop()

HeadlessDisplay implements the same interface without pygame and keeps
copies of drawn frames, for tests and batch runs.
"""

from __future__ import annotations

import os
from collections import deque
from typing import Optional, TYPE_CHECKING

import numpy as np

from devices import WIDTH, HEIGHT, NUM_KEYS
from keymaps import DEFAULT_KEYMAP, KeymapError
from system import (
    CMD_QUIT, CMD_SPEED_UP, CMD_SPEED_DOWN, CMD_DEBUG, CMD_RESET,
    CMD_PAUSE_TOGGLE, CMD_PAUSE, CMD_UNPAUSE, FRAME_TIME,
)

if TYPE_CHECKING:
    from devices import Keypad

DEFAULT_FG = "#8bac0f"
DEFAULT_BG = "#0f380f"
DEFAULT_SCALE = 10
BORDER_COLOR = (0, 0, 0)


class DisplayError(RuntimeError):
    pass


def parse_color(text: str) -> tuple[int, int, int]:
    """Parse '#RRGGBB' (leading '#' optional) into an (r, g, b) tuple."""
    hex_part = text.strip().lstrip("#")
    if len(hex_part) != 6:
        raise ValueError(f"Invalid colour {text!r}: expected #RRGGBB")
    try:
        return (int(hex_part[0:2], 16), int(hex_part[2:4], 16),
                int(hex_part[4:6], 16))
    except ValueError:
        raise ValueError(f"Invalid colour {text!r}: expected #RRGGBB") from None


def frame_to_rgb(pixels: np.ndarray, fg: tuple[int, int, int],
                 bg: tuple[int, int, int]) -> np.ndarray:
    """Map a (height, width) bool grid to a (width, height, 3) uint8 array.

    The transposed layout is what pygame.surfarray expects.
    """
    lit = pixels.T[:, :, np.newaxis]
    return np.where(lit, np.array(fg, dtype=np.uint8),
                    np.array(bg, dtype=np.uint8)).astype(np.uint8)


# ── pygame window ─────────────────────────────────────────────────────


class Chip8Display:
    """pygame display sink and input source."""

    def __init__(self, scale: int = DEFAULT_SCALE,
                 fg: str = DEFAULT_FG, bg: str = DEFAULT_BG,
                 fullscreen: bool = False, software: bool = False,
                 keymap: Optional[dict[str, int]] = None,
                 title: str = "Chip8",
                 width: int = WIDTH, height: int = HEIGHT):
        self.scale = max(1, scale)
        self.fg = parse_color(fg)
        self.bg = parse_color(bg)
        self.fullscreen = fullscreen
        self.software = software
        self.keymap = dict(keymap or DEFAULT_KEYMAP)
        self.title = title
        self.width = width
        self.height = height

        self._pg = None
        self._screen = None
        self._surface = None
        self._clock = None
        self._key_codes: list[tuple[int, int]] = []
        self._frame = np.zeros((height, width), dtype=bool)
        self._dirty = True

    # -- public API -------------------------------------------------------

    def start(self):
        """Open the window. Raises DisplayError if pygame cannot."""
        if self.software:
            os.environ.setdefault("SDL_RENDER_DRIVER", "software")
            os.environ.setdefault("SDL_FRAMEBUFFER_ACCELERATION", "0")
        try:
            import pygame
        except ImportError as e:
            raise DisplayError(f"pygame not available: {e}") from e

        try:
            pygame.display.init()
            pygame.display.set_caption(self.title)
            flags = pygame.RESIZABLE
            if self.fullscreen:
                flags |= pygame.FULLSCREEN
                size = (0, 0)
            else:
                size = (self.width * self.scale, self.height * self.scale)
            self._screen = pygame.display.set_mode(size, flags)
        except pygame.error as e:
            raise DisplayError(f"Failed to create window: {e}") from e

        self._pg = pygame
        self._surface = pygame.Surface((self.width, self.height))
        self._clock = pygame.time.Clock()
        self._key_codes = self._resolve_keymap(pygame)
        self._dirty = True

    def stop(self):
        if self._pg is not None:
            self._pg.display.quit()
            self._pg = None
            self._screen = None

    @property
    def running(self) -> bool:
        return self._screen is not None

    def draw(self, pixels: np.ndarray):
        self._frame = pixels.copy()
        self._dirty = True

    def poll(self, keypad: "Keypad") -> list[str]:
        """Drain window events, refresh the keypad, return host commands."""
        pygame = self._pg
        commands: list[str] = []
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                commands.append(CMD_QUIT)
            elif event.type == pygame.KEYDOWN:
                cmd = self._hotkey(pygame, event.key)
                if cmd is not None:
                    commands.append(cmd)
            elif event.type == pygame.WINDOWFOCUSLOST:
                commands.append(CMD_PAUSE)
            elif event.type == pygame.WINDOWFOCUSGAINED:
                commands.append(CMD_UNPAUSE)
            elif event.type in (pygame.VIDEORESIZE, pygame.WINDOWEXPOSED):
                self._dirty = True

        pressed = pygame.key.get_pressed()
        states = [False] * NUM_KEYS
        for code, key in self._key_codes:
            if pressed[code]:
                states[key] = True
        keypad.set_state(states)
        return commands

    def tick(self, fps: int) -> float:
        """Repaint if needed and wait out the frame. Returns elapsed seconds."""
        if self._dirty:
            self._present()
        return self._clock.tick(fps) / 1000.0

    # -- internals --------------------------------------------------------

    def _resolve_keymap(self, pygame) -> list[tuple[int, int]]:
        codes = []
        for name, key in self.keymap.items():
            try:
                codes.append((pygame.key.key_code(name), key))
            except ValueError:
                raise KeymapError(f"Unknown key name in keymap: {name!r}") from None
        return codes

    @staticmethod
    def _hotkey(pygame, key: int) -> Optional[str]:
        return {
            pygame.K_ESCAPE: CMD_QUIT,
            pygame.K_EQUALS: CMD_SPEED_UP,
            pygame.K_MINUS:  CMD_SPEED_DOWN,
            pygame.K_F12:    CMD_DEBUG,
            pygame.K_F3:     CMD_RESET,
            pygame.K_F8:     CMD_PAUSE_TOGGLE,
        }.get(key)

    def _present(self):
        pygame = self._pg
        screen = self._screen
        win_w, win_h = screen.get_size()
        factor = max(1, min(win_w // self.width, win_h // self.height))
        out_w, out_h = self.width * factor, self.height * factor

        pygame.surfarray.blit_array(self._surface,
                                    frame_to_rgb(self._frame, self.fg, self.bg))
        scaled = pygame.transform.scale(self._surface, (out_w, out_h))

        screen.fill(BORDER_COLOR)
        screen.blit(scaled, ((win_w - out_w) // 2, (win_h - out_h) // 2))
        pygame.display.flip()
        self._dirty = False


# ── Headless ──────────────────────────────────────────────────────────


class HeadlessDisplay:
    """No-op display for tests and batch runs; records framebuffer snapshots."""

    def __init__(self, max_snapshots: int = 256):
        self.snapshots: deque[np.ndarray] = deque(maxlen=max_snapshots)
        self.draw_count = 0
        self.pending: list[str] = []

    def start(self):
        pass

    def stop(self):
        pass

    @property
    def running(self) -> bool:
        return False

    def draw(self, pixels: np.ndarray):
        self.snapshots.append(pixels.copy())
        self.draw_count += 1

    def poll(self, keypad: "Keypad") -> list[str]:
        commands, self.pending = self.pending, []
        return commands

    def tick(self, fps: int) -> float:
        return 1.0 / fps if fps else FRAME_TIME

    @property
    def last_frame(self) -> Optional[np.ndarray]:
        return self.snapshots[-1] if self.snapshots else None
