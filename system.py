"""
CHIP-8 System
=============
Wires the execution engine (chip8.py) to its host collaborators:

  - a display sink that receives the framebuffer after every draw, and that
    doubles as the input source (keypad state + host hotkeys)
  - an audio sink that gets a boolean "tone on" signal
  - the host loop control surface: speed multiplier, pause, debug trace,
    reset

One host frame runs ``speed`` instructions followed by one timer advance
with the frame's wall-clock delta.  Engine faults never escape a frame:
they are reported, stored in ``last_fault`` and the machine is paused.
"""

from __future__ import annotations
import random
from pathlib import Path
from typing import Optional, Protocol, Sequence, TYPE_CHECKING

from chip8 import Chip8, Chip8Error, Quirks, PROGRAM_START

if TYPE_CHECKING:
    import numpy as np
    from devices import Framebuffer, Keypad

FRAME_RATE = 60
FRAME_TIME = 1.0 / FRAME_RATE

DEFAULT_SPEED = 8
MIN_SPEED = 1
MAX_SPEED = 255

# Host commands produced by the input source
CMD_QUIT         = "quit"
CMD_SPEED_UP     = "speed_up"
CMD_SPEED_DOWN   = "speed_down"
CMD_DEBUG        = "debug"
CMD_RESET        = "reset"
CMD_PAUSE_TOGGLE = "pause_toggle"
CMD_PAUSE        = "pause"
CMD_UNPAUSE      = "unpause"


class DisplaySink(Protocol):
    def draw(self, pixels: "np.ndarray") -> None: ...
    def poll(self, keypad: "Keypad") -> list[str]: ...
    def tick(self, fps: int) -> float: ...


class AudioSink(Protocol):
    def set_tone(self, on: bool) -> None: ...


class Chip8System:
    """A CHIP-8 machine plus the knobs the host loop turns."""

    def __init__(self, speed: int = DEFAULT_SPEED,
                 quirks: Optional[Quirks] = None,
                 debug: bool = False,
                 display: Optional[DisplaySink] = None,
                 audio: Optional[AudioSink] = None,
                 rng: Optional[random.Random] = None):
        self.cpu = Chip8(quirks=quirks, rng=rng)
        self.cpu.debug = debug
        self.cpu.on_draw = self._on_draw
        self.speed = self._clamp_speed(speed)
        self.paused = False
        self.display = display
        self.audio = audio

        self.rom_name: Optional[str] = None
        self.frame_count: int = 0
        self.last_fault: Optional[Chip8Error] = None
        self._tone = False

        # Once-per-second status line (debug only)
        self._fps_elapsed = 0.0
        self._fps_frames = 0

    # -- Properties --

    @property
    def debug(self) -> bool:
        return self.cpu.debug

    @debug.setter
    def debug(self, on: bool):
        self.cpu.debug = bool(on)

    @property
    def tone(self) -> bool:
        return self._tone

    @staticmethod
    def _clamp_speed(speed: int) -> int:
        return max(MIN_SPEED, min(MAX_SPEED, int(speed)))

    # -- Loading --

    def load_rom(self, data: bytes | bytearray, name: Optional[str] = None) -> int:
        size = self.cpu.load_rom(data)
        self.rom_name = name
        return size

    def load_file(self, path: str | Path) -> int:
        path = Path(path)
        size = self.load_rom(path.read_bytes(), name=path.name)
        print(f"Loaded ROM: {path} ({size} bytes)")
        return size

    # -- Sinks --

    def _on_draw(self, fb: "Framebuffer"):
        if self.display is not None:
            self.display.draw(fb.pixels)

    def _update_audio(self):
        tone = self.cpu.tone
        if tone != self._tone:
            self._tone = tone
            if self.audio is not None:
                self.audio.set_tone(tone)

    # -- Input --

    def set_keys(self, states: Sequence[bool]):
        self.cpu.keypad.set_state(states)

    # -- Control surface --

    def set_speed(self, speed: int):
        self.speed = self._clamp_speed(speed)
        print(f"Speed: {self.speed} ({self.speed * FRAME_RATE} Hz)")

    def speed_up(self):
        self.set_speed(self.speed + 1)

    def speed_down(self):
        self.set_speed(self.speed - 1)

    def toggle_debug(self):
        self.debug = not self.debug

    def toggle_pause(self):
        self.paused = not self.paused

    def reset(self):
        """Power-on reset, keeping the loaded ROM."""
        print("Resetting CPU")
        self.cpu.reset()
        self.paused = False
        self.last_fault = None
        self._on_draw(self.cpu.fb)
        self._update_audio()

    def handle_command(self, cmd: str) -> bool:
        """Apply one host command. Returns False when the host should quit."""
        if cmd == CMD_QUIT:
            return False
        if cmd == CMD_SPEED_UP:
            self.speed_up()
        elif cmd == CMD_SPEED_DOWN:
            self.speed_down()
        elif cmd == CMD_DEBUG:
            self.toggle_debug()
        elif cmd == CMD_RESET:
            self.reset()
        elif cmd == CMD_PAUSE_TOGGLE:
            self.toggle_pause()
        elif cmd == CMD_PAUSE:
            self.paused = True
        elif cmd == CMD_UNPAUSE:
            self.paused = False
        return True

    # -- Execution --

    def step(self) -> bool:
        """Execute one instruction with fault containment.

        Returns False if the engine faulted.
        """
        try:
            self.cpu.step()
        except Chip8Error as e:
            self._fault(e)
            return False
        return True

    def _fault(self, e: Chip8Error):
        self.last_fault = e
        self.paused = True
        print(f"[chip8] fault at PC={self.cpu.pc:#05x}: {e} (paused; reset to continue)")

    def run_frame(self, dt: float = FRAME_TIME) -> int:
        """Run one host frame. Returns the number of instructions executed."""
        executed = 0
        if not self.paused:
            for _ in range(self.speed):
                if not self.step():
                    break
                executed += 1
        self.cpu.update_timers(dt)
        self._update_audio()
        self.frame_count += 1
        self._report_fps(dt)
        return executed

    def _report_fps(self, dt: float):
        self._fps_elapsed += dt
        self._fps_frames += 1
        if self._fps_elapsed < 1.0:
            return
        if self.debug:
            state = "Paused" if self.paused else "Running"
            print(f"FPS: {self._fps_frames} | {self.speed}Hz "
                  f"({self.speed * FRAME_RATE}) | {state}")
        self._fps_elapsed = 0.0
        self._fps_frames = 0

    def run(self, max_frames: Optional[int] = None) -> int:
        """Host loop: poll input, run a frame, pace to 60 Hz.

        Stops on a quit command or after `max_frames`. Returns frames run.
        """
        frames = 0
        while max_frames is None or frames < max_frames:
            if self.display is not None:
                for cmd in self.display.poll(self.cpu.keypad):
                    if not self.handle_command(cmd):
                        return frames
                dt = self.display.tick(FRAME_RATE)
            else:
                dt = FRAME_TIME
            self.run_frame(dt)
            frames += 1
        return frames

    # -- Introspection --

    def dump_state(self) -> str:
        cpu = self.cpu
        lines = ["=== Registers ===", cpu.dump_regs(), ""]
        lines.append("=== Machine ===")
        lines.append(f"  ROM: {self.rom_name or '-'} ({cpu.program_size} bytes at {PROGRAM_START:#05x})")
        lines.append(f"  Speed: {self.speed} ({self.speed * FRAME_RATE} Hz)  "
                     f"Paused: {self.paused}  Debug: {self.debug}")
        lines.append(f"  Instructions: {cpu.cycle_count}  Frames: {self.frame_count}  "
                     f"Unknown opcodes: {cpu.unknown_count}")
        lines.append(f"  Keys down: {' '.join(f'{k:X}' for k in cpu.keypad.pressed()) or '-'}  "
                     f"Tone: {'on' if self._tone else 'off'}")
        lines.append(f"  Lit pixels: {cpu.fb.lit_count()}")
        if self.last_fault is not None:
            lines.append(f"  Last fault: {self.last_fault}")
        return "\n".join(lines)
