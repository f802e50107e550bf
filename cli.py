#!/usr/bin/env python3
"""
CHIP-8 Emulator / Monitor CLI
=============================
Command-line front end for the CHIP-8 system emulator.

Provides:
  - Windowed play (pygame) with speed, colour and fullscreen options
  - Headless runs for a fixed number of frames, printing the final screen
  - ROM disassembly listing
  - An interactive monitor: step / run / breakpoints, register and memory
    inspection, keypad control, reset

Usage:
  python cli.py ROM [--speed N] [--fullscreen] [--bg #RRGGBB] [--fg #RRGGBB]
                    [--software] [--debug] [--scale N] [--quirks PRESET]
                    [--keymap FILE] [--headless] [--frames N] [--seed N]
                    [--disasm] [--monitor]
"""

from __future__ import annotations
import argparse
import cmd
import random
import shlex
import sys
from typing import Optional

from chip8 import (
    Chip8Error, RomTooLargeError, QUIRK_PRESETS, PROGRAM_START, MEM_SIZE,
)
from decoder import disasm_one, disasm_range
from display import (
    Chip8Display, HeadlessDisplay, DisplayError, parse_color,
    DEFAULT_FG, DEFAULT_BG, DEFAULT_SCALE,
)
from keymaps import KeymapError, load_keymap
from sound import Beeper, NullBeeper, AudioError
from system import Chip8System, DEFAULT_SPEED, FRAME_TIME

HEADLESS_FRAMES = 600


# ---------------------------------------------------------------------------
#  Interactive monitor
# ---------------------------------------------------------------------------

class Chip8Monitor(cmd.Cmd):
    """Interactive monitor for the CHIP-8 system."""

    intro = (
        "\n"
        "CHIP-8 Monitor.  Type 'help' for commands.  'quit' to exit.\n"
    )
    prompt = "C8> "

    def __init__(self, system: Chip8System, stdout=None):
        super().__init__(stdout=stdout)
        self.sys = system
        self.breakpoints: set[int] = set()

    def _print(self, text: str = ""):
        print(text, file=self.stdout)

    # -- Parsing helpers --

    def _parse_addr(self, s: str) -> int:
        """Parse an address (hex with optional 0x prefix, pc, i, or Vx)."""
        s = s.strip().lower()
        cpu = self.sys.cpu
        if s == "pc":
            return cpu.pc
        if s == "i":
            return cpu.i
        if len(s) == 2 and s[0] == "v":
            return cpu.regs[int(s[1], 16)]
        return int(s, 0)

    def _parse_int(self, s: str) -> int:
        return int(s.strip(), 0)

    # ================================================================
    #  Commands
    # ================================================================

    # -- Execution --

    def do_step(self, arg):
        """Step N instructions: step [count]"""
        count = self._parse_int(arg) if arg.strip() else 1
        cpu = self.sys.cpu
        for _ in range(count):
            addr = cpu.pc
            try:
                ins = cpu.step()
            except Chip8Error as e:
                self._print(f"Fault: {e}")
                break
            if ins is None:
                self._print(f"  {addr:#05x}: waiting for key -> V{cpu.waiting_key:X}")
                break
            _, text = disasm_one(cpu.mem, addr)
            self._print(f"  {addr:#05x}: {ins.opcode:04x}  {text}")
    do_s = do_step

    def do_run(self, arg):
        """Run frames until breakpoint/fault/key wait: run [max_frames]
        Each frame is <speed> instructions plus one 1/60 s timer tick."""
        max_frames = self._parse_int(arg) if arg.strip() else 600
        cpu = self.sys.cpu
        # The first instruction runs even when PC sits on a breakpoint
        first = True
        for frame in range(max_frames):
            for _ in range(self.sys.speed):
                if (not first and cpu.pc in self.breakpoints
                        and cpu.waiting_key is None):
                    self._print(f"Breakpoint hit at {cpu.pc:#05x}")
                    return
                first = False
                try:
                    ins = cpu.step()
                except Chip8Error as e:
                    self._print(f"Fault at {cpu.pc:#05x}: {e}")
                    return
                if ins is None:
                    self._print(f"Waiting for key -> V{cpu.waiting_key:X} "
                                f"(use 'key press <n>')")
                    return
            cpu.update_timers(FRAME_TIME)
        self._print(f"Stopped after {max_frames} frames.")
    do_c = do_run

    def do_reset(self, arg):
        """Power-on reset (ROM stays loaded)."""
        self.sys.reset()

    # -- Breakpoints --

    def do_bp(self, arg):
        """Set breakpoint: bp <address>   (no argument lists them)"""
        if not arg.strip():
            if self.breakpoints:
                self._print("Breakpoints:")
                for a in sorted(self.breakpoints):
                    self._print(f"  {a:#05x}")
            else:
                self._print("No breakpoints set.")
            return
        addr = self._parse_addr(arg)
        self.breakpoints.add(addr)
        self._print(f"Breakpoint set at {addr:#05x}")

    def do_bpd(self, arg):
        """Delete breakpoint: bpd <address|all>"""
        if arg.strip().lower() == "all":
            self.breakpoints.clear()
            self._print("All breakpoints cleared.")
            return
        addr = self._parse_addr(arg)
        self.breakpoints.discard(addr)
        self._print(f"Breakpoint at {addr:#05x} removed.")

    # -- Inspection --

    def do_regs(self, arg):
        """Show registers, index, PC, stack and timers."""
        self._print(self.sys.cpu.dump_regs())

    def do_status(self, arg):
        """Show full machine status."""
        self._print(self.sys.dump_state())

    def do_setreg(self, arg):
        """Set register: setreg <V0-VF|i|pc|dt|st> <value>"""
        parts = shlex.split(arg)
        if len(parts) < 2:
            self._print("Usage: setreg <reg> <value>")
            return
        reg_s = parts[0].lower()
        val = self._parse_int(parts[1])
        cpu = self.sys.cpu
        if reg_s == "pc":
            cpu.pc = val & 0xFFF
        elif reg_s == "i":
            cpu.i = val & 0xFFFF
        elif reg_s == "dt":
            cpu.delay_timer = val
        elif reg_s == "st":
            cpu.sound_timer = val
        elif len(reg_s) == 2 and reg_s[0] == "v":
            cpu.regs[int(reg_s[1], 16)] = val & 0xFF
        else:
            self._print("Unknown register.")
            return
        self._print(f"  {reg_s.upper()} = {val:#x}")

    def do_dump(self, arg):
        """Hex dump memory: dump <address> [count]
        Count defaults to 64 bytes."""
        parts = shlex.split(arg)
        if not parts:
            self._print("Usage: dump <address> [count]")
            return
        addr = self._parse_addr(parts[0])
        count = self._parse_int(parts[1]) if len(parts) > 1 else 64
        end = min(addr + count, MEM_SIZE)
        mem = self.sys.cpu.mem

        for row_start in range(addr, end, 16):
            row = mem[row_start:min(row_start + 16, end)]
            hex_bytes = [f"{b:02x}" for b in row] + ["  "] * (16 - len(row))
            hex_str = ' '.join(hex_bytes[:8]) + '  ' + ' '.join(hex_bytes[8:])
            self._print(f"  {row_start:#05x}: {hex_str}")

    def do_setmem(self, arg):
        """Set memory bytes: setmem <address> <byte> [byte] ..."""
        parts = shlex.split(arg)
        if len(parts) < 2:
            self._print("Usage: setmem <addr> <byte...>")
            return
        addr = self._parse_addr(parts[0])
        try:
            for n, tok in enumerate(parts[1:]):
                self.sys.cpu.mem_write8(addr + n, self._parse_int(tok))
        except Chip8Error as e:
            self._print(f"Error: {e}")
            return
        self._print(f"  Wrote {len(parts) - 1} bytes at {addr:#05x}")

    def do_disasm(self, arg):
        """Disassemble: disasm [address] [count]
        Defaults to current PC, 16 instructions."""
        parts = shlex.split(arg)
        cpu = self.sys.cpu
        addr = self._parse_addr(parts[0]) if parts else cpu.pc
        count = self._parse_int(parts[1]) if len(parts) > 1 else 16
        for a, opcode, text in disasm_range(cpu.mem, addr, count):
            marker = ">>>" if a == cpu.pc else "   "
            self._print(f"  {marker} {a:#05x}: {opcode:04x}  {text}")

    def do_screen(self, arg):
        """Print the framebuffer as text."""
        self._print(self.sys.cpu.fb.to_text())

    # -- Input / timers --

    def do_key(self, arg):
        """Keypad: key press <n> | key release <n> | key clear | key"""
        parts = shlex.split(arg)
        keypad = self.sys.cpu.keypad
        if not parts:
            down = keypad.pressed()
            self._print("  Keys down: " + (' '.join(f"{k:X}" for k in down) or "-"))
            return
        action = parts[0].lower()
        if action == "clear":
            keypad.reset()
        elif action in ("press", "release") and len(parts) > 1:
            key = int(parts[1], 16)
            if action == "press":
                keypad.press(key)
            else:
                keypad.release(key)
        else:
            self._print("Usage: key press <n> | key release <n> | key clear")

    def do_tick(self, arg):
        """Advance the timers by N frames of 1/60 s: tick [frames]"""
        frames = self._parse_int(arg) if arg.strip() else 1
        for _ in range(frames):
            self.sys.cpu.update_timers(FRAME_TIME)
        cpu = self.sys.cpu
        self._print(f"  DT={cpu.delay_timer}  ST={cpu.sound_timer}")

    def do_speed(self, arg):
        """Show or set instructions per frame: speed [n]"""
        if arg.strip():
            self.sys.set_speed(self._parse_int(arg))
        else:
            self._print(f"  Speed: {self.sys.speed}")

    def do_debug(self, arg):
        """Toggle per-instruction trace."""
        self.sys.toggle_debug()
        self._print(f"  Debug trace {'on' if self.sys.debug else 'off'}")

    def do_quit(self, arg):
        """Exit the monitor."""
        self._print("Goodbye.")
        return True
    do_exit = do_quit
    do_q = do_quit

    def do_EOF(self, arg):
        self._print()
        return self.do_quit(arg)

    def default(self, line):
        """Handle unknown commands gracefully."""
        self._print(f"Unknown command: {line.split()[0]!r}. "
                    f"Type 'help' for available commands.")

    def emptyline(self):
        """Don't repeat the last command on empty input."""
        pass

    def onecmd(self, line):
        try:
            return super().onecmd(line)
        except ValueError as e:
            self._print(f"Error: {e}")
            return False


# ---------------------------------------------------------------------------
#  Entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chip8",
        description="CHIP-8 emulator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  python cli.py pong.ch8\n"
               "  python cli.py pong.ch8 --speed 12 --fg '#ffffff' --bg '#000000'\n"
               "  python cli.py test.ch8 --headless --frames 120\n"
               "  python cli.py game.ch8 --disasm\n"
               "  python cli.py game.ch8 --monitor\n"
               "\n"
               "Keys: 1234/QWER/ASDF/ZXCV = keypad, Esc quit, = / - speed,\n"
               "      F3 reset, F8 pause, F12 debug trace\n"
    )
    parser.add_argument("filename",
                        help="ROM image to load at 0x200")
    parser.add_argument("-s", "--speed", type=int, default=DEFAULT_SPEED,
                        help=f"CPU speed (speed * 60 = Hz/TPS, default: {DEFAULT_SPEED})")
    parser.add_argument("-f", "--fullscreen", action="store_true",
                        help="Enable fullscreen mode")
    parser.add_argument("--bg", type=str, default=DEFAULT_BG,
                        help=f"Background color (default: {DEFAULT_BG})")
    parser.add_argument("--fg", type=str, default=DEFAULT_FG,
                        help=f"Foreground color (default: {DEFAULT_FG})")
    parser.add_argument("--software", action="store_true",
                        help="Force software rendering")
    parser.add_argument("--debug", action="store_true",
                        help="Enable debug mode (per-instruction trace)")
    parser.add_argument("--scale", type=int, default=DEFAULT_SCALE, metavar="N",
                        help=f"Window pixel scale (default: {DEFAULT_SCALE})")
    parser.add_argument("--quirks", choices=sorted(QUIRK_PRESETS), default="default",
                        help="Compatibility quirk preset (default: default)")
    parser.add_argument("--keymap", type=str, default=None, metavar="FILE",
                        help="JSON keymap overriding the default layout")
    parser.add_argument("--headless", action="store_true",
                        help="Run without a window and print the final screen")
    parser.add_argument("--frames", type=int, default=None, metavar="N",
                        help=f"Stop after N frames (headless default: {HEADLESS_FRAMES})")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for the RND instruction")
    parser.add_argument("--disasm", action="store_true",
                        help="Print a disassembly of the ROM and exit")
    parser.add_argument("--monitor", action="store_true",
                        help="Start the interactive monitor instead of running")
    return parser


def main(argv: Optional[list[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    for opt in ("fg", "bg"):
        try:
            parse_color(getattr(args, opt))
        except ValueError as e:
            parser.error(str(e))
    if args.speed < 1:
        parser.error("--speed must be at least 1")

    keymap = None
    if args.keymap:
        try:
            keymap = load_keymap(args.keymap)
        except (OSError, KeymapError) as e:
            print(f"Keymap error: {e}", file=sys.stderr)
            sys.exit(1)

    rng = random.Random(args.seed) if args.seed is not None else None
    system = Chip8System(speed=args.speed, quirks=QUIRK_PRESETS[args.quirks],
                         debug=args.debug, rng=rng)
    try:
        system.load_file(args.filename)
    except RomTooLargeError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except OSError as e:
        print(f"Failed to open ROM: {args.filename}: {e}", file=sys.stderr)
        sys.exit(1)

    # ---- Disassembly listing ------------------------------------------
    if args.disasm:
        words = (system.cpu.program_size + 1) // 2
        for addr, opcode, text in disasm_range(system.cpu.mem, PROGRAM_START, words):
            print(f"{addr:#05x}: {opcode:04x}  {text}")
        return

    # ---- Interactive monitor ------------------------------------------
    if args.monitor:
        mon = Chip8Monitor(system)
        try:
            mon.cmdloop()
        except KeyboardInterrupt:
            print("\nInterrupted. Goodbye.")
        return

    # ---- Headless run -------------------------------------------------
    if args.headless:
        system.display = HeadlessDisplay()
        system.audio = NullBeeper()
        budget = args.frames if args.frames is not None else HEADLESS_FRAMES
        frames = system.run(max_frames=budget)
        print(system.cpu.fb.to_text())
        print(f"Ran {frames} frames, {system.cpu.cycle_count} instructions.")
        if system.last_fault is not None:
            sys.exit(2)
        return

    # ---- Windowed run -------------------------------------------------
    display = Chip8Display(scale=args.scale, fg=args.fg, bg=args.bg,
                           fullscreen=args.fullscreen, software=args.software,
                           keymap=keymap)
    try:
        display.start()
    except KeymapError as e:
        print(f"Keymap error: {e}", file=sys.stderr)
        sys.exit(1)
    except DisplayError as e:
        print(f"[display] {e}", file=sys.stderr)
        print("[display] Install with: pip install pygame", file=sys.stderr)
        sys.exit(1)

    audio = Beeper()
    try:
        audio.start()
    except AudioError as e:
        print(f"[sound] {e}; continuing without sound", file=sys.stderr)
        audio = NullBeeper()

    system.display = display
    system.audio = audio
    try:
        system.run(max_frames=args.frames)
    except KeyboardInterrupt:
        print("\nInterrupted.")
    finally:
        audio.stop()
        display.stop()


if __name__ == "__main__":
    main()
