"""
CLI and monitor tests.

main() is driven with argument lists and temporary ROM files; the monitor
is driven one command at a time with its output sent to a StringIO.
"""

import contextlib
import io
import json
import os
import tempfile
import unittest

from chip8 import MAX_PROGRAM_SIZE
from cli import Chip8Monitor, build_parser, main
from display import DEFAULT_BG, DEFAULT_FG
from system import Chip8System, DEFAULT_SPEED


def words(*ops: int) -> bytes:
    return b"".join(op.to_bytes(2, "big") for op in ops)


class _RomTestBase(unittest.TestCase):
    """Writes ROM images into a temporary directory."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = self._tmp.name

    def tearDown(self):
        self._tmp.cleanup()

    def rom(self, data: bytes, name: str = "test.ch8") -> str:
        path = os.path.join(self.tmp, name)
        with open(path, "wb") as f:
            f.write(data)
        return path

    def run_main(self, *argv: str):
        """Run main(); returns (exit code, stdout, stderr)."""
        out, err = io.StringIO(), io.StringIO()
        code = 0
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            try:
                main(list(argv))
            except SystemExit as e:
                code = e.code
        return code, out.getvalue(), err.getvalue()


class TestParser(unittest.TestCase):

    def test_defaults(self):
        args = build_parser().parse_args(["pong.ch8"])
        self.assertEqual(args.filename, "pong.ch8")
        self.assertEqual(args.speed, DEFAULT_SPEED)
        self.assertEqual(args.speed, 8)
        self.assertFalse(args.fullscreen)
        self.assertEqual(args.bg, DEFAULT_BG)
        self.assertEqual(args.fg, DEFAULT_FG)
        self.assertFalse(args.software)
        self.assertFalse(args.debug)
        self.assertEqual(args.quirks, "default")

    def test_short_flags(self):
        args = build_parser().parse_args(["-s", "12", "-f", "game.ch8"])
        self.assertEqual(args.speed, 12)
        self.assertTrue(args.fullscreen)

    def test_bad_quirk_preset(self):
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                build_parser().parse_args(["--quirks", "nope", "x.ch8"])


class TestMain(_RomTestBase):

    def test_disasm_listing(self):
        path = self.rom(words(0x00E0, 0x6A2B, 0x1202))
        code, out, _ = self.run_main(path, "--disasm")
        self.assertEqual(code, 0)
        self.assertIn("0x200: 00e0  CLS", out)
        self.assertIn("0x202: 6a2b  LD VA, 0x2b", out)
        self.assertIn("0x204: 1202  JP 0x202", out)

    def test_headless_run_prints_screen(self):
        path = self.rom(words(0xA000, 0xD005, 0x1204))
        code, out, _ = self.run_main(path, "--headless", "--frames", "5")
        self.assertEqual(code, 0)
        self.assertIn("Loaded ROM:", out)
        lines = out.splitlines()
        self.assertIn("####" + "." * 60, lines)
        self.assertIn("#..#" + "." * 60, lines)
        self.assertIn("Ran 5 frames, 40 instructions.", out)

    def test_headless_seeded_random_is_repeatable(self):
        path = self.rom(words(0xC0FF, 0xC1FF, 0xA000, 0xF155, 0x1208))
        first = self.run_main(path, "--headless", "--frames", "1", "--seed", "7")
        second = self.run_main(path, "--headless", "--frames", "1", "--seed", "7")
        self.assertEqual(first, second)

    def test_headless_fault_exit_code(self):
        path = self.rom(words(0x00EE))
        code, out, _ = self.run_main(path, "--headless", "--frames", "3")
        self.assertEqual(code, 2)
        self.assertIn("fault", out)

    def test_headless_zero_frames(self):
        path = self.rom(words(0x7001, 0x1200))
        code, out, _ = self.run_main(path, "--headless", "--frames", "0")
        self.assertEqual(code, 0)
        self.assertIn("Ran 0 frames, 0 instructions.", out)

    def test_oversize_rom(self):
        path = self.rom(bytes(MAX_PROGRAM_SIZE + 1))
        code, _, err = self.run_main(path, "--headless")
        self.assertEqual(code, 1)
        self.assertIn("ROM is too large, size: 3585", err)

    def test_missing_rom(self):
        code, _, err = self.run_main(os.path.join(self.tmp, "nope.ch8"), "--headless")
        self.assertEqual(code, 1)
        self.assertIn("Failed to open ROM", err)

    def test_bad_colour(self):
        path = self.rom(words(0x1200))
        code, _, err = self.run_main(path, "--headless", "--fg", "#12")
        self.assertEqual(code, 2)
        self.assertIn("Invalid colour", err)

    def test_bad_speed(self):
        path = self.rom(words(0x1200))
        code, _, _ = self.run_main(path, "--headless", "--speed", "0")
        self.assertEqual(code, 2)

    def test_bad_keymap_file(self):
        path = self.rom(words(0x1200))
        keys = os.path.join(self.tmp, "keys.json")
        with open(keys, "w") as f:
            json.dump([{"name": "a", "key": 99}], f)
        code, _, err = self.run_main(path, "--headless", "--keymap", keys)
        self.assertEqual(code, 1)
        self.assertIn("Keymap error", err)


class TestMonitor(unittest.TestCase):

    def setUp(self):
        self.out = io.StringIO()
        self.system = Chip8System()
        self.system.load_rom(words(0x6A2B, 0x6102, 0x7101, 0x1204), name="test")
        self.mon = Chip8Monitor(self.system, stdout=self.out)

    def cmd(self, line: str) -> str:
        self.out.seek(0)
        self.out.truncate()
        with contextlib.redirect_stdout(io.StringIO()):
            self.mon.onecmd(line)
        return self.out.getvalue()

    def test_step(self):
        out = self.cmd("step")
        self.assertIn("0x200: 6a2b  LD VA, 0x2b", out)
        self.assertEqual(self.system.cpu.pc, 0x202)
        out = self.cmd("s 2")
        self.assertIn("0x202:", out)
        self.assertIn("0x204:", out)

    def test_regs_and_setreg(self):
        self.cmd("setreg va 0x10")
        self.cmd("setreg i 0x300")
        self.cmd("setreg dt 5")
        out = self.cmd("regs")
        self.assertIn("VA=0x10", out)
        self.assertIn("I=0x300", out)
        self.assertIn("DT=5", out)
        self.assertIn("Unknown register", self.cmd("setreg zz 1"))

    def test_breakpoint_and_run(self):
        self.cmd("bp 0x204")
        self.assertIn("0x204", self.cmd("bp"))
        out = self.cmd("run")
        self.assertIn("Breakpoint hit at 0x204", out)
        self.assertEqual(self.system.cpu.regs[1], 2)
        self.cmd("bpd all")
        self.assertIn("No breakpoints", self.cmd("bp"))
        self.assertIn("Stopped after 2 frames", self.cmd("run 2"))

    def test_run_continues_past_breakpoint(self):
        self.system.load_rom(words(0x6101, 0x7101, 0x1202))
        self.cmd("bp 0x202")
        self.assertIn("Breakpoint hit at 0x202", self.cmd("run"))
        self.assertEqual(self.system.cpu.regs[1], 1)
        self.assertIn("Breakpoint hit at 0x202", self.cmd("c"))
        self.assertEqual(self.system.cpu.regs[1], 2)
        self.assertEqual(self.system.cpu.pc, 0x202)

    def test_run_stops_on_key_wait(self):
        self.system.load_rom(words(0xF30A, 0x1202))
        self.assertIn("Waiting for key -> V3", self.cmd("run"))
        self.cmd("key press a")
        self.assertIn("Keys down: A", self.cmd("key"))
        self.cmd("step")
        self.assertEqual(self.system.cpu.regs[3], 0xA)

    def test_run_reports_fault(self):
        self.system.load_rom(words(0x00EE))
        self.assertIn("Fault at 0x200", self.cmd("run"))
        self.assertIn("Fault:", self.cmd("step"))

    def test_dump_and_setmem(self):
        self.cmd("setmem 0x300 0xde 0xad")
        out = self.cmd("dump 0x300 4")
        self.assertIn("0x300: de ad 00 00", out)
        self.assertIn("Error", self.cmd("setmem 0xfff 1 2"))

    def test_disasm(self):
        out = self.cmd("disasm 0x200 2")
        self.assertIn(">>> 0x200: 6a2b  LD VA, 0x2b", out)
        self.assertIn("0x202: 6102  LD V1, 0x02", out)

    def test_screen_and_tick(self):
        self.system.load_rom(words(0xA000, 0xD005, 0x6A05, 0xFA15, 0x1208))
        self.cmd("s 4")
        self.assertTrue(self.cmd("screen").startswith("####"))
        self.assertIn("DT=2", self.cmd("tick 3"))

    def test_reset(self):
        self.cmd("s 2")
        self.cmd("reset")
        self.assertEqual(self.system.cpu.pc, 0x200)
        self.assertEqual(self.system.cpu.regs[0xA], 0)

    def test_status(self):
        out = self.cmd("status")
        self.assertIn("=== Registers ===", out)
        self.assertIn("ROM: test", out)

    def test_bad_input(self):
        self.assertIn("Unknown command: 'frobnicate'", self.cmd("frobnicate"))
        self.assertIn("Error:", self.cmd("step lots"))

    def test_quit(self):
        self.assertTrue(self.mon.onecmd("quit"))


if __name__ == "__main__":
    unittest.main()
