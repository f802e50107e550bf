"""
CHIP-8 Execution Engine
=======================
An instruction-level interpreter for the CHIP-8 virtual machine: 4 KiB of
memory, sixteen 8-bit V registers, a 16-entry call stack, two 60 Hz
countdown timers and a 64×32 monochrome framebuffer.

The host calls ``step()`` as often as it likes (the speed multiplier lives
in system.py) and ``update_timers(dt)`` once per rendered frame.  Each step
fetches a big-endian word at PC, decodes it once (decoder.py) and dispatches
on the decoded tag.  PC is advanced past the word before the handler runs;
jumps, calls and returns overwrite it, skips add another 2.

Faults (bad addresses, stack over/underflow) raise a ``Chip8Error`` with PC
left on the faulting instruction and no other state touched.  Unknown
opcodes are not faults: they are reported and skipped.
"""

from __future__ import annotations
import random
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Optional

from decoder import (
    Instruction, decode, disassemble,
    OP_CLS, OP_RET, OP_JP, OP_CALL, OP_SE_BYTE, OP_SNE_BYTE, OP_SE_REG,
    OP_LD_BYTE, OP_ADD_BYTE, OP_LD_REG, OP_OR, OP_AND, OP_XOR, OP_ADD_REG,
    OP_SUB, OP_SHR, OP_SUBN, OP_SHL, OP_SNE_REG, OP_LD_I, OP_JP_V0, OP_RND,
    OP_DRW, OP_SKP, OP_SKNP, OP_LD_VX_DT, OP_LD_KEY, OP_LD_DT, OP_LD_ST,
    OP_ADD_I, OP_LD_FONT, OP_LD_BCD, OP_STORE, OP_LOAD, OP_UNKNOWN,
)
from devices import CountdownTimer, Framebuffer, Keypad, WIDTH, HEIGHT

# ---------------------------------------------------------------------------
#  Memory map
# ---------------------------------------------------------------------------

MEM_SIZE         = 0x1000
FONT_BASE        = 0x000
PROGRAM_START    = 0x200
MAX_PROGRAM_SIZE = MEM_SIZE - PROGRAM_START   # 3584 bytes
ADDR_LIMIT       = 0xFFF

NUM_REGS    = 16
VF          = 0xF
STACK_DEPTH = 16
GLYPH_BYTES = 5

# Hex digit glyphs 0-F, 4 pixels wide (high nibble), 5 rows each
FONT = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])


# ---------------------------------------------------------------------------
#  Errors
# ---------------------------------------------------------------------------

class Chip8Error(Exception):
    """Base for engine-generated faults."""
    pass

class RomTooLargeError(Chip8Error):
    def __init__(self, size: int):
        self.size = size
        super().__init__(f"ROM is too large, size: {size} > {MAX_PROGRAM_SIZE}")

class MemoryFault(Chip8Error):
    def __init__(self, addr: int, size: int = 1):
        self.addr = addr
        self.size = size
        super().__init__(
            f"Memory fault: {size} byte(s) at {addr:#05x} outside 0x000-{ADDR_LIMIT:#05x}")

class StackFault(Chip8Error):
    pass


# ---------------------------------------------------------------------------
#  Compatibility quirks
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Quirks:
    """Behaviour switches for opcodes that historical interpreters disagree on.

    All off reproduces the reference interpreter this engine follows.
    """
    shift_uses_vy: bool = False         # 8xy6/8xyE: Vx = Vy before shifting
    jump_uses_vx: bool = False          # Bnnn: add Vx instead of V0
    key_wait_release: bool = False      # Fx0A: finish when the key is released
    load_store_increment: bool = False  # Fx55/Fx65: I += x + 1 afterwards

    def with_changes(self, **kw) -> "Quirks":
        return replace(self, **kw)


QUIRK_PRESETS = {
    "default": Quirks(),
    "cosmac": Quirks(shift_uses_vy=True, key_wait_release=True,
                     load_store_increment=True),
    "schip": Quirks(jump_uses_vx=True),
}


# ---------------------------------------------------------------------------
#  CPU
# ---------------------------------------------------------------------------

class Chip8:
    """CHIP-8 interpreter core."""

    def __init__(self, quirks: Optional[Quirks] = None,
                 rng: Optional[random.Random] = None,
                 width: int = WIDTH, height: int = HEIGHT):
        self.quirks = quirks or Quirks()
        self.rng = rng or random.Random()

        self.mem = bytearray(MEM_SIZE)
        self.mem[FONT_BASE:FONT_BASE + len(FONT)] = FONT

        # Register file
        self.regs: list[int] = [0] * NUM_REGS
        self.i: int = 0
        self.pc: int = PROGRAM_START
        self.stack: list[int] = [0] * STACK_DEPTH
        self.sp: int = 0
        self.opcode: int = 0

        # Devices
        self.fb = Framebuffer(width, height)
        self.keypad = Keypad()
        self.delay = CountdownTimer("delay")
        self.sound = CountdownTimer("sound")

        # Fx0A stall: register waiting for a key, and the key held so far
        # (only used with the key_wait_release quirk)
        self.waiting_key: Optional[int] = None
        self._held_key: Optional[int] = None

        # Bookkeeping
        self.debug: bool = False
        self.cycle_count: int = 0
        self.unknown_count: int = 0
        self.program_size: int = 0

        # Callbacks
        self.on_draw: Optional[Callable[[Framebuffer], None]] = None
        self.on_trace: Optional[Callable[[str], None]] = None
        self.on_unknown: Optional[Callable[[int, int], None]] = None

        self._dispatch = self._build_dispatch()

    # -- Timer shortcuts --

    @property
    def delay_timer(self) -> int:
        return self.delay.value

    @delay_timer.setter
    def delay_timer(self, value: int):
        self.delay.load(value)

    @property
    def sound_timer(self) -> int:
        return self.sound.value

    @sound_timer.setter
    def sound_timer(self, value: int):
        self.sound.load(value)

    @property
    def tone(self) -> bool:
        """True while the sound timer is running."""
        return self.sound.active

    # -- Memory access --

    def _check_range(self, addr: int, size: int = 1):
        if addr < 0 or addr + size > MEM_SIZE:
            raise MemoryFault(addr, size)

    def mem_read8(self, addr: int) -> int:
        self._check_range(addr)
        return self.mem[addr]

    def mem_write8(self, addr: int, val: int):
        self._check_range(addr)
        self.mem[addr] = val & 0xFF

    # -- Loading --

    def load_rom(self, data: bytes | bytearray) -> int:
        """Copy a program image to 0x200. Returns its length."""
        if len(data) > MAX_PROGRAM_SIZE:
            raise RomTooLargeError(len(data))
        self.mem[PROGRAM_START:] = bytes(MAX_PROGRAM_SIZE)
        self.mem[PROGRAM_START:PROGRAM_START + len(data)] = data
        self.program_size = len(data)
        return len(data)

    def load_file(self, path: str | Path) -> int:
        return self.load_rom(Path(path).read_bytes())

    # -- Reset --

    def reset(self):
        """Back to the power-on state, keeping the loaded program and font."""
        self.regs = [0] * NUM_REGS
        self.i = 0
        self.pc = PROGRAM_START
        self.stack = [0] * STACK_DEPTH
        self.sp = 0
        self.opcode = 0
        self.delay.reset()
        self.sound.reset()
        self.fb.reset()
        self.waiting_key = None
        self._held_key = None
        self.cycle_count = 0
        # Note: keypad state belongs to the input source and is not cleared

    # -- Timers --

    def update_timers(self, dt: float):
        """Advance both countdown timers by `dt` seconds of host time."""
        self.delay.advance(dt)
        self.sound.advance(dt)

    # =====================================================================
    #  STEP: fetch / decode / execute
    # =====================================================================

    def step(self) -> Optional[Instruction]:
        """Execute one instruction.

        Returns the instruction executed, or None while stalled on Fx0A.
        """
        if self.waiting_key is not None:
            if not self._poll_key_wait():
                return None
            self.cycle_count += 1
            return decode(self.opcode)

        pc = self.pc
        self._check_range(pc, 2)
        self.opcode = (self.mem[pc] << 8) | self.mem[pc + 1]
        ins = decode(self.opcode)

        if self.debug:
            self._trace(pc, ins)

        self.pc = pc + 2
        try:
            self._dispatch[ins.op](ins)
        except Chip8Error:
            self.pc = pc
            raise
        self.cycle_count += 1
        return ins

    def _build_dispatch(self) -> dict:
        return {
            OP_CLS:      self._op_cls,
            OP_RET:      self._op_ret,
            OP_JP:       self._op_jp,
            OP_CALL:     self._op_call,
            OP_SE_BYTE:  self._op_se_byte,
            OP_SNE_BYTE: self._op_sne_byte,
            OP_SE_REG:   self._op_se_reg,
            OP_LD_BYTE:  self._op_ld_byte,
            OP_ADD_BYTE: self._op_add_byte,
            OP_LD_REG:   self._op_alu,
            OP_OR:       self._op_alu,
            OP_AND:      self._op_alu,
            OP_XOR:      self._op_alu,
            OP_ADD_REG:  self._op_alu,
            OP_SUB:      self._op_alu,
            OP_SHR:      self._op_alu,
            OP_SUBN:     self._op_alu,
            OP_SHL:      self._op_alu,
            OP_SNE_REG:  self._op_sne_reg,
            OP_LD_I:     self._op_ld_i,
            OP_JP_V0:    self._op_jp_v0,
            OP_RND:      self._op_rnd,
            OP_DRW:      self._op_drw,
            OP_SKP:      self._op_skp,
            OP_SKNP:     self._op_sknp,
            OP_LD_VX_DT: self._op_ld_vx_dt,
            OP_LD_KEY:   self._op_ld_key,
            OP_LD_DT:    self._op_ld_dt,
            OP_LD_ST:    self._op_ld_st,
            OP_ADD_I:    self._op_add_i,
            OP_LD_FONT:  self._op_ld_font,
            OP_LD_BCD:   self._op_ld_bcd,
            OP_STORE:    self._op_store,
            OP_LOAD:     self._op_load,
            OP_UNKNOWN:  self._op_unknown,
        }

    # -- Reporting --

    def _trace(self, pc: int, ins: Instruction):
        text = (f"PC={pc:#05x} OP={ins.opcode:#06x} X={ins.x:#x} Y={ins.y:#x} "
                f"NN={ins.nn:#04x} NNN={ins.nnn:#05x}  {disassemble(ins)}")
        if self.on_trace:
            self.on_trace(text)
        else:
            print(f"[chip8] {text}", file=sys.stderr)

    def _op_unknown(self, ins: Instruction):
        pc = self.pc - 2
        self.unknown_count += 1
        if self.on_unknown:
            self.on_unknown(pc, ins.opcode)
        else:
            print(f"[chip8] Unknown opcode: {ins.opcode:#06x} at {pc:#05x}",
                  file=sys.stderr)

    def _jump(self, target: int):
        # Target must hold a whole instruction word
        self._check_range(target, 2)
        self.pc = target

    def _skip_if(self, cond: bool):
        if cond:
            self.pc += 2

    # =====================================================================
    #  Handlers
    # =====================================================================

    # -- 0x0: CLS / RET --
    def _op_cls(self, ins: Instruction):
        self.fb.clear()
        if self.on_draw:
            self.on_draw(self.fb)

    def _op_ret(self, ins: Instruction):
        if self.sp == 0:
            raise StackFault("Stack underflow: return with empty stack")
        self._jump(self.stack[self.sp - 1] + 2)
        self.sp -= 1

    # -- 0x1 / 0x2: JP / CALL --
    def _op_jp(self, ins: Instruction):
        self._jump(ins.nnn)

    def _op_call(self, ins: Instruction):
        if self.sp >= STACK_DEPTH:
            raise StackFault(f"Stack overflow: call depth exceeds {STACK_DEPTH}")
        self._check_range(ins.nnn, 2)
        self.stack[self.sp] = self.pc - 2
        self.sp += 1
        self.pc = ins.nnn

    # -- 0x3 / 0x4 / 0x5 / 0x9: conditional skips --
    def _op_se_byte(self, ins: Instruction):
        self._skip_if(self.regs[ins.x] == ins.nn)

    def _op_sne_byte(self, ins: Instruction):
        self._skip_if(self.regs[ins.x] != ins.nn)

    def _op_se_reg(self, ins: Instruction):
        self._skip_if(self.regs[ins.x] == self.regs[ins.y])

    def _op_sne_reg(self, ins: Instruction):
        self._skip_if(self.regs[ins.x] != self.regs[ins.y])

    # -- 0x6 / 0x7: immediate loads --
    def _op_ld_byte(self, ins: Instruction):
        self.regs[ins.x] = ins.nn

    def _op_add_byte(self, ins: Instruction):
        # No carry flag for 7xnn
        self.regs[ins.x] = (self.regs[ins.x] + ins.nn) & 0xFF

    # -- 0x8: register ALU --
    def _op_alu(self, ins: Instruction):
        op, x = ins.op, ins.x
        vx = self.regs[x]
        vy = self.regs[ins.y]
        flag = None

        if op == OP_LD_REG:
            result = vy
        elif op == OP_OR:
            result = vx | vy
        elif op == OP_AND:
            result = vx & vy
        elif op == OP_XOR:
            result = vx ^ vy
        elif op == OP_ADD_REG:
            total = vx + vy
            result = total & 0xFF
            flag = 1 if total > 0xFF else 0
        elif op == OP_SUB:
            result = (vx - vy) & 0xFF
            flag = 0 if vy > vx else 1
        elif op == OP_SUBN:
            result = (vy - vx) & 0xFF
            flag = 0 if vx > vy else 1
        elif op == OP_SHR:
            src = vy if self.quirks.shift_uses_vy else vx
            result = src >> 1
            flag = src & 1
        else:  # OP_SHL
            src = vy if self.quirks.shift_uses_vy else vx
            result = (src << 1) & 0xFF
            flag = (src >> 7) & 1

        self.regs[x] = result
        # VF is written last so it wins when x == F
        if flag is not None:
            self.regs[VF] = flag

    # -- 0xA / 0xB / 0xC --
    def _op_ld_i(self, ins: Instruction):
        self.i = ins.nnn

    def _op_jp_v0(self, ins: Instruction):
        base = self.regs[ins.x] if self.quirks.jump_uses_vx else self.regs[0]
        self._jump(ins.nnn + base)

    def _op_rnd(self, ins: Instruction):
        self.regs[ins.x] = self.rng.randrange(256) & ins.nn

    # -- 0xD: DRW --
    def _op_drw(self, ins: Instruction):
        rows = ins.n
        self._check_range(self.i, rows)
        sprite = self.mem[self.i:self.i + rows]
        collided = self.fb.draw(self.regs[ins.x], self.regs[ins.y], sprite)
        self.regs[VF] = 1 if collided else 0
        if self.on_draw:
            self.on_draw(self.fb)

    # -- 0xE: key skips --
    def _op_skp(self, ins: Instruction):
        self._skip_if(self.keypad.is_pressed(self.regs[ins.x]))

    def _op_sknp(self, ins: Instruction):
        self._skip_if(not self.keypad.is_pressed(self.regs[ins.x]))

    # -- 0xF: timers, keys, index, memory --
    def _op_ld_vx_dt(self, ins: Instruction):
        self.regs[ins.x] = self.delay.value

    def _op_ld_dt(self, ins: Instruction):
        self.delay.load(self.regs[ins.x])

    def _op_ld_st(self, ins: Instruction):
        self.sound.load(self.regs[ins.x])

    def _op_ld_key(self, ins: Instruction):
        # Rewind so PC stays on Fx0A until a key arrives
        self.pc -= 2
        self.waiting_key = ins.x
        self._held_key = None
        self._poll_key_wait()

    def _poll_key_wait(self) -> bool:
        """Check the keypad for a pending Fx0A. True once it completes."""
        x = self.waiting_key
        if self.quirks.key_wait_release:
            if self._held_key is None:
                self._held_key = self.keypad.lowest_pressed()
                return False
            if self.keypad.is_pressed(self._held_key):
                return False
            key = self._held_key
        else:
            key = self.keypad.lowest_pressed()
            if key is None:
                return False
        self.regs[x] = key
        self.waiting_key = None
        self._held_key = None
        self.pc += 2
        return True

    def _op_add_i(self, ins: Instruction):
        total = self.i + self.regs[ins.x]
        self.i = total & 0xFFFF
        self.regs[VF] = 1 if total > ADDR_LIMIT else 0

    def _op_ld_font(self, ins: Instruction):
        self.i = FONT_BASE + self.regs[ins.x] * GLYPH_BYTES

    def _op_ld_bcd(self, ins: Instruction):
        self._check_range(self.i, 3)
        v = self.regs[ins.x]
        self.mem[self.i]     = v // 100
        self.mem[self.i + 1] = (v // 10) % 10
        self.mem[self.i + 2] = v % 10

    def _op_store(self, ins: Instruction):
        count = ins.x + 1
        self._check_range(self.i, count)
        self.mem[self.i:self.i + count] = bytes(self.regs[:count])
        if self.quirks.load_store_increment:
            self.i = (self.i + count) & 0xFFFF

    def _op_load(self, ins: Instruction):
        count = ins.x + 1
        self._check_range(self.i, count)
        self.regs[:count] = list(self.mem[self.i:self.i + count])
        if self.quirks.load_store_increment:
            self.i = (self.i + count) & 0xFFFF

    # -- Debug / introspection --

    def dump_regs(self) -> str:
        lines = []
        for row in range(0, NUM_REGS, 4):
            lines.append("  " + "  ".join(
                f"V{r:X}={self.regs[r]:#04x}" for r in range(row, row + 4)))
        lines.append(f"  PC={self.pc:#05x}  I={self.i:#05x}  SP={self.sp}  "
                     f"DT={self.delay.value}  ST={self.sound.value}")
        if self.sp:
            frames = " ".join(f"{a:#05x}" for a in self.stack[:self.sp])
            lines.append(f"  Stack: {frames}")
        if self.waiting_key is not None:
            lines.append(f"  Waiting for key -> V{self.waiting_key:X}")
        return "\n".join(lines)
