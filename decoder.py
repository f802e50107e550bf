"""
CHIP-8 Instruction Decoder
==========================
Every opcode is decoded once into an ``Instruction`` value before the
engine touches any state.  The four operand fields (x, y, nn, nnn) plus the
low nibble n are extracted from every word whether the operation uses them
or not; the ``op`` tag selects the handler.

Primary dispatch is on the top nibble.  Families 0x0, 0x8, 0xE and 0xF need
a second look at the low byte (or low nibble for 0x8).

The same tables drive the disassembler used by the debug trace and the
monitor's ``disasm`` command.
"""

from __future__ import annotations
from typing import Iterator, NamedTuple

# ---------------------------------------------------------------------------
#  Operation tags
# ---------------------------------------------------------------------------

OP_CLS      = "CLS"        # 00E0
OP_RET      = "RET"        # 00EE
OP_JP       = "JP"         # 1nnn
OP_CALL     = "CALL"       # 2nnn
OP_SE_BYTE  = "SE_BYTE"    # 3xnn
OP_SNE_BYTE = "SNE_BYTE"   # 4xnn
OP_SE_REG   = "SE_REG"     # 5xy0
OP_LD_BYTE  = "LD_BYTE"    # 6xnn
OP_ADD_BYTE = "ADD_BYTE"   # 7xnn
OP_LD_REG   = "LD_REG"     # 8xy0
OP_OR       = "OR"         # 8xy1
OP_AND      = "AND"        # 8xy2
OP_XOR      = "XOR"        # 8xy3
OP_ADD_REG  = "ADD_REG"    # 8xy4
OP_SUB      = "SUB"        # 8xy5
OP_SHR      = "SHR"        # 8xy6
OP_SUBN     = "SUBN"       # 8xy7
OP_SHL      = "SHL"        # 8xyE
OP_SNE_REG  = "SNE_REG"    # 9xy0
OP_LD_I     = "LD_I"       # Annn
OP_JP_V0    = "JP_V0"      # Bnnn
OP_RND      = "RND"        # Cxnn
OP_DRW      = "DRW"        # Dxyn
OP_SKP      = "SKP"        # Ex9E
OP_SKNP     = "SKNP"       # ExA1
OP_LD_VX_DT = "LD_VX_DT"   # Fx07
OP_LD_KEY   = "LD_KEY"     # Fx0A
OP_LD_DT    = "LD_DT"      # Fx15
OP_LD_ST    = "LD_ST"      # Fx18
OP_ADD_I    = "ADD_I"      # Fx1E
OP_LD_FONT  = "LD_FONT"    # Fx29
OP_LD_BCD   = "LD_BCD"     # Fx33
OP_STORE    = "STORE"      # Fx55
OP_LOAD     = "LOAD"       # Fx65
OP_UNKNOWN  = "UNKNOWN"

# Families keyed by top nibble that need no secondary dispatch.
# 5xyN and 9xyN ignore the low nibble, as the original interpreter did.
PRIMARY_OPS = {
    0x1: OP_JP,
    0x2: OP_CALL,
    0x3: OP_SE_BYTE,
    0x4: OP_SNE_BYTE,
    0x5: OP_SE_REG,
    0x6: OP_LD_BYTE,
    0x7: OP_ADD_BYTE,
    0x9: OP_SNE_REG,
    0xA: OP_LD_I,
    0xB: OP_JP_V0,
    0xC: OP_RND,
    0xD: OP_DRW,
}

SYS_OPS = {0xE0: OP_CLS, 0xEE: OP_RET}

ALU_OPS = {
    0x0: OP_LD_REG, 0x1: OP_OR, 0x2: OP_AND, 0x3: OP_XOR,
    0x4: OP_ADD_REG, 0x5: OP_SUB, 0x6: OP_SHR, 0x7: OP_SUBN,
    0xE: OP_SHL,
}

KEY_OPS = {0x9E: OP_SKP, 0xA1: OP_SKNP}

MISC_OPS = {
    0x07: OP_LD_VX_DT, 0x0A: OP_LD_KEY, 0x15: OP_LD_DT, 0x18: OP_LD_ST,
    0x1E: OP_ADD_I, 0x29: OP_LD_FONT, 0x33: OP_LD_BCD, 0x55: OP_STORE,
    0x65: OP_LOAD,
}

# Secondary tables: top nibble -> (selector mask, table)
SECONDARY_OPS = {
    0x0: (0xFF, SYS_OPS),
    0x8: (0x0F, ALU_OPS),
    0xE: (0xFF, KEY_OPS),
    0xF: (0xFF, MISC_OPS),
}


class Instruction(NamedTuple):
    """A decoded opcode.  ``op`` is one of the ``OP_*`` tags."""
    opcode: int
    op: str
    x: int
    y: int
    n: int
    nn: int
    nnn: int


def decode(opcode: int) -> Instruction:
    """Decode a 16-bit opcode word."""
    opcode &= 0xFFFF
    family = (opcode >> 12) & 0xF
    x = (opcode >> 8) & 0xF
    y = (opcode >> 4) & 0xF
    n = opcode & 0xF
    nn = opcode & 0xFF
    nnn = opcode & 0xFFF

    if family in SECONDARY_OPS:
        mask, table = SECONDARY_OPS[family]
        op = table.get(opcode & mask, OP_UNKNOWN)
        # 0nnn machine-code routines are not supported; only 00E0/00EE
        if family == 0x0 and x != 0:
            op = OP_UNKNOWN
    else:
        op = PRIMARY_OPS[family]

    return Instruction(opcode, op, x, y, n, nn, nnn)


# ---------------------------------------------------------------------------
#  Disassembly
# ---------------------------------------------------------------------------

def disassemble(ins: Instruction) -> str:
    """Render an instruction in the conventional CHIP-8 mnemonic syntax."""
    op, x, y = ins.op, ins.x, ins.y
    vx, vy = f"V{x:X}", f"V{y:X}"

    if op == OP_CLS:      return "CLS"
    if op == OP_RET:      return "RET"
    if op == OP_JP:       return f"JP {ins.nnn:#05x}"
    if op == OP_CALL:     return f"CALL {ins.nnn:#05x}"
    if op == OP_SE_BYTE:  return f"SE {vx}, {ins.nn:#04x}"
    if op == OP_SNE_BYTE: return f"SNE {vx}, {ins.nn:#04x}"
    if op == OP_SE_REG:   return f"SE {vx}, {vy}"
    if op == OP_LD_BYTE:  return f"LD {vx}, {ins.nn:#04x}"
    if op == OP_ADD_BYTE: return f"ADD {vx}, {ins.nn:#04x}"
    if op == OP_LD_REG:   return f"LD {vx}, {vy}"
    if op == OP_OR:       return f"OR {vx}, {vy}"
    if op == OP_AND:      return f"AND {vx}, {vy}"
    if op == OP_XOR:      return f"XOR {vx}, {vy}"
    if op == OP_ADD_REG:  return f"ADD {vx}, {vy}"
    if op == OP_SUB:      return f"SUB {vx}, {vy}"
    if op == OP_SHR:      return f"SHR {vx}, {vy}"
    if op == OP_SUBN:     return f"SUBN {vx}, {vy}"
    if op == OP_SHL:      return f"SHL {vx}, {vy}"
    if op == OP_SNE_REG:  return f"SNE {vx}, {vy}"
    if op == OP_LD_I:     return f"LD I, {ins.nnn:#05x}"
    if op == OP_JP_V0:    return f"JP V0, {ins.nnn:#05x}"
    if op == OP_RND:      return f"RND {vx}, {ins.nn:#04x}"
    if op == OP_DRW:      return f"DRW {vx}, {vy}, {ins.n}"
    if op == OP_SKP:      return f"SKP {vx}"
    if op == OP_SKNP:     return f"SKNP {vx}"
    if op == OP_LD_VX_DT: return f"LD {vx}, DT"
    if op == OP_LD_KEY:   return f"LD {vx}, K"
    if op == OP_LD_DT:    return f"LD DT, {vx}"
    if op == OP_LD_ST:    return f"LD ST, {vx}"
    if op == OP_ADD_I:    return f"ADD I, {vx}"
    if op == OP_LD_FONT:  return f"LD F, {vx}"
    if op == OP_LD_BCD:   return f"LD B, {vx}"
    if op == OP_STORE:    return f"LD [I], {vx}"
    if op == OP_LOAD:     return f"LD {vx}, [I]"
    return f"DW {ins.opcode:#06x}"


def disasm_one(mem: bytes | bytearray, addr: int) -> tuple[int, str]:
    """Disassemble the word at `addr`. Returns (opcode, text)."""
    hi = mem[addr] if addr < len(mem) else 0
    lo = mem[addr + 1] if addr + 1 < len(mem) else 0
    opcode = (hi << 8) | lo
    return opcode, disassemble(decode(opcode))


def disasm_range(mem: bytes | bytearray, start: int,
                 count: int) -> Iterator[tuple[int, int, str]]:
    """Yield (addr, opcode, text) for `count` words starting at `start`."""
    addr = start
    for _ in range(count):
        if addr >= len(mem):
            break
        opcode, text = disasm_one(mem, addr)
        yield addr, opcode, text
        addr += 2
