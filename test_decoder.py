"""
Decoder and disassembler tests.
"""

import unittest

from decoder import (
    decode, disassemble, disasm_one, disasm_range,
    OP_CLS, OP_RET, OP_JP, OP_CALL, OP_SE_BYTE, OP_SNE_BYTE, OP_SE_REG,
    OP_LD_BYTE, OP_ADD_BYTE, OP_LD_REG, OP_OR, OP_AND, OP_XOR, OP_ADD_REG,
    OP_SUB, OP_SHR, OP_SUBN, OP_SHL, OP_SNE_REG, OP_LD_I, OP_JP_V0, OP_RND,
    OP_DRW, OP_SKP, OP_SKNP, OP_LD_VX_DT, OP_LD_KEY, OP_LD_DT, OP_LD_ST,
    OP_ADD_I, OP_LD_FONT, OP_LD_BCD, OP_STORE, OP_LOAD, OP_UNKNOWN,
)


class TestDecode(unittest.TestCase):

    def test_fields_extracted(self):
        ins = decode(0xD12A)
        self.assertEqual(ins.op, OP_DRW)
        self.assertEqual((ins.x, ins.y, ins.n), (0x1, 0x2, 0xA))
        self.assertEqual(ins.nn, 0x2A)
        self.assertEqual(ins.nnn, 0x12A)

    def test_every_documented_opcode(self):
        table = {
            0x00E0: OP_CLS,  0x00EE: OP_RET,
            0x1234: OP_JP,   0x2345: OP_CALL,
            0x3A11: OP_SE_BYTE, 0x4A11: OP_SNE_BYTE, 0x5AB0: OP_SE_REG,
            0x6A11: OP_LD_BYTE, 0x7A11: OP_ADD_BYTE,
            0x8AB0: OP_LD_REG, 0x8AB1: OP_OR, 0x8AB2: OP_AND, 0x8AB3: OP_XOR,
            0x8AB4: OP_ADD_REG, 0x8AB5: OP_SUB, 0x8AB6: OP_SHR,
            0x8AB7: OP_SUBN, 0x8ABE: OP_SHL,
            0x9AB0: OP_SNE_REG, 0xA123: OP_LD_I, 0xB123: OP_JP_V0,
            0xCA0F: OP_RND, 0xDAB5: OP_DRW,
            0xEA9E: OP_SKP, 0xEAA1: OP_SKNP,
            0xFA07: OP_LD_VX_DT, 0xFA0A: OP_LD_KEY, 0xFA15: OP_LD_DT,
            0xFA18: OP_LD_ST, 0xFA1E: OP_ADD_I, 0xFA29: OP_LD_FONT,
            0xFA33: OP_LD_BCD, 0xFA55: OP_STORE, 0xFA65: OP_LOAD,
        }
        for opcode, op in table.items():
            with self.subTest(opcode=hex(opcode)):
                self.assertEqual(decode(opcode).op, op)

    def test_unknown_opcodes(self):
        for opcode in (0x0000, 0x00E1, 0x0123, 0x01E0,
                       0x8AB8, 0x8ABF, 0xEA00, 0xEA9F, 0xFA00, 0xFAFF):
            with self.subTest(opcode=hex(opcode)):
                self.assertEqual(decode(opcode).op, OP_UNKNOWN)

    def test_machine_code_call_is_unknown(self):
        # 0nnn with a non-zero x nibble, even when the low byte looks like CLS
        self.assertEqual(decode(0x01E0).op, OP_UNKNOWN)
        self.assertEqual(decode(0x0FEE).op, OP_UNKNOWN)

    def test_register_compare_ignores_low_nibble(self):
        self.assertEqual(decode(0x5AB3).op, OP_SE_REG)
        self.assertEqual(decode(0x9AB7).op, OP_SNE_REG)

    def test_wider_input_is_masked(self):
        self.assertEqual(decode(0x1_6A2B), decode(0x6A2B))


class TestDisassemble(unittest.TestCase):

    def test_mnemonics(self):
        cases = {
            0x00E0: "CLS",
            0x00EE: "RET",
            0x1200: "JP 0x200",
            0x2ABC: "CALL 0xabc",
            0x6A2B: "LD VA, 0x2b",
            0x7105: "ADD V1, 0x05",
            0x8124: "ADD V1, V2",
            0xA123: "LD I, 0x123",
            0xB300: "JP V0, 0x300",
            0xD015: "DRW V0, V1, 5",
            0xE39E: "SKP V3",
            0xF30A: "LD V3, K",
            0xF329: "LD F, V3",
            0xF333: "LD B, V3",
            0xF355: "LD [I], V3",
            0xF365: "LD V3, [I]",
            0xFFFF: "DW 0xffff",
        }
        for opcode, text in cases.items():
            with self.subTest(opcode=hex(opcode)):
                self.assertEqual(disassemble(decode(opcode)), text)

    def test_disasm_one(self):
        mem = bytes([0x6A, 0x2B, 0x12, 0x00])
        self.assertEqual(disasm_one(mem, 0), (0x6A2B, "LD VA, 0x2b"))
        self.assertEqual(disasm_one(mem, 2), (0x1200, "JP 0x200"))

    def test_disasm_one_at_end_of_memory(self):
        mem = bytes([0x00, 0xE0, 0xA1])
        self.assertEqual(disasm_one(mem, 2), (0xA100, "LD I, 0x100"))

    def test_disasm_range(self):
        mem = bytearray(0x210)
        mem[0x200:0x206] = bytes([0x00, 0xE0, 0xA2, 0x0A, 0x12, 0x04])
        listing = list(disasm_range(mem, 0x200, 3))
        self.assertEqual(listing, [
            (0x200, 0x00E0, "CLS"),
            (0x202, 0xA20A, "LD I, 0x20a"),
            (0x204, 0x1204, "JP 0x204"),
        ])

    def test_disasm_range_stops_at_end(self):
        mem = bytearray(8)
        self.assertEqual(len(list(disasm_range(mem, 4, 10))), 2)


if __name__ == "__main__":
    unittest.main()
