import os
import tempfile
import unittest
from disasm import disasm, disassemble, disassemble_file


class TestDisasm(unittest.TestCase):
    def test_registers_and_bytes(self):
        self.assertEqual(disasm(0x6020), "LD V0, 0x20")
        self.assertEqual(disasm(0x7A01), "ADD VA, 0x01")
        self.assertEqual(disasm(0x8AB4), "ADD VA, VB")
        self.assertEqual(disasm(0x8346), "SHR V3, V4")

    def test_addresses(self):
        self.assertEqual(disasm(0x1200), "JP 0x200")
        self.assertEqual(disasm(0x2ABC), "CALL 0xabc")
        self.assertEqual(disasm(0xA123), "LD I, 0x123")
        self.assertEqual(disasm(0xB300), "JP V0, 0x300")

    def test_misc(self):
        self.assertEqual(disasm(0x00E0), "CLS")
        self.assertEqual(disasm(0x00EE), "RET")
        self.assertEqual(disasm(0xD125), "DRW V1, V2, 5")
        self.assertEqual(disasm(0xE59E), "SKP V5")
        self.assertEqual(disasm(0xF30A), "LD V3, K")
        self.assertEqual(disasm(0xF355), "LD [I], V3")
        self.assertEqual(disasm(0xF365), "LD V3, [I]")

    def test_unknown(self):
        self.assertEqual(disasm(0x5121), "unknown instruction: 0x5121")
        self.assertEqual(disasm(0xFFFF), "unknown instruction: 0xffff")
        self.assertEqual(disasm(0x0123), "SYS 0x123")


class TestDisassemble(unittest.TestCase):
    def test_listing(self):
        self.assertEqual(disassemble(bytes([0x60, 0x20, 0x12, 0x02])),
                         ["0x0200: 6020    LD V0, 0x20",
                          "0x0202: 1202    JP 0x202"])

    def test_trailing_byte(self):
        self.assertEqual(disassemble(bytes([0x00, 0xE0, 0xAB]))[-1],
                         "0x0202: ab      DB 0xab")

    def test_file(self):
        fd, path = tempfile.mkstemp(suffix=".ch8")
        with os.fdopen(fd, 'wb') as f:
            f.write(bytes([0x00, 0xE0]))
        try:
            self.assertEqual(disassemble_file(path), ["0x0200: 00e0    CLS"])
        finally:
            os.remove(path)


if __name__ == "__main__":
    unittest.main()
