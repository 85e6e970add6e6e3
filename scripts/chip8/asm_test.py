import unittest
from asm import AsmError, assemble, assemble_line
from chip8 import Chip8
from disasm import disasm


class TestAssembleLine(unittest.TestCase):
    def test_no_operands(self):
        self.assertEqual(assemble_line("cls"), 0x00E0)
        self.assertEqual(assemble_line("RET"), 0x00EE)

    def test_comments_and_blanks(self):
        self.assertEqual(assemble_line("  LD V0, 0x20 ; the answer, almost"), 0x6020)
        self.assertIsNone(assemble_line(""))
        self.assertIsNone(assemble_line("   ; nothing here"))

    def test_operands(self):
        self.assertEqual(assemble_line("ld va, vb"), 0x8AB0)
        self.assertEqual(assemble_line("jmp 0x300"), 0x1300)
        self.assertEqual(assemble_line("jp v0, 0x300"), 0xB300)
        self.assertEqual(assemble_line("se v1, 10"), 0x310A)
        self.assertEqual(assemble_line("shr v3"), 0x8336)
        self.assertEqual(assemble_line("drw v1, v2, 5"), 0xD125)
        self.assertEqual(assemble_line("ld [i], v3"), 0xF355)
        self.assertEqual(assemble_line("ld dt, v7"), 0xF715)

    def test_errors(self):
        for line in ("foo v1", "ld v0, 0x100", "jp v1, 0x300", "drw v1, v2, 16", "ld v0, nowhere"):
            with self.assertRaises(AsmError):
                assemble_line(line)

    def test_reads_disasm_output(self):
        opcodes = [0x00E0, 0x00EE, 0x1234, 0x2456, 0x3A12, 0x4B34, 0x5120, 0x6C56, 0x7D78,
                   0x8120, 0x8121, 0x8122, 0x8123, 0x8124, 0x8125, 0x8126, 0x8127, 0x812E,
                   0x9120, 0xA789, 0xB9AB, 0xC1FF, 0xD12F, 0xE19E, 0xE1A1, 0xF107, 0xF10A,
                   0xF115, 0xF118, 0xF11E, 0xF129, 0xF133, 0xF155, 0xF165]
        for opcode in opcodes:
            self.assertEqual(assemble_line(disasm(opcode)), opcode, disasm(opcode))


class TestAssemble(unittest.TestCase):
    SOURCE = """
    start:  ld v0, 1
    loop:   add v0, 1       ; count to ten
            se v0, 10
            jp loop
    halt:   jp halt
    """

    def test_labels(self):
        self.assertEqual(assemble(self.SOURCE),
                         bytes([0x60, 0x01, 0x70, 0x01, 0x30, 0x0A, 0x12, 0x02, 0x12, 0x08]))

    def test_runs(self):
        chip = Chip8()
        chip.load_rom(assemble(self.SOURCE))
        for _ in range(100):
            if chip.halted:
                break
            chip.step()
        self.assertTrue(chip.halted)
        self.assertEqual(chip.v_regs[0], 10)

    def test_db_is_padded(self):
        self.assertEqual(assemble("db 0xf0, 0x90, 0x90"), bytes([0xF0, 0x90, 0x90, 0x00]))

    def test_code_after_odd_db(self):
        image = assemble("db 0xf0\nld v0, 1\nhalt: jp halt")
        self.assertEqual(image, bytes([0xF0, 0x00, 0x60, 0x01, 0x12, 0x04]))
        chip = Chip8()
        chip.load_rom(image)
        chip.pc = 0x202
        chip.step()
        chip.step()
        self.assertEqual(chip.v_regs[0], 1)
        self.assertTrue(chip.halted)
        self.assertEqual(chip.pc, 0x204)

    def test_label_after_odd_db(self):
        image = assemble("jp data_end\ndata: db 1, 2, 3\ndata_end: ld i, data")
        self.assertEqual(image, bytes([0x12, 0x06, 0x01, 0x02, 0x03, 0x00, 0xA2, 0x02]))

    def test_error_line(self):
        with self.assertRaises(AsmError) as cm:
            assemble("cls\nbogus v0")
        self.assertEqual(cm.exception.lineno, 2)

    def test_duplicate_label(self):
        with self.assertRaises(AsmError):
            assemble("a: cls\na: ret")


if __name__ == "__main__":
    unittest.main()
