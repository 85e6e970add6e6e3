from chip8 import Op, ROM_START_ADDRESS, UnknownOpcodeError, decode


FORMATS = {
    Op.CLS: "CLS",
    Op.RET: "RET",
    Op.JP: "JP 0x{nnn:03x}",
    Op.CALL: "CALL 0x{nnn:03x}",
    Op.SE_BYTE: "SE V{x:X}, 0x{kk:02x}",
    Op.SNE_BYTE: "SNE V{x:X}, 0x{kk:02x}",
    Op.SE_REG: "SE V{x:X}, V{y:X}",
    Op.LD_BYTE: "LD V{x:X}, 0x{kk:02x}",
    Op.ADD_BYTE: "ADD V{x:X}, 0x{kk:02x}",
    Op.LD_REG: "LD V{x:X}, V{y:X}",
    Op.OR: "OR V{x:X}, V{y:X}",
    Op.AND: "AND V{x:X}, V{y:X}",
    Op.XOR: "XOR V{x:X}, V{y:X}",
    Op.ADD_REG: "ADD V{x:X}, V{y:X}",
    Op.SUB: "SUB V{x:X}, V{y:X}",
    Op.SHR: "SHR V{x:X}, V{y:X}",
    Op.SUBN: "SUBN V{x:X}, V{y:X}",
    Op.SHL: "SHL V{x:X}, V{y:X}",
    Op.SNE_REG: "SNE V{x:X}, V{y:X}",
    Op.LD_I: "LD I, 0x{nnn:03x}",
    Op.JP_V0: "JP V0, 0x{nnn:03x}",
    Op.RND: "RND V{x:X}, 0x{kk:02x}",
    Op.DRW: "DRW V{x:X}, V{y:X}, {n}",
    Op.SKP: "SKP V{x:X}",
    Op.SKNP: "SKNP V{x:X}",
    Op.LD_VX_DT: "LD V{x:X}, DT",
    Op.LD_VX_K: "LD V{x:X}, K",
    Op.LD_DT_VX: "LD DT, V{x:X}",
    Op.LD_ST_VX: "LD ST, V{x:X}",
    Op.ADD_I: "ADD I, V{x:X}",
    Op.LD_F: "LD F, V{x:X}",
    Op.LD_B: "LD B, V{x:X}",
    Op.LD_MEM_VX: "LD [I], V{x:X}",
    Op.LD_VX_MEM: "LD V{x:X}, [I]",
}


def disasm(opcode):
    """return the assembly line of a single opcode, never fails"""
    try:
        ins = decode(opcode)
    except UnknownOpcodeError:
        if opcode & 0xF000 == 0:
            return f"SYS 0x{opcode & 0x0FFF:03x}"     # obsolete, the interpreter refuses it
        return f"unknown instruction: 0x{opcode:04x}"
    return FORMATS[ins.op].format(**ins._asdict())

def disassemble(image, origin=ROM_START_ADDRESS):
    """listing of a whole program image, one line per instruction"""
    lines = []
    for offset in range(0, len(image) - 1, 2):
        opcode = image[offset] << 8 | image[offset + 1]
        lines.append(f"0x{origin + offset:04x}: {opcode:04x}    {disasm(opcode)}")
    if len(image) % 2 == 1:
        last = image[-1]
        lines.append(f"0x{origin + len(image) - 1:04x}: {last:02x}      DB 0x{last:02x}")
    return lines

def disassemble_file(path):
    with open(path, mode='rb') as f:
        image = f.read()
    return disassemble(image)
