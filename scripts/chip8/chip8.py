# CHIP-8 INFO
# https://chip-8.github.io/extensions/#chip-8
# https://chip-8.github.io/links/
#
# INSTRUCTION SET
# https://github.com/mattmikolay/chip-8/wiki/CHIP%E2%80%908-Instruction-Set
#
# MASTERING CHIP-8
# https://github.com/mattmikolay/chip-8/wiki/Mastering-CHIP%E2%80%908
#
# TEST SUITE
# https://github.com/Timendus/chip8-test-suite


import os
import random
from collections import namedtuple
from enum import Enum


# ******************** STATIC SECTION
C8_FONTS = [0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
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
            0xF0, 0x80, 0xF0, 0x80, 0x80]  # F

MEMORY_SIZE = 4096
ADDRESS_MASK = MEMORY_SIZE - 1
FONT_ADDRESS = 0x000
FONT_GLYPH_SIZE = 5
ROM_START_ADDRESS = 0x200
VIDEO_MEMORY_ADDRESS = 0xF00        # the display bitmap lives in the last 256 bytes
SCREEN_HEIGHT = 32
SCREEN_WIDTH = 64
SCREEN_WIDTH_BYTES = SCREEN_WIDTH // 8
SCREEN_BYTES = SCREEN_HEIGHT * SCREEN_WIDTH_BYTES
STACK_SIZE = 16
TIMER_FREQUENCY = 60                # Hz
VF = 0xF
DEBUG = True if int(os.getenv('DEBUG', 0)) >= 1 else False


# ******************** ERRORS SECTION
class Chip8Error(Exception):
    """fatal condition, the machine can't execute any further instruction"""

    def __init__(self, msg, opcode=None, pc=None):
        super().__init__(msg)
        self.opcode = opcode
        self.pc = pc

    def __str__(self):
        msg = super().__str__()
        if self.opcode is not None and self.pc is not None:
            msg += f" (opcode: 0x{self.opcode:04x}, mem_addr: 0x{self.pc:04x})"
        return msg

class UnknownOpcodeError(Chip8Error):
    pass

class StackOverflowError(Chip8Error):
    pass

class StackUnderflowError(Chip8Error):
    pass

class RomError(Chip8Error):
    pass


# ******************** DECODE SECTION
class Op(Enum):
    """the CHIP-8 instruction set, values are the opcode patterns"""
    CLS = '00E0'
    RET = '00EE'
    JP = '1NNN'
    CALL = '2NNN'
    SE_BYTE = '3XNN'
    SNE_BYTE = '4XNN'
    SE_REG = '5XY0'
    LD_BYTE = '6XNN'
    ADD_BYTE = '7XNN'
    LD_REG = '8XY0'
    OR = '8XY1'
    AND = '8XY2'
    XOR = '8XY3'
    ADD_REG = '8XY4'
    SUB = '8XY5'
    SHR = '8XY6'
    SUBN = '8XY7'
    SHL = '8XYE'
    SNE_REG = '9XY0'
    LD_I = 'ANNN'
    JP_V0 = 'BNNN'
    RND = 'CXNN'
    DRW = 'DXYN'
    SKP = 'EX9E'
    SKNP = 'EXA1'
    LD_VX_DT = 'FX07'
    LD_VX_K = 'FX0A'
    LD_DT_VX = 'FX15'
    LD_ST_VX = 'FX18'
    ADD_I = 'FX1E'
    LD_F = 'FX29'
    LD_B = 'FX33'
    LD_MEM_VX = 'FX55'
    LD_VX_MEM = 'FX65'

Instruction = namedtuple('Instruction', ['op', 'opcode', 'x', 'y', 'n', 'kk', 'nnn'])

# first level, keyed by the most significant nibble
PRIMARY_OPS = {
    0x1: Op.JP,
    0x2: Op.CALL,
    0x3: Op.SE_BYTE,
    0x4: Op.SNE_BYTE,
    0x6: Op.LD_BYTE,
    0x7: Op.ADD_BYTE,
    0xA: Op.LD_I,
    0xB: Op.JP_V0,
    0xC: Op.RND,
    0xD: Op.DRW,
}
# 5XY0 and 9XY0 require the last nibble to be zero
COMPARE_OPS = {0x5: Op.SE_REG, 0x9: Op.SNE_REG}
# second level, 0x0 family keyed by the whole opcode
SYSTEM_OPS = {0x00E0: Op.CLS, 0x00EE: Op.RET}
# second level, 0x8 family keyed by the least significant nibble
LOGICAL_OPS = {
    0x0: Op.LD_REG,
    0x1: Op.OR,
    0x2: Op.AND,
    0x3: Op.XOR,
    0x4: Op.ADD_REG,
    0x5: Op.SUB,
    0x6: Op.SHR,
    0x7: Op.SUBN,
    0xE: Op.SHL,
}
# second level, 0xE family keyed by the least significant byte
KEYBOARD_OPS = {0x9E: Op.SKP, 0xA1: Op.SKNP}
# second level, 0xF family keyed by the least significant byte
MISC_OPS = {
    0x07: Op.LD_VX_DT,
    0x0A: Op.LD_VX_K,
    0x15: Op.LD_DT_VX,
    0x18: Op.LD_ST_VX,
    0x1E: Op.ADD_I,
    0x29: Op.LD_F,
    0x33: Op.LD_B,
    0x55: Op.LD_MEM_VX,
    0x65: Op.LD_VX_MEM,
}

def decode(opcode):
    """split the opcode in its nibbles and return the matching Instruction"""
    family = (opcode & 0xF000) >> 12
    x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
    n, kk, nnn = opcode & 0x000F, opcode & 0x00FF, opcode & 0x0FFF
    if family == 0x0:
        op = SYSTEM_OPS.get(opcode)     # SYS addr is obsolete and not supported
    elif family == 0x8:
        op = LOGICAL_OPS.get(n)
    elif family == 0xE:
        op = KEYBOARD_OPS.get(kk)
    elif family == 0xF:
        op = MISC_OPS.get(kk)
    elif family in COMPARE_OPS:
        op = COMPARE_OPS[family] if n == 0 else None
    else:
        op = PRIMARY_OPS[family]
    if op is None:
        raise UnknownOpcodeError(f"The opcode 0x{opcode:04x} is not a CHIP-8 instruction", opcode)
    return Instruction(op, opcode, x, y, n, kk, nnn)


# ******************** MEMORY SECTION
# ********** WRAPS A LIST TO REPRESENT A STACK WITH A LIMITED SIZE OF 16 ADDRESSES
class Stack:
    def __init__(self, size=STACK_SIZE):
        self.addr_list = []
        self.size = size

    def __len__(self):
        return len(self.addr_list)

    def __str__(self):
        return "[" + ", ".join(f"0x{a:04x}" for a in self.addr_list) + "]"

    def append(self, address):
        if len(self.addr_list) >= self.size:
            raise StackOverflowError(f"The CHIP-8 stack can contain at most {self.size} addresses. Limit exceeded")
        self.addr_list.append(address & 0xFFFF)

    def pop(self):
        if not self.addr_list:
            raise StackUnderflowError("Return from a subroutine with an empty stack")
        return self.addr_list.pop()

# ********** WRAPS A BYTEARRAY TO REPRESENT THE MAIN MEMORY WITH A LIMITED SIZE OF 4KB
class Memory:
    def __init__(self):
        self.inner = bytearray(MEMORY_SIZE)
        self.inner[FONT_ADDRESS:FONT_ADDRESS+len(C8_FONTS)] = bytes(C8_FONTS)

    def __setitem__(self, key, value):
        self.inner[key] = value

    def __getitem__(self, index):
        return self.inner[index]

    def __len__(self):
        return len(self.inner)

    def load_rom(self, rom):
        """copy the program image verbatim at ROM_START_ADDRESS"""
        if len(rom) % 2 == 1:
            raise RomError(f"The ROM length ({len(rom)}) is not even, every instruction is 2 bytes long")
        if ROM_START_ADDRESS + len(rom) > VIDEO_MEMORY_ADDRESS:
            raise RomError(f"The ROM is too large: {len(rom)} bytes, max {VIDEO_MEMORY_ADDRESS - ROM_START_ADDRESS}")
        self.inner[ROM_START_ADDRESS:ROM_START_ADDRESS+len(rom)] = rom
        if DEBUG: print(f"The ROM ({len(rom)} bytes) has been loaded successfully")

    def dump(self, start=0, end=MEMORY_SIZE):
        """hex dump of memory[start:end], 8 bytes per line"""
        lines = []
        for address in range(start, end, 8):
            row = " ".join(f"{b:02x}" for b in self.inner[address:min(address + 8, end)])
            lines.append(f"0x{address:06x}: {row}")
        return lines


# ******************** DISPLAY SECTION
class Display:
    """
    64x32 monochrome bitmap mapped on memory: 32 rows of 8 bytes,
    each bit is a pixel, most significant bit on the left
    """

    def __init__(self, mem, offset=VIDEO_MEMORY_ADDRESS):
        self.mem = mem
        self.offset = offset
        self.w, self.h = SCREEN_WIDTH, SCREEN_HEIGHT

    def __str__(self):
        rows = []
        for y in range(self.h):
            rows.append("".join("#" if self.pixel(x, y) else "." for x in range(self.w)))
        return "\n".join(rows)

    def clear(self):
        self.mem[self.offset:self.offset+SCREEN_BYTES] = bytes(SCREEN_BYTES)

    def snapshot(self):
        """copy of the 256 bytes of video memory"""
        return bytes(self.mem[self.offset:self.offset+SCREEN_BYTES])

    def pixel(self, x, y):
        """return 1 if pixel is ON, return 0 if pixel is OFF"""
        byte = self.mem[self.offset + y * SCREEN_WIDTH_BYTES + x // 8]
        return (byte >> (7 - x % 8)) & 0x1

    def draw(self, x, y, sprite):
        """
        XOR an 8 pixels wide sprite (one byte per row) at (x, y)
        return True if any pixel went from ON to OFF

        the coordinates wrap around the screen, the sprite itself doesn't:
        rows under the bottom edge and pixels past the right edge are dropped
        """
        x, y = x % self.w, y % self.h
        column, shift = divmod(x, 8)
        collision = False
        for row, sprite_byte in enumerate(sprite):
            if y + row >= self.h:
                if DEBUG: print(f"DRW: sprite clipped at the bottom edge, y={y + row}")
                break
            address = self.offset + (y + row) * SCREEN_WIDTH_BYTES + column
            collision |= self._xor(address, sprite_byte >> shift)
            if shift == 0:
                continue
            spill = (sprite_byte << (8 - shift)) & 0xFF
            if column + 1 < SCREEN_WIDTH_BYTES:
                collision |= self._xor(address + 1, spill)
            elif spill:
                if DEBUG: print(f"DRW: sprite clipped at the right edge, x={x}, pixels are not wrapped around")
        return collision

    def _xor(self, address, bits):
        before = self.mem[address]
        self.mem[address] = before ^ bits
        return before & bits != 0


# ******************** CPU SECTION
class Chip8:
    def __init__(self, keypad=None, rng=None):
        self.keypad = keypad    # anything exposing key_pressed(k) and await_key()
        self.rng = rng if rng is not None else random.Random()
        self.instructions = {
            Op.CLS: self._clear_screen,
            Op.RET: self._return,
            Op.JP: self._jump,
            Op.CALL: self._call_addr,
            Op.SE_BYTE: self._skip_if_eq,
            Op.SNE_BYTE: self._skip_if_not_eq,
            Op.SE_REG: self._skip_if_eq_regs,
            Op.LD_BYTE: self._set_vk,
            Op.ADD_BYTE: self._add_to_vk,
            Op.LD_REG: self._set_vx_to_vy,
            Op.OR: self._set_vx_or_vy,
            Op.AND: self._set_vx_and_vy,
            Op.XOR: self._set_vx_xor_vy,
            Op.ADD_REG: self._add_vx_vy,
            Op.SUB: self._sub_vx_vy,
            Op.SHR: self._shr,
            Op.SUBN: self._subn_vx_vy,
            Op.SHL: self._shl,
            Op.SNE_REG: self._skip_if_not_eq_regs,
            Op.LD_I: self._set_idx,
            Op.JP_V0: self._jump_plus,
            Op.RND: self._random_byte_and,
            Op.DRW: self._to_screen,
            Op.SKP: self._skip_if_pressed,
            Op.SKNP: self._skip_if_not_pressed,
            Op.LD_VX_DT: self._set_vx_dt,
            Op.LD_VX_K: self._wait_keypress,
            Op.LD_DT_VX: self._set_dt_vx,
            Op.LD_ST_VX: self._set_st,
            Op.ADD_I: self._add_to_idx,
            Op.LD_F: self._select_char,
            Op.LD_B: self._bcd_repr,
            Op.LD_MEM_VX: self._store_vregs,
            Op.LD_VX_MEM: self._load_vregs,
        }
        self.reset()

    def reset(self):
        self.mem = Memory()
        self.display = Display(self.mem)
        self.stack = Stack()
        self.v_regs = [0] * 16
        self.pc = ROM_START_ADDRESS
        self.idx = 0            # specify where the sprites reside in memory
        self.dt = 0             # delay timer, active when non-zero
        self.st = 0             # sound timer, active when non-zero
        self.draw = False       # the display changed since the last check
        self.halted = False
        self.fault = None
        self.key_register = None

    def __str__(self):
        stack = f"STACK:{self.stack}"
        flags = f"HALTED: {self.halted} | WAITING: {self.waiting} | DRAW: {self.draw}"
        return f"{self.dump_state()}\n{stack}\n{flags}\n{self.display}"

    @property
    def waiting(self):
        """True while FX0A is waiting for a key press"""
        return self.key_register is not None

    def dump_state(self):
        regs = " ".join(f"{v:02x}" for v in self.v_regs)
        return (f"[ {regs} ] PC: {self.pc:04x}, SP: {len(self.stack):02x}, "
                f"I: {self.idx:04x}, DT: {self.dt:02x}, ST: {self.st:02x}")

    def load_rom(self, rom):
        self.mem.load_rom(bytes(rom))

    def load_rom_file(self, path):
        """load ROM file from user specified path"""
        with open(path, mode='rb') as f:
            rom = f.read()
        self.load_rom(rom)
        if DEBUG: print(f"The ROM at path {path} has been loaded successfully")

    def step(self):
        """fetch, decode and execute exactly one instruction"""
        if self.fault is not None:
            raise self.fault
        if self.halted:
            return
        if self.waiting:
            self._poll_keypad()     # FX0A is still pending, don't fetch it again
            return
        pc = self.pc
        # fetch (each instruction is two bytes long)
        opcode = self.mem[pc & ADDRESS_MASK] << 8 | self.mem[(pc + 1) & ADDRESS_MASK]
        self._goto_next_instruction()
        try:
            instruction = decode(opcode)
            if DEBUG:
                from disasm import disasm
                print(f"mem_addr: 0x{pc:04x}    instruction: {disasm(opcode)}")
            self.instructions[instruction.op](instruction)
        except Chip8Error as err:
            err.opcode, err.pc = opcode, pc
            self.fault = err
            raise

    def tick(self):
        """60Hz timer tick, both timers stop at zero"""
        if self.dt > 0:
            self.dt -= 1
        if self.st > 0:
            self.st -= 1

    def resume(self, key):
        """latch a key for a pending FX0A, return False if nothing was waiting"""
        if not self.waiting:
            return False
        self.v_regs[self.key_register] = key & 0xF
        self.key_register = None
        self._goto_next_instruction()
        return True

    def _goto_next_instruction(self):
        self.pc = (self.pc + 0x2) & ADDRESS_MASK

    def _address(self, offset=0):
        return (self.idx + offset) & ADDRESS_MASK

    def _key_pressed(self, key):
        return self.keypad is not None and self.keypad.key_pressed(key)

    def _poll_keypad(self):
        key = self.keypad.await_key() if self.keypad is not None else None
        if key is not None:
            self.resume(key)

    def _clear_screen(self, ins):
        self.display.clear()
        self.draw = True

    def _return(self, ins):
        """return from a subroutine"""
        self.pc = self.stack.pop()

    def _jump(self, ins):
        # a jump on itself is how programs halt the machine
        if ins.nnn == (self.pc - 2) & ADDRESS_MASK:
            self.halted = True
            if DEBUG: print(f"halt: infinite jump at 0x{ins.nnn:04x}")
        self.pc = ins.nnn

    def _call_addr(self, ins):
        self.stack.append(self.pc)
        self.pc = ins.nnn

    def _skip_if_eq(self, ins):
        if self.v_regs[ins.x] == ins.kk:
            self._goto_next_instruction()

    def _skip_if_not_eq(self, ins):
        if self.v_regs[ins.x] != ins.kk:
            self._goto_next_instruction()

    def _skip_if_eq_regs(self, ins):
        if self.v_regs[ins.x] == self.v_regs[ins.y]:
            self._goto_next_instruction()

    def _skip_if_not_eq_regs(self, ins):
        if self.v_regs[ins.x] != self.v_regs[ins.y]:
            self._goto_next_instruction()

    def _set_vk(self, ins):
        """set the value of one of the 16 variable registers, Vx"""
        self.v_regs[ins.x] = ins.kk

    def _add_to_vk(self, ins):
        """add to the value already present in one of the variable registers, VF untouched"""
        self.v_regs[ins.x] = (self.v_regs[ins.x] + ins.kk) & 0xFF

    def _set_vx_to_vy(self, ins):
        self.v_regs[ins.x] = self.v_regs[ins.y]

    def _set_vx_or_vy(self, ins):
        self.v_regs[ins.x] |= self.v_regs[ins.y]

    def _set_vx_and_vy(self, ins):
        self.v_regs[ins.x] &= self.v_regs[ins.y]

    def _set_vx_xor_vy(self, ins):
        self.v_regs[ins.x] ^= self.v_regs[ins.y]

    # the flag is always written last, so it wins when x is VF

    def _add_vx_vy(self, ins):
        """set the value of Vx to Vx + Vy, VF = carry"""
        total = self.v_regs[ins.x] + self.v_regs[ins.y]
        self.v_regs[ins.x] = total & 0xFF
        self.v_regs[VF] = 1 if total > 0xFF else 0

    def _sub_vx_vy(self, ins):
        """set the value of Vx to Vx - Vy, VF = NOT borrow"""
        vx, vy = self.v_regs[ins.x], self.v_regs[ins.y]
        self.v_regs[ins.x] = (vx - vy) & 0xFF
        self.v_regs[VF] = 1 if vx >= vy else 0

    def _subn_vx_vy(self, ins):
        """set the value of Vx to Vy - Vx, VF = NOT borrow"""
        vx, vy = self.v_regs[ins.x], self.v_regs[ins.y]
        self.v_regs[ins.x] = (vy - vx) & 0xFF
        self.v_regs[VF] = 1 if vy >= vx else 0

    def _shr(self, ins):
        """set Vx equal to Vy SHR 1, VF = least significant bit of Vy"""
        vy = self.v_regs[ins.y]
        self.v_regs[ins.x] = vy >> 1
        self.v_regs[VF] = vy & 0x1

    def _shl(self, ins):
        """set Vx equal to Vy SHL 1, VF = most significant bit of Vy"""
        vy = self.v_regs[ins.y]
        self.v_regs[ins.x] = (vy << 1) & 0xFF
        self.v_regs[VF] = (vy & 0x80) >> 7

    def _set_idx(self, ins):
        self.idx = ins.nnn

    def _jump_plus(self, ins):
        self.pc = (self.v_regs[0x0] + ins.nnn) & ADDRESS_MASK

    def _random_byte_and(self, ins):
        self.v_regs[ins.x] = self.rng.randint(0, 255) & ins.kk

    def _to_screen(self, ins):
        """display n-byte sprite starting at memory location I at (Vx, Vy), set VF = collision"""
        sprite = [self.mem[self._address(i)] for i in range(ins.n)]
        collision = self.display.draw(self.v_regs[ins.x], self.v_regs[ins.y], sprite)
        self.v_regs[VF] = 1 if collision else 0
        self.draw = True

    def _skip_if_pressed(self, ins):
        """skip the following instruction if the key stored in Vx is pressed"""
        if self._key_pressed(self.v_regs[ins.x] & 0xF):
            self._goto_next_instruction()

    def _skip_if_not_pressed(self, ins):
        """skip the following instruction if the key stored in Vx is NOT pressed"""
        if not self._key_pressed(self.v_regs[ins.x] & 0xF):
            self._goto_next_instruction()

    def _wait_keypress(self, ins):
        """wait for a key press and store its value in Vx"""
        self.key_register = ins.x
        self.pc = (self.pc - 0x2) & ADDRESS_MASK    # stay on the same instruction until a key is latched
        self._poll_keypad()

    def _set_vx_dt(self, ins):
        self.v_regs[ins.x] = self.dt

    def _set_dt_vx(self, ins):
        self.dt = self.v_regs[ins.x]

    def _set_st(self, ins):
        self.st = self.v_regs[ins.x]

    def _add_to_idx(self, ins):
        self.idx = (self.idx + self.v_regs[ins.x]) & 0xFFFF

    def _select_char(self, ins):
        """set I to location of sprite for digit Vx"""
        digit = self.v_regs[ins.x]
        if digit > 0xF:
            if DEBUG: print(f"LD F: there is no font glyph for {digit}, using {digit & 0xF}")
            digit &= 0xF
        self.idx = FONT_ADDRESS + digit * FONT_GLYPH_SIZE

    def _bcd_repr(self, ins):
        """hundreds digit of Vx in memory at I, the tens digit at I+1, the ones digit at I+2"""
        value = self.v_regs[ins.x]
        self.mem[self._address(0)] = value // 100
        self.mem[self._address(1)] = (value // 10) % 10
        self.mem[self._address(2)] = value % 10

    def _store_vregs(self, ins):
        """store registers V0 through Vx (included) in memory starting at location I"""
        for i in range(ins.x + 1):
            self.mem[self._address(i)] = self.v_regs[i]
        self.idx = (self.idx + ins.x + 1) & 0xFFFF

    def _load_vregs(self, ins):
        """read registers V0 through Vx (included) from memory starting at location I"""
        for i in range(ins.x + 1):
            self.v_regs[i] = self.mem[self._address(i)]
        self.idx = (self.idx + ins.x + 1) & 0xFFFF
