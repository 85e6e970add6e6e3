"""
line based CHIP-8 assembler, the syntax is the one produced by disasm:

    start:  LD V0, 0x20     ; comments start with a semicolon
            ADD V0, 1
            JP start
            DB 0xF0, 0x90   ; raw bytes
"""
import re

from chip8 import DEBUG, ROM_START_ADDRESS


class AsmError(Exception):
    def __init__(self, msg, lineno=None):
        super().__init__(msg if lineno is None else f"line {lineno}: {msg}")
        self.lineno = lineno


KEYWORDS = {'i', '[i]', 'dt', 'st', 'k', 'f', 'b'}
REGISTER = re.compile(r'v[0-9a-f]')
LABEL = re.compile(r'([a-z_.][a-z0-9_.]*):')
LIMITS = {'nnn': 0xFFF, 'kk': 0xFF, 'n': 0xF}

# (mnemonic, operand slots, base opcode, field for each slot)
# slots: 'reg' any Vx, 'v0' only V0, 'num' a number or a label, anything else a keyword
ENCODINGS = [
    ('cls', (), 0x00E0, ()),
    ('ret', (), 0x00EE, ()),
    ('sys', ('num',), 0x0000, ('nnn',)),
    ('jp', ('num',), 0x1000, ('nnn',)),
    ('jp', ('v0', 'num'), 0xB000, (None, 'nnn')),
    ('call', ('num',), 0x2000, ('nnn',)),
    ('se', ('reg', 'num'), 0x3000, ('x', 'kk')),
    ('sne', ('reg', 'num'), 0x4000, ('x', 'kk')),
    ('se', ('reg', 'reg'), 0x5000, ('x', 'y')),
    ('ld', ('reg', 'num'), 0x6000, ('x', 'kk')),
    ('add', ('reg', 'num'), 0x7000, ('x', 'kk')),
    ('ld', ('reg', 'reg'), 0x8000, ('x', 'y')),
    ('or', ('reg', 'reg'), 0x8001, ('x', 'y')),
    ('and', ('reg', 'reg'), 0x8002, ('x', 'y')),
    ('xor', ('reg', 'reg'), 0x8003, ('x', 'y')),
    ('add', ('reg', 'reg'), 0x8004, ('x', 'y')),
    ('sub', ('reg', 'reg'), 0x8005, ('x', 'y')),
    ('shr', ('reg', 'reg'), 0x8006, ('x', 'y')),
    ('shr', ('reg',), 0x8006, ('xy',)),
    ('subn', ('reg', 'reg'), 0x8007, ('x', 'y')),
    ('shl', ('reg', 'reg'), 0x800E, ('x', 'y')),
    ('shl', ('reg',), 0x800E, ('xy',)),
    ('sne', ('reg', 'reg'), 0x9000, ('x', 'y')),
    ('ld', ('i', 'num'), 0xA000, (None, 'nnn')),
    ('rnd', ('reg', 'num'), 0xC000, ('x', 'kk')),
    ('drw', ('reg', 'reg', 'num'), 0xD000, ('x', 'y', 'n')),
    ('skp', ('reg',), 0xE09E, ('x',)),
    ('sknp', ('reg',), 0xE0A1, ('x',)),
    ('ld', ('reg', 'dt'), 0xF007, ('x', None)),
    ('ld', ('reg', 'k'), 0xF00A, ('x', None)),
    ('ld', ('dt', 'reg'), 0xF015, (None, 'x')),
    ('ld', ('st', 'reg'), 0xF018, (None, 'x')),
    ('add', ('i', 'reg'), 0xF01E, (None, 'x')),
    ('ld', ('f', 'reg'), 0xF029, (None, 'x')),
    ('ld', ('b', 'reg'), 0xF033, (None, 'x')),
    ('ld', ('[i]', 'reg'), 0xF055, (None, 'x')),
    ('ld', ('reg', '[i]'), 0xF065, ('x', None)),
]
ALIASES = {'jmp': 'jp'}
MNEMONICS = {e[0] for e in ENCODINGS}


def _strip(line):
    """remove comment and label, return (label, rest of the line)"""
    line = line.split(';', 1)[0].strip().lower()
    m = LABEL.match(line)
    if m:
        return m.group(1), line[m.end():].strip()
    return None, line

def _tokens(line):
    return [t for t in re.split(r'[,\s]+', line) if t]

def _number(token, labels):
    if labels is not None and token in labels:
        return labels[token]
    try:
        return int(token, 0)
    except ValueError:
        raise AsmError(f"invalid operand: {token}") from None

def _operand(token, labels):
    """classify an operand, return (kind, value)"""
    if token in KEYWORDS:
        return token, None
    if REGISTER.fullmatch(token):
        return 'reg', int(token[1:], 16)
    return 'num', _number(token, labels)

def _matches(slots, operands):
    if len(slots) != len(operands):
        return False
    for slot, (kind, value) in zip(slots, operands):
        if slot == 'v0':
            if kind != 'reg' or value != 0:
                return False
        elif slot != kind:
            return False
    return True

def _encode(base, fields, operands):
    opcode = base
    for field, (kind, value) in zip(fields, operands):
        if field is None:
            continue
        if field in LIMITS and not 0 <= value <= LIMITS[field]:
            raise AsmError(f"operand out of range: {value}")
        if field == 'x':
            opcode |= value << 8
        elif field == 'y':
            opcode |= value << 4
        elif field == 'xy':
            opcode |= value << 8 | value << 4
        else:
            opcode |= value
    return opcode

def assemble_line(line, labels=None):
    """assemble one line, return the opcode or None if there's no instruction on it"""
    _, line = _strip(line)
    if not line:
        return None
    mnemonic, *args = _tokens(line)
    mnemonic = ALIASES.get(mnemonic, mnemonic)
    if mnemonic not in MNEMONICS:
        raise AsmError(f"unknown mnemonic: {mnemonic}")
    operands = [_operand(a, labels) for a in args]
    for name, slots, base, fields in ENCODINGS:
        if name == mnemonic and _matches(slots, operands):
            return _encode(base, fields, operands)
    raise AsmError(f"invalid operands for {mnemonic.upper()}: {', '.join(args)}")

def assemble(source, origin=ROM_START_ADDRESS):
    """assemble a whole program, labels can be used in place of addresses"""
    lines = source.splitlines()
    # first pass: collect label addresses
    labels, address = {}, origin
    for lineno, line in enumerate(lines, 1):
        label, rest = _strip(line)
        if label is not None:
            if label in labels:
                raise AsmError(f"label defined twice: {label}", lineno)
            labels[label] = address
        if not rest:
            continue
        tokens = _tokens(rest)
        if tokens[0] == 'db':
            count = len(tokens) - 1
            address += count + count % 2     # every DB run ends on an even address
        else:
            address += 2
    if DEBUG: print(f"labels: {labels}")
    # second pass: encode
    image = bytearray()
    for lineno, line in enumerate(lines, 1):
        _, rest = _strip(line)
        if not rest:
            continue
        try:
            tokens = _tokens(rest)
            if tokens[0] == 'db':
                for token in tokens[1:]:
                    value = _number(token, labels)
                    if not 0 <= value <= 0xFF:
                        raise AsmError(f"operand out of range: {value}")
                    image.append(value)
                if len(tokens) % 2 == 0:
                    image.append(0)
            else:
                opcode = assemble_line(rest, labels)
                image += bytes([opcode >> 8, opcode & 0xFF])
        except AsmError as err:
            if err.lineno is not None:
                raise
            raise AsmError(str(err), lineno) from None
    return bytes(image)
