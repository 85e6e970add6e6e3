import argparse
import os
import sys

os.environ["PYGAME_HIDE_SUPPORT_PROMPT"] = "no welcome message"   # this env var disable pygame's welcome message when imported
import pygame
from pygame.locals import (
    K_0, K_1, K_2, K_3,
    K_4, K_5, K_6, K_7,
    K_8, K_9, K_a, K_b,
    K_c, K_d, K_e, K_f,
)

from chip8 import (
    DEBUG, SCREEN_HEIGHT, SCREEN_WIDTH, SCREEN_WIDTH_BYTES, TIMER_FREQUENCY,
    Chip8, Chip8Error,
)
from disasm import disassemble_file


# ******************** STATIC SECTION
KEY_MAPPINGS = {
    K_0: 0x0,
    K_1: 0x1,
    K_2: 0x2,
    K_3: 0x3,
    K_4: 0x4,
    K_5: 0x5,
    K_6: 0x6,
    K_7: 0x7,
    K_8: 0x8,
    K_9: 0x9,
    K_a: 0xA,
    K_b: 0xB,
    K_c: 0xC,
    K_d: 0xD,
    K_e: 0xE,
    K_f: 0xF,
}

SCALE = 15
CYCLES_PER_FRAME = 10       # instructions executed between two timer ticks
BLUE = pygame.Color(80,69,155,255)
LIGHT_BLUE = pygame.Color(136,126,203,255)


# ******************** UTILITIES SECTION
def get_args(argv=None):
    parser = argparse.ArgumentParser(prog="chip8", description="run a CHIP-8 rom")
    parser.add_argument("rom", help="input rom file")
    parser.add_argument("--disasm", action="store_true", help="print the rom disassembly instead of running it")
    return parser.parse_args(argv)

def lit_pixels(snapshot, w=SCREEN_WIDTH, h=SCREEN_HEIGHT):
    """yield the (x, y) coordinates of the pixels turned ON in a display snapshot"""
    for y in range(h):
        for x in range(w):
            byte = snapshot[y * SCREEN_WIDTH_BYTES + x // 8]
            if (byte >> (7 - x % 8)) & 0x1:
                yield x, y


# ******************** I/O SECTION
class Screen:
    def __init__(self, w=SCREEN_WIDTH, h=SCREEN_HEIGHT, s=SCALE, bg_color=BLUE, fg_color=LIGHT_BLUE):
        self.w, self.h, self.scale = w, h, s
        self.background = bg_color
        self.foreground = fg_color
        self.surface = pygame.display.set_mode(
            (w * self.scale, h * self.scale),
        )
        self.surface.fill(self.background)
        pygame.display.flip()

    def render(self, snapshot):
        """draw a snapshot of the video memory and make it visible"""
        self.surface.fill(self.background)
        for x, y in lit_pixels(snapshot, self.w, self.h):
            pygame.draw.rect(
                self.surface,
                self.foreground,
                (x * self.scale, y * self.scale, self.scale, self.scale)
            )
        pygame.display.flip()

class Keypad:
    """state of the 16 keys, owned by the emulation loop and queried by the CPU"""

    def __init__(self):
        self.pressed = [False] * 16
        self.presses = []       # keys pressed since the last flush, oldest first

    def press(self, key):
        self.pressed[key] = True
        self.presses.append(key)

    def release(self, key):
        self.pressed[key] = False

    def key_pressed(self, key):
        return self.pressed[key & 0xF]

    def await_key(self):
        """get first button pressed present in the queue, None if there's none"""
        if not self.presses:
            return None
        return self.presses.pop(0)

    def flush(self):
        self.presses.clear()


# ******************** EMULATION LOOP SECTION
class Emulator:
    def __init__(self, chip, screen, keypad, clock=None):
        self.chip = chip
        self.screen = screen
        self.keypad = keypad
        self.clock = clock if clock is not None else pygame.time.Clock()
        self.running = True

    def poll(self):
        """loop throught the event queue"""
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                self.running = False
            elif event.type == pygame.KEYDOWN:
                if event.key == pygame.K_ESCAPE:
                    self.running = False
                elif event.key in KEY_MAPPINGS:
                    self.keypad.press(KEY_MAPPINGS[event.key])
            elif event.type == pygame.KEYUP and event.key in KEY_MAPPINGS:
                self.keypad.release(KEY_MAPPINGS[event.key])

    def frame(self):
        """a batch of instructions, one timer tick, one redraw if needed"""
        for _ in range(CYCLES_PER_FRAME):
            if self.chip.halted:
                break
            self.chip.step()
        self.keypad.flush()     # FX0A only sees presses from the current frame
        self.chip.tick()
        if self.chip.draw:
            self.screen.render(self.chip.display.snapshot())
            self.chip.draw = False
        if DEBUG: print(self.chip.dump_state())

    def run(self):
        while self.running and not self.chip.halted:
            self.clock.tick(TIMER_FREQUENCY)
            self.poll()
            self.frame()


# ******************** ENTRY POINT SECTION
def main(argv=None):
    args = get_args(argv)
    if args.disasm:
        try:
            listing = disassemble_file(args.rom)
        except OSError as err:
            sys.exit(f"cannot read the ROM: {err}")
        for line in listing:
            print(line)
        return 0
    # pygame initialization
    pygame.init()
    pygame.display.set_caption(os.path.basename(args.rom))
    keypad = Keypad()
    chip = Chip8(keypad=keypad)
    try:
        chip.load_rom_file(args.rom)
        emulator = Emulator(chip, Screen(), keypad)
        emulator.run()
    except OSError as err:
        sys.exit(f"cannot read the ROM: {err}")
    except Chip8Error as err:
        sys.exit(f"********** THE EMULATOR CRASHED: {err}\n{chip}")
    finally:
        pygame.quit()
    return 0


if __name__ == "__main__":
    sys.exit(main())
