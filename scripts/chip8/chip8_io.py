# pygame host for the machine in chip8.py: window, buzzer, keyboard, ROM
# file and the 60Hz loop that drives cycle() and tick_timers().
#
# Keys are laid out on the left of a QWERTY keyboard:
#
#   1 2 3 C        1 2 3 4
#   4 5 6 D   <-   Q W E R
#   7 8 9 E        A S D F
#   A 0 B F        Z X C V


import argparse
import logging
import sys
from array import array

import os
os.environ["PYGAME_HIDE_SUPPORT_PROMPT"] = "no welcome message"   # this env var disable pygame's welcome message when imported
import pygame
from pygame.locals import (
    K_1, K_2, K_3, K_4,
    K_q, K_w, K_e, K_r,
    K_a, K_s, K_d, K_f,
    K_z, K_x, K_c, K_v,
)

from chip8 import Chip8, Chip8Fault, ProgramTooLarge, SCREEN_HEIGHT, SCREEN_WIDTH, TIMER_HZ


logger = logging.getLogger(__name__)


# ******************** STATIC SECTION
KEY_MAPPINGS = {
    K_1: 0x1, K_2: 0x2, K_3: 0x3, K_4: 0xC,
    K_q: 0x4, K_w: 0x5, K_e: 0x6, K_r: 0xD,
    K_a: 0x7, K_s: 0x8, K_d: 0x9, K_f: 0xE,
    K_z: 0xA, K_x: 0x0, K_c: 0xB, K_v: 0xF,
}

DEBUG = True if int(os.getenv('DEBUG', 0)) >= 1 else False
DEFAULT_IPS = 600       # instructions per second
SCALE = 15
BLUE = pygame.Color(80,69,155,255)
LIGHT_BLUE = pygame.Color(136,126,203,255)
SAMPLE_RATE = 44100
TONE_HZ = 440
TONE_VOLUME = 4096


# ******************** UTILITIES SECTION
def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="CHIP-8 emulator")
    parser.add_argument("-f", "--file", required=True, help="input rom file")
    parser.add_argument("--ips", type=int, default=DEFAULT_IPS,
                        help=f"instructions executed per second (default {DEFAULT_IPS})")
    parser.add_argument("--scale", type=int, default=SCALE, help="size in pixels of one CHIP-8 pixel")
    parser.add_argument("--seed", type=int, default=None, help="seed for the RND instruction")
    parser.add_argument("--debug", action="store_true", help="log every executed instruction")
    return parser.parse_args(argv)

def read_rom(path):
    """return the raw bytes of the ROM file at path"""
    with open(path, mode='rb') as f:
        rom = f.read()
    logger.info("Read ROM %s (%d bytes)", path, len(rom))
    return rom

def cycles_per_frame(ips):
    """instructions to run between two timer ticks, at least one"""
    return max(1, round(ips / TIMER_HZ))


# ******************** I/O SECTION
class Screen:
    """draws a chip8.Framebuffer on a pygame window"""
    def __init__(self, w=SCREEN_WIDTH, h=SCREEN_HEIGHT, s=SCALE, bg_color=BLUE, fg_color=LIGHT_BLUE):
        self.w, self.h, self.scale = w, h, s
        self.background = bg_color
        self.foreground = fg_color
        self.surface = pygame.display.set_mode(
            (w * self.scale, h * self.scale),
        )
        self.surface.fill(self.background)

    def render(self, framebuffer):
        """paint every pixel of framebuffer, the change is visible after refresh()"""
        self.surface.fill(self.background)
        for y, row in enumerate(framebuffer.rows()):
            for x, pixel in enumerate(row):
                if pixel:
                    pygame.draw.rect(
                        self.surface,
                        self.foreground,
                        (x * self.scale, y * self.scale, self.scale, self.scale)
                    )

    @staticmethod
    def refresh():
        pygame.display.flip()

class Buzzer:
    """square wave tone played while the sound timer is running"""
    def __init__(self, frequency=TONE_HZ, volume=TONE_VOLUME):
        self.playing = False
        self.tone = None
        try:
            pygame.mixer.init(SAMPLE_RATE, -16, 1)
        except pygame.error as err:
            logger.warning("No audio device, running silent: %s", err)
            return
        # an already open mixer keeps its own rate and channel count, build the tone for those
        rate, _, channels = pygame.mixer.get_init()
        half_period = max(1, rate // (2 * frequency))
        period = [volume] * half_period + [-volume] * half_period
        frames = period * (rate // len(period))
        samples = array('h', [s for s in frames for _ in range(channels)])
        self.tone = pygame.mixer.Sound(buffer=samples.tobytes())

    def update(self, sound_on):
        if self.tone is None or sound_on == self.playing:
            return
        if sound_on:
            self.tone.play(loops=-1)
        else:
            self.tone.stop()
        self.playing = sound_on

def handle_events(chip):
    """copy keyboard state into the chip keypad, return False when the user asks to quit"""
    for event in pygame.event.get():
        if event.type == pygame.QUIT:
            return False
        if event.type == pygame.KEYDOWN:
            if event.key == pygame.K_ESCAPE:
                return False
            if event.key in KEY_MAPPINGS:
                chip.keypad[KEY_MAPPINGS[event.key]] = True
                logger.debug("Key %X pressed", KEY_MAPPINGS[event.key])
        elif event.type == pygame.KEYUP and event.key in KEY_MAPPINGS:
            chip.keypad[KEY_MAPPINGS[event.key]] = False
    return True

def run_frame(chip, steps, buzzer):
    """
    one 60Hz frame: up to steps instructions, then one timer tick
    stops early on an FX0A still waiting for a key, returns True if the screen changed
    """
    dirty = False
    for _ in range(steps):
        chip.cycle()
        dirty = dirty or chip.draw
        if chip.waiting:
            break
    chip.tick_timers()
    buzzer.update(chip.sound_on)
    return dirty


# ******************** ENTRY POINT SECTION
def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.debug or DEBUG else logging.INFO,
                        format="[%(levelname)s] %(name)s: %(message)s")
    chip = Chip8(seed=args.seed)
    try:
        chip.load(read_rom(args.file))
    except (OSError, ProgramTooLarge) as err:
        sys.exit(f"Cannot load {args.file}: {err}")
    # pygame initialization, the mixer settings must come before pygame.init() opens it
    pygame.mixer.pre_init(SAMPLE_RATE, -16, 1)
    pygame.init()
    clock = pygame.time.Clock()
    pygame.display.set_caption(os.path.basename(args.file))
    # IO
    screen = Screen(s=args.scale)
    buzzer = Buzzer()
    steps = cycles_per_frame(args.ips)
    logger.info("Running at %d instructions per frame, %d frames per second", steps, TIMER_HZ)
    # emulation loop
    run = True
    try:
        while run:
            clock.tick(TIMER_HZ)
            run = handle_events(chip)
            if run_frame(chip, steps, buzzer):
                screen.render(chip.framebuffer)
                screen.refresh()
    except Chip8Fault as fault:
        logger.error("Machine fault: %s", fault)
        sys.exit(f"********** THE EMULATOR CRASHED WITH THE FOLLOWING STATE\n{chip}")
    finally:
        pygame.quit()


if __name__ == "__main__":
    main()
