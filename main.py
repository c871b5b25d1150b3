#!/usr/bin/env python3
try:
    import better_exceptions as b_e
    import sys
    sys.excepthook = b_e.excepthook
except ImportError:
    pass

import argparse, logging, sys
import pygame
import pygame.locals as plocals

from Chip8 import CHIP8, CHIP8Error, LoadError, StackPolicy, WIDTH, HEIGHT

logger = logging.getLogger(__name__)

OFF_COLOR = ( 20, 50, 80)
ON_COLOR =  (100,255,100)
PIX_SIZE = 20
TPF = 10 # Ticks per Frame
FPS = 60 # Frames per Second
KEYMAP = {
    plocals.K_1: 0x1, plocals.K_2: 0x2, plocals.K_3: 0x3, plocals.K_4: 0xC,
    plocals.K_q: 0x4, plocals.K_w: 0x5, plocals.K_e: 0x6, plocals.K_r: 0xD,
    plocals.K_a: 0x7, plocals.K_s: 0x8, plocals.K_d: 0x9, plocals.K_f: 0xE,
    plocals.K_z: 0xA, plocals.K_x: 0x0, plocals.K_c: 0xB, plocals.K_v: 0xF,

    plocals.K_SPACE: 0x6,

                         plocals.K_UP:   0x5,
    plocals.K_LEFT: 0x7, plocals.K_DOWN: 0x8, plocals.K_RIGHT: 0x9,
}


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run a CHIP-8 program")
    parser.add_argument("filename",
                        help="Program image to load at 0x200")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for the random number opcode")
    parser.add_argument("--strict-stack", action="store_true",
                        help="Stop on stack overflow/underflow instead of "
                             "ignoring it")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Trace every executed opcode")
    return parser.parse_args(argv)

def loadfile(filename):
    try:
        with open(filename, "rb") as f:
            return f.read()
    except OSError as e:
        raise LoadError(f"Cannot read {filename}: {e.strerror}") from e

def handle_event(event, held):
    """Track held CHIP-8 keys from a pygame event. False means quit."""
    if event.type == plocals.KEYDOWN:
        if event.key in KEYMAP:
            held.add(KEYMAP[event.key])
    elif event.type == plocals.KEYUP:
        if event.key in KEYMAP:
            held.discard(KEYMAP[event.key])
    elif event.type == plocals.QUIT:
        return False
    return True

def draw(frame, win):
    for i in range(WIDTH*HEIGHT):
        pix_rect = (
            i%WIDTH*PIX_SIZE, i//WIDTH*PIX_SIZE,
            PIX_SIZE, PIX_SIZE
        )
        pygame.draw.rect(win, ON_COLOR if frame[i] else OFF_COLOR, pix_rect)
    pygame.display.update()

def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s]:  %(message)s",
    )

    policy = StackPolicy.RAISE if args.strict_stack else StackPolicy.IGNORE
    try:
        c = CHIP8(loadfile(args.filename), seed=args.seed, stack_policy=policy)
    except LoadError as e:
        sys.stderr.write("CHIP-8 Error: " + str(e) + "\n")
        return 1

    pygame.init()
    win = pygame.display.set_mode((WIDTH*PIX_SIZE, HEIGHT*PIX_SIZE))
    pygame.display.set_caption("Chippy")
    clock = pygame.time.Clock()

    frame, _ = c.read_display()
    draw(frame, win)
    held = set()
    status = 0
    try:
        running = True
        while running:
            for event in pygame.event.get():
                running = handle_event(event, held) and running
            c.set_keys(held)
            for _ in range(TPF):
                c.cycle()
            frame, changed = c.read_display()
            if changed:
                draw(frame, win)
            clock.tick(FPS)
    except CHIP8Error as e:
        sys.stderr.write("CHIP-8 Error: " + str(e) + "\n")
        status = 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
    pygame.quit()
    print("Goodbye!")
    return status

if __name__ == "__main__":
    sys.exit(main())
