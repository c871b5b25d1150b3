import collections, enum, logging, random

#4x5 hex fontset
from fontset import fontset, GLYPH_SIZE

logger = logging.getLogger(__name__)

MEMORY_SIZE = 4096
ADDR_MASK = 0xFFF
FONT_BASE = 0x050
PROGRAM_START = 0x200
STACK_DEPTH = 16
WIDTH, HEIGHT = 64, 32
NUM_KEYS = 16


class CHIP8Error(Exception):
    pass

class LoadError(CHIP8Error):
    pass

class StackError(CHIP8Error):
    pass


class StackPolicy(enum.Enum):
    """What a call on a full stack or a return on an empty one does.

    IGNORE keeps emulation running: the call still jumps without pushing,
    the return just steps over the instruction. RAISE stops with a
    StackError before any state has changed.
    """
    IGNORE = "ignore"
    RAISE = "raise"


Instruction = collections.namedtuple(
    "Instruction", ["opcode", "nnn", "x", "y", "kk", "n"]
)

def decode(opcode):
    """Split a 16-bit instruction word into its operand fields."""
    return Instruction(
        opcode,
        opcode & 0x0FFF,
        (opcode >> 8) & 0xF,
        (opcode >> 4) & 0xF,
        opcode & 0xFF,
        opcode & 0xF,
    )


class CHIP8:
    def __init__(self, cartdata=None, seed=None,
                 stack_policy=StackPolicy.IGNORE, shift_vy=True):
        self.memory = bytearray(MEMORY_SIZE)
        self.V = bytearray(16)
        self.I = 0
        self.pc = PROGRAM_START
        self.gfx = bytearray(WIDTH*HEIGHT)

        self.delay_timer = 0
        self.sound_timer = 0

        self.keys = bytearray(NUM_KEYS)

        self.drawFlag = False

        self.stack = []
        self.stack_policy = StackPolicy(stack_policy)

        # 8xy6/8xyE read V[y] on the original COSMAC interpreter, V[x] on
        # most later ones
        self.shift_vy = shift_vy

        # None seeds from the OS entropy source or the current time
        self.rng = random.Random(seed)

        # Unknown opcodes already reported at WARNING
        self._unknown_seen = set()

        self.memory[FONT_BASE:FONT_BASE + len(fontset)] = fontset

        self._dispatch = {
            0x0: self._op_0,
            0x1: self._jump,
            0x2: self._call,
            0x3: self._skip_eq_imm,
            0x4: self._skip_ne_imm,
            0x5: self._skip_eq_reg,
            0x6: self._load_imm,
            0x7: self._add_imm,
            0x8: self._op_8,
            0x9: self._skip_ne_reg,
            0xA: self._set_index,
            0xB: self._jump_offset,
            0xC: self._random,
            0xD: self._draw,
            0xE: self._op_E,
            0xF: self._op_F,
        }
        self._ops_0 = {
            0x00E0: self._clear,
            0x00EE: self._return,
        }
        self._ops_8 = {
            0x0: self._assign,
            0x1: self._or,
            0x2: self._and,
            0x3: self._xor,
            0x4: self._add,
            0x5: self._sub,
            0x6: self._shr,
            0x7: self._subn,
            0xE: self._shl,
        }
        self._ops_E = {
            0x9E: self._skip_key,
            0xA1: self._skip_not_key,
        }
        self._ops_F = {
            0x07: self._get_delay,
            0x0A: self._wait_key,
            0x15: self._set_delay,
            0x18: self._set_sound,
            0x1E: self._add_index,
            0x29: self._font_char,
            0x33: self._bcd,
            0x55: self._store_regs,
            0x65: self._load_regs,
        }

        if cartdata is not None:
            self.load(cartdata)

    # Program loading

    def load(self, cartdata, origin=PROGRAM_START):
        if cartdata is None or len(cartdata) == 0:
            raise LoadError("No program data to load")
        end = origin + len(cartdata)
        if origin < 0 or end > MEMORY_SIZE:
            raise LoadError(
                f"Program of {len(cartdata)} bytes at {hex(origin)} does not "
                f"fit in memory (max {MEMORY_SIZE - origin} bytes)"
            )
        self.memory[origin:end] = bytes(cartdata)
        logger.info("Loaded %d bytes at %s", len(cartdata), hex(origin))

    # Display & input surface

    def read_display(self):
        """Return the frame buffer and whether it changed since the last read.

        The buffer is 64*32 bytes, row-major, one byte (0 or 1) per pixel.
        """
        changed = self.drawFlag
        self.drawFlag = False
        return bytes(self.gfx), changed

    def pixel(self, x, y):
        return self.gfx[(x % WIDTH) + (y % HEIGHT)*WIDTH]

    def clear_display(self):
        self.gfx[:] = bytes(WIDTH*HEIGHT)
        self.drawFlag = True

    def set_keys(self, pressed):
        keys = bytearray(NUM_KEYS)
        for key in pressed:
            if not 0 <= key < NUM_KEYS:
                raise ValueError(f"Key index out of range: {key}")
            keys[key] = 1
        self.keys = keys

    @property
    def sound_active(self):
        return self.sound_timer > 0

    # Execution

    def fetch(self):
        return (self.memory[self.pc & ADDR_MASK] << 8
                | self.memory[(self.pc + 1) & ADDR_MASK])

    def cycle(self):
        # Get Opcode
        ins = decode(self.fetch())
        logger.debug("%03X: %04X", self.pc, ins.opcode)

        # Decode and Execute Opcode
        self._dispatch[ins.opcode >> 12](ins)

        # Update timers
        if self.delay_timer > 0:
            self.delay_timer -= 1
        if self.sound_timer > 0:
            self.sound_timer -= 1

    def _next(self):
        self.pc = (self.pc + 2) & ADDR_MASK

    def _skip_if(self, condition):
        self.pc = (self.pc + (4 if condition else 2)) & ADDR_MASK

    def _unknown(self, ins):
        if ins.opcode in self._unknown_seen:
            logger.debug("Unknown OpCode at %s: 0x%04X", hex(self.pc), ins.opcode)
        else:
            self._unknown_seen.add(ins.opcode)
            logger.warning("Unknown OpCode at %s: 0x%04X", hex(self.pc), ins.opcode)
        self._next()

    # Sub-decoding families

    def _op_0(self, ins):
        self._ops_0.get(ins.opcode, self._unknown)(ins)

    def _op_8(self, ins):
        self._ops_8.get(ins.n, self._unknown)(ins)

    def _op_E(self, ins):
        self._ops_E.get(ins.kk, self._unknown)(ins)

    def _op_F(self, ins):
        self._ops_F.get(ins.kk, self._unknown)(ins)

    # Flow control

    def _clear(self, ins):
        # 00E0: Clear screen
        self.clear_display()
        self._next()

    def _return(self, ins):
        # 00EE: Return from subroutine
        if not self.stack:
            if self.stack_policy is StackPolicy.RAISE:
                raise StackError(f"Return at {hex(self.pc)} has nowhere to go")
            logger.warning("Return at %s with an empty stack, ignored",
                           hex(self.pc))
            self._next()
            return
        self.pc = self.stack.pop()

    def _jump(self, ins):
        # 1nnn: Jump to [nnn]
        self.pc = ins.nnn

    def _call(self, ins):
        # 2nnn: Call subroutine at [nnn]
        if len(self.stack) >= STACK_DEPTH:
            if self.stack_policy is StackPolicy.RAISE:
                raise StackError(
                    f"Stack is full, cannot call subroutine at {hex(self.pc)}"
                )
            logger.warning("Call at %s with a full stack, return address dropped",
                           hex(self.pc))
        else:
            self.stack.append((self.pc + 2) & ADDR_MASK)
        self.pc = ins.nnn

    def _jump_offset(self, ins):
        # Bnnn: Jump to [nnn] plus V0
        self.pc = (ins.nnn + self.V[0]) & ADDR_MASK

    # Conditional skips

    def _skip_eq_imm(self, ins):
        # 3xkk: Skips next instruction if V[x] equals [kk]
        self._skip_if(self.V[ins.x] == ins.kk)

    def _skip_ne_imm(self, ins):
        # 4xkk: Skips next instruction if V[x] doesn't equal [kk]
        self._skip_if(self.V[ins.x] != ins.kk)

    def _skip_eq_reg(self, ins):
        # 5xy0: Skips next instruction if V[x] equals V[y]
        if ins.n != 0:
            return self._unknown(ins)
        self._skip_if(self.V[ins.x] == self.V[ins.y])

    def _skip_ne_reg(self, ins):
        # 9xy0: Skips next instruction if V[x] doesn't equal V[y]
        if ins.n != 0:
            return self._unknown(ins)
        self._skip_if(self.V[ins.x] != self.V[ins.y])

    def _key_pressed(self, key):
        return key < NUM_KEYS and bool(self.keys[key])

    def _skip_key(self, ins):
        # Ex9E: Skips next instruction if the key V[x] is pressed
        self._skip_if(self._key_pressed(self.V[ins.x]))

    def _skip_not_key(self, ins):
        # ExA1: Skips next instruction if the key V[x] is not pressed
        self._skip_if(not self._key_pressed(self.V[ins.x]))

    # Registers

    def _load_imm(self, ins):
        # 6xkk: Set V[x] to [kk]
        self.V[ins.x] = ins.kk
        self._next()

    def _add_imm(self, ins):
        # 7xkk: Add [kk] to V[x], Vf untouched
        self.V[ins.x] = (self.V[ins.x] + ins.kk) & 0xFF
        self._next()

    def _assign(self, ins):
        # 8xy0: Set V[x] to V[y]
        self.V[ins.x] = self.V[ins.y]
        self._next()

    def _or(self, ins):
        # 8xy1: Set V[x] to V[x] OR V[y], reset Vf
        self.V[ins.x] |= self.V[ins.y]
        self.V[0xF] = 0
        self._next()

    def _and(self, ins):
        # 8xy2: Set V[x] to V[x] AND V[y], reset Vf
        self.V[ins.x] &= self.V[ins.y]
        self.V[0xF] = 0
        self._next()

    def _xor(self, ins):
        # 8xy3: Set V[x] to V[x] XOR V[y], reset Vf
        self.V[ins.x] ^= self.V[ins.y]
        self.V[0xF] = 0
        self._next()

    # Flags are written after the result so Vf ends up holding the flag
    # when it is also the destination.

    def _add(self, ins):
        # 8xy4: Add V[y] to V[x], and set Vf to whether there was an
        # overflow or not
        total = self.V[ins.x] + self.V[ins.y]
        self.V[ins.x] = total & 0xFF
        self.V[0xF] = int(total > 0xFF)
        self._next()

    def _sub(self, ins):
        # 8xy5: Subtract V[y] from V[x], Vf is 0 on borrow
        vx, vy = self.V[ins.x], self.V[ins.y]
        self.V[ins.x] = (vx - vy) & 0xFF
        self.V[0xF] = int(vx >= vy)
        self._next()

    def _subn(self, ins):
        # 8xy7: Set V[x] to V[y] minus V[x], Vf is 0 on borrow
        vx, vy = self.V[ins.x], self.V[ins.y]
        self.V[ins.x] = (vy - vx) & 0xFF
        self.V[0xF] = int(vy >= vx)
        self._next()

    def _shift_source(self, ins):
        return self.V[ins.y] if self.shift_vy else self.V[ins.x]

    def _shr(self, ins):
        # 8xy6: Shift right by 1, the bit shifted out goes in Vf
        value = self._shift_source(ins)
        self.V[ins.x] = value >> 1
        self.V[0xF] = value & 1
        self._next()

    def _shl(self, ins):
        # 8xyE: Shift left by 1, the bit shifted out goes in Vf
        value = self._shift_source(ins)
        self.V[ins.x] = (value << 1) & 0xFF
        self.V[0xF] = value >> 7
        self._next()

    def _random(self, ins):
        # Cxkk: Set V[x] to a random number, and bitwise-AND it with [kk]
        self.V[ins.x] = self.rng.randint(0, 255) & ins.kk
        self._next()

    # Index register and memory

    def _set_index(self, ins):
        # Annn: Set I to [nnn]
        self.I = ins.nnn
        self._next()

    def _add_index(self, ins):
        # Fx1E: Add V[x] to I, Vf untouched
        self.I = (self.I + self.V[ins.x]) & 0xFFFF
        self._next()

    def _font_char(self, ins):
        # Fx29: Set I to the fontset glyph for the low nibble of V[x]
        self.I = FONT_BASE + (self.V[ins.x] & 0xF) * GLYPH_SIZE
        self._next()

    def _bcd(self, ins):
        # Fx33: Dump the 3-digit decimal representation of V[x] into
        # memory, starting at I
        value = self.V[ins.x]
        for i, digit in enumerate((value // 100, value // 10 % 10, value % 10)):
            self.memory[(self.I + i) & ADDR_MASK] = digit
        self._next()

    def _store_regs(self, ins):
        # Fx55: Dump V0..V[x] into memory, starting at I
        for i in range(ins.x + 1):
            self.memory[(self.I + i) & ADDR_MASK] = self.V[i]
        self.I = (self.I + ins.x + 1) & 0xFFFF
        self._next()

    def _load_regs(self, ins):
        # Fx65: Load memory into V0..V[x], starting at I
        for i in range(ins.x + 1):
            self.V[i] = self.memory[(self.I + i) & ADDR_MASK]
        self.I = (self.I + ins.x + 1) & 0xFFFF
        self._next()

    # Timers and input

    def _get_delay(self, ins):
        # Fx07: Set V[x] to delay timer
        self.V[ins.x] = self.delay_timer
        self._next()

    def _set_delay(self, ins):
        # Fx15: Set delay timer to V[x]
        self.delay_timer = self.V[ins.x]
        self._next()

    def _set_sound(self, ins):
        # Fx18: Set sound timer to V[x]
        self.sound_timer = self.V[ins.x]
        self._next()

    def _wait_key(self, ins):
        # Fx0A: Await key press and store it in V[x]; pc stays put until
        # one is held
        for key in range(NUM_KEYS):
            if self.keys[key]:
                self.V[ins.x] = key
                self._next()
                return

    # Display

    def _draw(self, ins):
        # Dxyn: XOR sprite stored at the I pointer with height [n] at V[x],
        # V[y] onto display, wrapping at the edges
        flipped_off = False
        x, y = self.V[ins.x], self.V[ins.y]
        for sy in range(ins.n):
            row = self.memory[(self.I + sy) & ADDR_MASK]
            for sx in range(8):
                if not row & (0x80 >> sx):
                    continue
                gfx_index = ((x+sx) % WIDTH) + (((y+sy) % HEIGHT)*WIDTH)
                if self.gfx[gfx_index]:
                    flipped_off = True
                self.gfx[gfx_index] ^= 1
        self.V[0xF] = int(flipped_off)
        self.drawFlag = True
        self._next()
