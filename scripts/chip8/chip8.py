# CHIP-8 INFO
# https://chip-8.github.io/extensions/#chip-8
# http://devernay.free.fr/hacks/chip8/C8TECH10.HTM
#
# MASTERING CHIP-8
# https://github.com/mattmikolay/chip-8/wiki/Mastering-CHIP%E2%80%908
#
# TEST SUITE
# https://github.com/Timendus/chip8-test-suite
#
# This module is the machine only: memory, registers, stack, timers,
# framebuffer, keypad and the fetch/decode/execute engine. Nothing in here
# touches a window, a speaker or a clock; see chip8_io.py for the host.


import logging
import random
from collections import namedtuple
from functools import wraps


logger = logging.getLogger(__name__)


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
FONT_ADDRESS = 0x000
FONT_GLYPH_SIZE = 5
ROM_START_ADDRESS = 0x200
MAX_ROM_SIZE = MEMORY_SIZE - ROM_START_ADDRESS
STACK_SIZE = 16
REGISTER_COUNT = 16
KEY_COUNT = 16
SCREEN_HEIGHT = 32
SCREEN_WIDTH = 64
TIMER_HZ = 60

# opcode split into its nibble fields, see split_opcode()
Instruction = namedtuple("Instruction", ["opcode", "family", "x", "y", "n", "nn", "nnn"])


# ******************** ERRORS SECTION
class Chip8Error(Exception):
    """base class of everything raised by this module"""


class ProgramTooLarge(Chip8Error, ValueError):
    """the program image does not fit between ROM_START_ADDRESS and the end of memory"""


class Chip8Fault(Chip8Error):
    """
    raised while executing an instruction, the machine is left as it was before the instruction
    address and opcode are filled in by Chip8.cycle() if the raiser didn't know them
    """
    def __init__(self, message, address=None, opcode=None):
        super().__init__(message)
        self.address = address
        self.opcode = opcode

    def __str__(self):
        msg = super().__str__()
        if self.address is not None:
            msg += f" [pc=0x{self.address:04x}"
            if self.opcode is not None:
                msg += f" opcode=0x{self.opcode:04x}"
            msg += "]"
        return msg


class UnknownOpcode(Chip8Fault, NotImplementedError):
    pass


class StackOverflow(Chip8Fault, IndexError):
    pass


class StackUnderflow(Chip8Fault, IndexError):
    pass


class MemoryFault(Chip8Fault, IndexError):
    pass


# ******************** UTILITIES SECTION
def asm(msg):
    """decorator to log the ASM of the instruction being executed"""
    def decorator(fn):
        @wraps(fn)
        def wrapper_fn(*args, **kwargs):
            mem_addr = args[0].pc       # args[0] equals self of the decorated method
            vals = fn(*args, **kwargs)  # use the locals() values of each decorated function in the message
            if logger.isEnabledFor(logging.DEBUG):
                vals['mem_addr'] = mem_addr
                logger.debug(msg.format(**vals))
        return wrapper_fn
    return decorator

def split_opcode(opcode):
    """break a 16 bit opcode into family, X, Y, N, NN and NNN"""
    return Instruction(
        opcode=opcode,
        family=(opcode & 0xF000) >> 12,
        x=(opcode & 0x0F00) >> 8,
        y=(opcode & 0x00F0) >> 4,
        n=opcode & 0x000F,
        nn=opcode & 0x00FF,
        nnn=opcode & 0x0FFF,
    )


# ******************** I/O SECTION
class Framebuffer:
    """64x32 monochrome pixels stored row-major, 1 is ON and 0 is OFF"""
    def __init__(self, w=SCREEN_WIDTH, h=SCREEN_HEIGHT):
        self.w, self.h = w, h
        self.buffer = [0] * h * w

    def read_pixel(self, x, y):
        """return 1 if pixel is ON, return 0 if pixel is OFF"""
        return self.buffer[y * self.w + x]

    def write_pixel(self, x, y, color):
        self.buffer[y * self.w + x] = 1 if color else 0

    def clear(self):
        self.buffer = [0] * self.h * self.w

    def rows(self):
        """the whole screen as h lists of w pixels, for renderers"""
        return [self.buffer[r * self.w:(r + 1) * self.w] for r in range(self.h)]

    def __str__(self):
        return "\n".join("".join("#" if p else "." for p in row) for row in self.rows())

class Keypad:
    """
    the 16 key hex keypad, one flag per key
    the host writes it between steps, the instructions only read it
    """
    def __init__(self):
        self.pressed_keys = [False] * KEY_COUNT

    def __getitem__(self, key):
        return self.pressed_keys[key]

    def __setitem__(self, key, value):
        self.pressed_keys[key] = bool(value)

    def untouched(self):
        return not any(self.pressed_keys)

    def held(self):
        """set of the keys currently pressed"""
        return {k for k, p in enumerate(self.pressed_keys) if p}

    def first_new(self, held):
        """lowest key currently pressed that is not in held, None if there is none"""
        for k, p in enumerate(self.pressed_keys):
            if p and k not in held:
                return k
        return None

    def release_all(self):
        self.pressed_keys = [False] * KEY_COUNT

    def __str__(self):
        return "".join(f"{k:X}" if p else "-" for k, p in enumerate(self.pressed_keys))


# ******************** MEMORY SECTION
# ********** FIXED ARRAY OF 16 RETURN ADDRESSES WITH AN EXPLICIT STACK POINTER
class Stack:
    def __init__(self):
        self.addr_list = [0] * STACK_SIZE
        self.sp = 0

    def append(self, address):
        if self.sp >= STACK_SIZE:
            raise StackOverflow(f"The CHIP-8 stack can contain at most {STACK_SIZE} addresses. Limit exceeded")
        self.addr_list[self.sp] = address
        self.sp += 1

    def pop(self):
        if self.sp == 0:
            raise StackUnderflow("Return with an empty CHIP-8 stack")
        self.sp -= 1
        return self.addr_list[self.sp]

    def __len__(self):
        return self.sp

    def __str__(self):
        return "[" + ", ".join(f"0x{a:04x}" for a in self.addr_list[:self.sp]) + "]"

# ********** WRAPS A LIST TO REPRESENT THE MAIN MEMORY WITH A LIMITED SIZE OF 4KB
class Memory:
    def __init__(self):
        self.inner = [0] * MEMORY_SIZE
        self.inner[FONT_ADDRESS:FONT_ADDRESS+len(C8_FONTS)] = C8_FONTS

    @staticmethod
    def check(address, length=1):
        """raise MemoryFault unless address..address+length-1 lies inside the 4KB"""
        if address < 0 or address + length > MEMORY_SIZE:
            raise MemoryFault(f"Memory access out of range: 0x{address:04x}+{length}")

    def __setitem__(self, key, value):
        self.check(key)
        self.inner[key] = value & 0xFF

    def __getitem__(self, index):
        self.check(index)
        return self.inner[index]

    def read(self, address, length):
        self.check(address, length)
        return self.inner[address:address+length]

    def write(self, address, values):
        """write every value or none of them"""
        values = list(values)
        self.check(address, len(values))
        self.inner[address:address+len(values)] = [v & 0xFF for v in values]

    def load_rom(self, rom):
        """
        copy a program image to ROM_START_ADDRESS, raise ProgramTooLarge if it doesn't fit
        everything from ROM_START_ADDRESS up is cleared first so no earlier program survives
        """
        if len(rom) > MAX_ROM_SIZE:
            raise ProgramTooLarge(f"The program is {len(rom)} bytes, at most {MAX_ROM_SIZE} fit in memory")
        self.inner[ROM_START_ADDRESS:] = list(rom) + [0] * (MAX_ROM_SIZE - len(rom))
        logger.info("Loaded %d bytes at 0x%04x", len(rom), ROM_START_ADDRESS)


# ******************** CPU SECTION
class Chip8:
    """
    one CHIP-8 machine

    the host calls cycle() once per instruction and tick_timers() at 60Hz,
    it reads framebuffer and sound_on and writes keypad between the calls
    """
    def __init__(self, seed=None):
        self.rng = random.Random(seed)
        self.reset()

    def reset(self):
        """back to power-on state, the loaded program is lost"""
        self.mem = Memory()
        self.stack = Stack()
        self.v_regs = [0] * REGISTER_COUNT
        self.pc = ROM_START_ADDRESS
        self.idx = 0    # specify where the sprites reside in memory
        self.dt = 0     # delay timer, active when non-zero
        self.st = 0     # sound timer, active when non-zero
        self.opcode = None
        self.draw = False       # the last cycle changed the framebuffer
        self.waiting = False    # the last cycle was an FX0A still waiting for a key
        self._held_at_wait = None   # keys already down when the pending FX0A started
        self._redirected = False
        self.framebuffer = Framebuffer()
        self.keypad = Keypad()

    def load(self, rom):
        self.mem.load_rom(rom)

    @property
    def sound_on(self):
        return self.st > 0

    def __str__(self):
        registers = " ".join(f"V{i:X}:{v:02x}" for i, v in enumerate(self.v_regs))
        pointers = f"PC:0x{self.pc:04x} I:0x{self.idx:04x} SP:{self.stack.sp} DT:{self.dt} ST:{self.st}"
        stack = f"STACK:{self.stack}"
        flags = f"KEYPAD:{self.keypad} DRAW:{self.draw} WAITING:{self.waiting}"
        return f"{registers}\n{pointers}\n{stack}\n{flags}"

    # ********** TIMERS
    def tick_timers(self):
        """count both timers down by one, never below 0; the host calls this at TIMER_HZ"""
        if self.dt > 0:
            self.dt -= 1
        if self.st > 0:
            self.st -= 1

    # ********** CONTROL FLOW
    @asm("mem_addr: 0x{mem_addr:04x}    instruction: CLS")
    def _clear_screen(self, ins):
        self.framebuffer.clear()
        self.draw = True
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: RET")
    def _return(self, ins):
        """return from a subroutine, the cycle then steps over the CALL"""
        self.pc = self.stack.pop()
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: JP 0x{address:03x}")
    def _jump(self, ins):
        address = ins.nnn
        self._redirect(address)
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: CALL 0x{address:03x}")
    def _call_addr(self, ins):
        address = ins.nnn
        self.stack.append(self.pc)
        self._redirect(address)
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SE V{x:X}, 0x{comparison_value:02x}")
    def _skip_if_eq(self, ins):
        x, comparison_value = ins.x, ins.nn
        self._skip_if(self.v_regs[x] == comparison_value)
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SNE V{x:X}, 0x{comparison_value:02x}")
    def _skip_if_not_eq(self, ins):
        x, comparison_value = ins.x, ins.nn
        self._skip_if(self.v_regs[x] != comparison_value)
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SE V{x:X}, V{y:X}")
    def _skip_if_eq_regs(self, ins):
        x, y = ins.x, ins.y
        self._skip_if(self.v_regs[x] == self.v_regs[y])
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SNE V{x:X}, V{y:X}")
    def _skip_if_not_eq_regs(self, ins):
        x, y = ins.x, ins.y
        self._skip_if(self.v_regs[x] != self.v_regs[y])
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: JP V0, 0x{address:03x}")
    def _jump_plus(self, ins):
        address = ins.nnn + self.v_regs[0x0]
        Memory.check(address)
        self._redirect(address)
        return locals()

    # ********** REGISTERS AND ALU
    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD V{x:X}, 0x{value:02x}")
    def _set_vk(self, ins):
        """set the value of one of the 16 variable registers, Vx"""
        x, value = ins.x, ins.nn
        self.v_regs[x] = value
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: ADD V{x:X}, 0x{value:02x}")
    def _add_to_vk(self, ins):
        """add to the value already present in one of the variable registers, VF is left alone"""
        x, value = ins.x, ins.nn
        self.v_regs[x] = (self.v_regs[x] + value) & 0xFF    # keep only the lowest 8 bits
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD V{x:X}, V{y:X}")
    def _set_vx_to_vy(self, ins):
        x, y = ins.x, ins.y
        self.v_regs[x] = self.v_regs[y]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: OR V{x:X}, V{y:X}")
    def _set_vx_or_vy(self, ins):
        x, y = ins.x, ins.y
        self.v_regs[x] |= self.v_regs[y]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: AND V{x:X}, V{y:X}")
    def _set_vx_and_vy(self, ins):
        x, y = ins.x, ins.y
        self.v_regs[x] &= self.v_regs[y]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: XOR V{x:X}, V{y:X}")
    def _set_vx_xor_vy(self, ins):
        x, y = ins.x, ins.y
        self.v_regs[x] ^= self.v_regs[y]
        return locals()

    # the flag is computed from the operands and written last, so it survives when x is F
    @asm("mem_addr: 0x{mem_addr:04x}    instruction: ADD V{x:X}, V{y:X}")
    def _add_vx_vy(self, ins):
        """set Vx = Vx + Vy, VF = carry"""
        x, y = ins.x, ins.y
        total = self.v_regs[x] + self.v_regs[y]
        self.v_regs[x] = total & 0xFF
        self.v_regs[0xF] = 1 if total > 0xFF else 0
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SUB V{x:X}, V{y:X}")
    def _sub_vx_vy(self, ins):
        """set Vx = Vx - Vy, VF = NOT borrow"""
        x, y = ins.x, ins.y
        no_borrow = 1 if self.v_regs[x] >= self.v_regs[y] else 0
        self.v_regs[x] = (self.v_regs[x] - self.v_regs[y]) & 0xFF
        self.v_regs[0xF] = no_borrow
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SHR V{x:X}")
    def _shr(self, ins):
        """set Vx = Vx SHR 1, VF = the bit shifted out"""
        x = ins.x
        lsb = self.v_regs[x] & 0x1
        self.v_regs[x] >>= 1
        self.v_regs[0xF] = lsb
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SUBN V{x:X}, V{y:X}")
    def _subn_vx_vy(self, ins):
        """set Vx = Vy - Vx, VF = NOT borrow"""
        x, y = ins.x, ins.y
        no_borrow = 1 if self.v_regs[y] >= self.v_regs[x] else 0
        self.v_regs[x] = (self.v_regs[y] - self.v_regs[x]) & 0xFF
        self.v_regs[0xF] = no_borrow
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SHL V{x:X}")
    def _shl(self, ins):
        """set Vx = Vx SHL 1, VF = the bit shifted out"""
        x = ins.x
        msb = (self.v_regs[x] & 0x80) >> 7
        self.v_regs[x] = (self.v_regs[x] << 1) & 0xFF
        self.v_regs[0xF] = msb
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: RND V{x:X}, 0x{kk:02x}")
    def _random_byte_and(self, ins):
        x, kk = ins.x, ins.nn
        self.v_regs[x] = self.rng.randint(0, 255) & kk
        return locals()

    # ********** INDEX REGISTER AND MEMORY
    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD I, 0x{value:03x}")
    def _set_idx(self, ins):
        value = ins.nnn
        self.idx = value
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: ADD I, V{register:X}")
    def _add_to_idx(self, ins):
        """set I = I + Vx, 16 bit wraparound and no flag"""
        register = ins.x
        self.idx = (self.idx + self.v_regs[register]) & 0xFFFF
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD F, V{register:X}")
    def _select_char(self, ins):
        """set I to location of sprite for digit Vx"""
        register = ins.x
        self.idx = FONT_ADDRESS + (self.v_regs[register] & 0xF) * FONT_GLYPH_SIZE
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD B, V{x:X}")
    def _bcd_repr(self, ins):
        """the hundreds digit of Vx in memory at I, the tens digit at I+1, the ones digit at I+2"""
        x = ins.x
        value = self.v_regs[x]
        self.mem.write(self.idx, [value // 100, value // 10 % 10, value % 10])
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD [I], V{x:X}")
    def _store_vregs(self, ins):
        """store registers V0 through Vx (included) in memory starting at location I"""
        x = ins.x
        self.mem.write(self.idx, self.v_regs[:x+1])
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD V{x:X}, [I]")
    def _load_vregs(self, ins):
        """read registers V0 through Vx (included) from memory starting at location I"""
        x = ins.x
        self.v_regs[:x+1] = self.mem.read(self.idx, x + 1)
        return locals()

    # ********** TIMERS
    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD V{x:X}, DT")
    def _set_vx_dt(self, ins):
        x = ins.x
        self.v_regs[x] = self.dt
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD DT, V{x:X}")
    def _set_dt_vx(self, ins):
        x = ins.x
        self.dt = self.v_regs[x]
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD ST, V{register:X}")
    def _set_st(self, ins):
        register = ins.x
        self.st = self.v_regs[register]
        return locals()

    # ********** KEYPAD
    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SKP V{x:X}")
    def _skip_if_pressed(self, ins):
        """skip the following instruction if the key corresponding to the hex value stored in Vx is pressed"""
        x = ins.x
        key = self.v_regs[x] & 0xF
        self._skip_if(self.keypad[key])
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: SKNP V{x:X}")
    def _skip_if_not_pressed(self, ins):
        """skip the following instruction if the key corresponding to the hex value stored in Vx is NOT pressed"""
        x = ins.x
        key = self.v_regs[x] & 0xF
        self._skip_if(not self.keypad[key])
        return locals()

    @asm("mem_addr: 0x{mem_addr:04x}    instruction: LD V{x:X}, K")
    def _wait_keypress(self, ins):
        """wait for a key press and store its value in Vx"""
        x = ins.x
        # only a key going down while we wait counts, keys held when the wait began don't
        if self._held_at_wait is None:
            self._held_at_wait = self.keypad.held()
        else:
            self._held_at_wait &= self.keypad.held()    # a released key counts again once re-pressed
        key = self.keypad.first_new(self._held_at_wait)
        if key is None:
            self.waiting = True
            self._redirect(self.pc)     # stay on the same instruction until a key is pressed
        else:
            self.v_regs[x] = key
            self._held_at_wait = None
        return locals()

    # ********** DISPLAY
    @asm("mem_addr: 0x{mem_addr:04x}    instruction: DRW V{x:X}, V{y:X}, {n_bytes}")
    def _to_screen(self, ins):
        """display n-byte sprite starting at memory location I at (Vx, Vy), set VF = collision"""
        x, y, n_bytes = ins.x, ins.y, ins.n
        sprite = self.mem.read(self.idx, n_bytes)
        screen = self.framebuffer
        origin_x, origin_y = self.v_regs[x] % screen.w, self.v_regs[y] % screen.h
        collision = 0
        for i, sprite_byte in enumerate(sprite):
            # pixels falling off an edge come back on the opposite one
            y_coordinate = (origin_y + i) % screen.h
            for j in range(8):
                if not (sprite_byte >> (7 - j)) & 0x1:
                    continue
                x_coordinate = (origin_x + j) % screen.w
                pixel_state = screen.read_pixel(x_coordinate, y_coordinate)
                # a pixel is erased only when it was ON and the sprite turns it ON again
                if pixel_state == 1:
                    collision = 1
                screen.write_pixel(x_coordinate, y_coordinate, pixel_state ^ 1)
        self.v_regs[0xF] = collision
        self.draw = True
        return locals()

    # ********** ENGINE
    def not_implemented(self, opcode):
        raise UnknownOpcode(f"The opcode 0x{opcode:04x} is not a CHIP-8 instruction", self.pc, opcode)

    def _redirect(self, address):
        """set the pc from inside an instruction, cycle() won't advance it"""
        self.pc = address
        self._redirected = True

    def _skip_if(self, condition):
        self._redirect(self.pc + (4 if condition else 2))

    def _goto_next_instruction(self):
        self.pc += 0x2

    def fetch(self):
        """read the big endian opcode at pc (each instruction is two bytes long)"""
        hi, lo = self.mem.read(self.pc, 2)
        self.opcode = hi << 8 | lo
        return self.opcode

    def decode(self, opcode):
        """return the handler of opcode and the opcode fields it works on"""
        ins = split_opcode(opcode)
        family, n, nn = ins.family, ins.n, ins.nn
        handler = None
        if family == 0x0:
            if opcode == 0x00E0:
                handler = self._clear_screen
            elif opcode == 0x00EE:
                handler = self._return
        elif family == 0x1:
            handler = self._jump
        elif family == 0x2:
            handler = self._call_addr
        elif family == 0x3:
            handler = self._skip_if_eq
        elif family == 0x4:
            handler = self._skip_if_not_eq
        elif family == 0x5:
            if n == 0x0:
                handler = self._skip_if_eq_regs
        elif family == 0x6:
            handler = self._set_vk
        elif family == 0x7:
            handler = self._add_to_vk
        elif family == 0x8:
            if n == 0x0:
                handler = self._set_vx_to_vy
            elif n == 0x1:
                handler = self._set_vx_or_vy
            elif n == 0x2:
                handler = self._set_vx_and_vy
            elif n == 0x3:
                handler = self._set_vx_xor_vy
            elif n == 0x4:
                handler = self._add_vx_vy
            elif n == 0x5:
                handler = self._sub_vx_vy
            elif n == 0x6:
                handler = self._shr
            elif n == 0x7:
                handler = self._subn_vx_vy
            elif n == 0xE:
                handler = self._shl
        elif family == 0x9:
            if n == 0x0:
                handler = self._skip_if_not_eq_regs
        elif family == 0xA:
            handler = self._set_idx
        elif family == 0xB:
            handler = self._jump_plus
        elif family == 0xC:
            handler = self._random_byte_and
        elif family == 0xD:
            handler = self._to_screen
        elif family == 0xE:
            if nn == 0x9E:
                handler = self._skip_if_pressed
            elif nn == 0xA1:
                handler = self._skip_if_not_pressed
        else:  # 0xF
            if nn == 0x07:
                handler = self._set_vx_dt
            elif nn == 0x0A:
                handler = self._wait_keypress
            elif nn == 0x15:
                handler = self._set_dt_vx
            elif nn == 0x18:
                handler = self._set_st
            elif nn == 0x1E:
                handler = self._add_to_idx
            elif nn == 0x29:
                handler = self._select_char
            elif nn == 0x33:
                handler = self._bcd_repr
            elif nn == 0x55:
                handler = self._store_vregs
            elif nn == 0x65:
                handler = self._load_vregs
        if handler is None:
            self.not_implemented(opcode)
        return handler, ins

    def cycle(self):
        """
        emulate exactly one instruction: fetch, decode, execute, advance pc

        timers are not touched, see tick_timers()
        a Chip8Fault leaves pc on the faulting instruction and is always raised to the caller
        """
        self.draw = False
        self.waiting = False
        self._redirected = False
        self.opcode = None
        address = self.pc
        try:
            instruction, ins = self.decode(self.fetch())
            instruction(ins)
        except Chip8Fault as fault:
            if fault.address is None:
                fault.address = address
            if fault.opcode is None:
                fault.opcode = self.opcode
            raise
        if not self._redirected:
            self._goto_next_instruction()

    def run(self, steps):
        for _ in range(steps):
            self.cycle()
