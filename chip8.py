"""
CHIP-8 Interpreter Core
=======================
A cycle-step interpreter for the classic CHIP-8 virtual machine: 4 KiB of
byte-addressable memory, sixteen 8-bit V registers, a 16-bit I register,
a 16-level return stack, two 60 Hz countdown timers, a 64x32 monochrome
display and a 16-key hexadecimal keypad.

Every instruction is a 16-bit big-endian word.  The fetch/decode/execute
loop reads the word at PC, switches on the top nibble (the "family") and
lets the family handler pick the exact operation from the low bits:

    nnn / addr  -- lowest 12 bits
    x           -- bits 8..11, selects Vx
    y           -- bits 4..7, selects Vy
    n           -- lowest 4 bits (sprite height)
    kk          -- lowest 8 bits (immediate byte)

Rendering, audio and keyboard mapping live outside this module; the core
only exposes the display buffer, a key-state setter and a sound callback.
"""

from __future__ import annotations
import random
from typing import Callable, Optional

import numpy as np

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

MEM_SIZE        = 0x1000
FONT_BASE       = 0x000
PROGRAM_START   = 0x200
PROGRAM_MAX     = MEM_SIZE - PROGRAM_START   # 3584 bytes of program space

DISPLAY_WIDTH   = 64
DISPLAY_HEIGHT  = 32

NUM_REGS        = 16
STACK_DEPTH     = 16
NUM_KEYS        = 16

CPU_FREQUENCY   = 850   # instructions per second
TIMER_FREQUENCY = 60    # DT / ST decrement rate

VF = 0xF                # flag register

# Keypad ids.  The 16-key hex pad is laid out as:
#
#   +---+---+---+---+
#   | 1 | 2 | 3 | C |
#   +---+---+---+---+
#   | 4 | 5 | 6 | D |
#   +---+---+---+---+
#   | 7 | 8 | 9 | E |
#   +---+---+---+---+
#   | A | 0 | B | F |
#   +---+---+---+---+
KEY_0, KEY_1, KEY_2, KEY_3 = 0x0, 0x1, 0x2, 0x3
KEY_4, KEY_5, KEY_6, KEY_7 = 0x4, 0x5, 0x6, 0x7
KEY_8, KEY_9, KEY_A, KEY_B = 0x8, 0x9, 0xA, 0xB
KEY_C, KEY_D, KEY_E, KEY_F = 0xC, 0xD, 0xE, 0xF

FONT_GLYPH_SIZE = 5

# Hex digit sprites 0-F, 4 pixels wide (high nibble), 5 rows each.
FONT = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
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
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])

# ---------------------------------------------------------------------------
#  Field extraction
# ---------------------------------------------------------------------------

def addr(word: int) -> int:
    """Lowest 12 bits: a memory address."""
    return word & 0x0FFF

def reg_x(word: int) -> int:
    return (word >> 8) & 0xF

def reg_y(word: int) -> int:
    return (word >> 4) & 0xF

def nibble(word: int) -> int:
    return word & 0xF

def imm8(word: int) -> int:
    return word & 0xFF

def u8(v: int) -> int:
    """Mask to unsigned 8 bits."""
    return v & 0xFF

def u16(v: int) -> int:
    """Mask to unsigned 16 bits."""
    return v & 0xFFFF

# ---------------------------------------------------------------------------
#  Errors
# ---------------------------------------------------------------------------

class Chip8Error(Exception):
    """Base for interpreter-generated faults."""
    pass

class UnknownOpcodeError(Chip8Error):
    def __init__(self, opcode: int, pc: int):
        self.opcode = opcode
        self.pc = pc
        super().__init__(f"Unknown opcode {opcode:#06x} @ {pc:#06x}")


# ---------------------------------------------------------------------------
#  Interpreter
# ---------------------------------------------------------------------------

class Chip8:
    """CHIP-8 interpreter: machine state plus the fetch/decode/execute step."""

    def __init__(self, on_sound: Optional[Callable[[bool], None]] = None,
                 rng: Optional[random.Random] = None,
                 cycles_per_tick: int = CPU_FREQUENCY // TIMER_FREQUENCY):
        if cycles_per_tick < 1:
            raise ValueError(f"cycles_per_tick must be >= 1, got {cycles_per_tick}")

        self.mem = bytearray(MEM_SIZE)
        self.mem[FONT_BASE:FONT_BASE + len(FONT)] = FONT

        # 16 x 8-bit general purpose registers, VF doubles as the flag
        self.v: list[int] = [0] * NUM_REGS
        self.i: int  = 0               # 16-bit address register
        self.pc: int = PROGRAM_START
        self.sp: int = 0               # 4-bit index into self.stack
        self.stack: list[int] = [0] * STACK_DEPTH

        self.dt: int = 0               # delay timer
        self.st: int = 0               # sound timer

        self.screen = np.zeros((DISPLAY_HEIGHT, DISPLAY_WIDTH), dtype=np.uint8)

        self.keys: list[bool] = [False] * NUM_KEYS
        self.last_released_key: Optional[int] = None

        self.cycles_per_tick = cycles_per_tick
        self.cycle_count: int = 0
        self._tick_counter: int = 0
        self.sound_on: bool = False

        self.rng = rng if rng is not None else random.Random()

        # Callbacks
        self.on_sound = on_sound   # called with True / False on tone edges

    # -- Memory access --

    def mem_read8(self, a: int) -> int:
        return self.mem[a % MEM_SIZE]

    def mem_write8(self, a: int, val: int):
        self.mem[a % MEM_SIZE] = val & 0xFF

    def fetch16(self) -> int:
        """Read the big-endian instruction word at PC (PC is not advanced)."""
        return (self.mem_read8(self.pc) << 8) | self.mem_read8(self.pc + 1)

    # -- Stack helpers --

    def push16(self, val: int):
        self.stack[self.sp] = u16(val)
        self.sp = (self.sp + 1) % STACK_DEPTH

    def pop16(self) -> int:
        self.sp = (self.sp - 1) % STACK_DEPTH
        return self.stack[self.sp]

    # -- Loading --

    def load(self, source) -> int:
        """Install the font table and a program image at PROGRAM_START.

        *source* is a bytes-like object or a binary file object with a
        ``read`` method.  At most PROGRAM_MAX bytes are taken; the rest is
        ignored.  Read errors from the source propagate unchanged.
        Returns the number of program bytes installed.
        """
        self.mem[FONT_BASE:FONT_BASE + len(FONT)] = FONT
        if hasattr(source, "read"):
            data = source.read(PROGRAM_MAX)
        else:
            data = bytes(source[:PROGRAM_MAX])
        self.mem[PROGRAM_START:PROGRAM_START + len(data)] = data
        return len(data)

    def load_file(self, path: str) -> int:
        with open(path, "rb") as f:
            return self.load(f)

    # -- External interface --

    def display(self) -> np.ndarray:
        """Snapshot of the 32x64 display buffer (0/1 cells)."""
        return self.screen.copy()

    def set_key_state(self, key: int, pressed: bool):
        if not 0 <= key < NUM_KEYS:
            raise ValueError(f"Key id out of range: {key}")
        self.keys[key] = bool(pressed)
        if not pressed:
            self.last_released_key = key

    # =====================================================================
    #  STEP -- the core decode/execute loop
    # =====================================================================

    def step(self):
        """Execute one instruction, then advance the timer subsystem.

        Raises UnknownOpcodeError if the word at PC is not a valid
        instruction; machine state is left as it was before the fetch.
        """
        word = self.fetch16()
        f = word >> 12

        if   f == 0x0: self._exec_sys(word)
        elif f == 0x1: self._exec_jp(word)
        elif f == 0x2: self._exec_call(word)
        elif f == 0x3: self._exec_se_imm(word)
        elif f == 0x4: self._exec_sne_imm(word)
        elif f == 0x5: self._exec_se_reg(word)
        elif f == 0x6: self._exec_ld_imm(word)
        elif f == 0x7: self._exec_add_imm(word)
        elif f == 0x8: self._exec_alu(word)
        elif f == 0x9: self._exec_sne_reg(word)
        elif f == 0xA: self._exec_ld_i(word)
        elif f == 0xB: self._exec_jp_v0(word)
        elif f == 0xC: self._exec_rnd(word)
        elif f == 0xD: self._exec_drw(word)
        elif f == 0xE: self._exec_key(word)
        else:          self._exec_misc(word)

        self.cycle_count += 1
        self._tick_counter += 1
        if self._tick_counter >= self.cycles_per_tick:
            self._tick_counter = 0
            self.tick_timers()

    def tick_timers(self):
        """One 60 Hz timer tick.

        The tone starts on the first tick that sees ST nonzero and stops on
        the first tick that sees it back at zero, so ST := n sounds for n
        ticks and each edge is reported exactly once.
        """
        if self.dt > 0:
            self.dt -= 1

        if self.st > 0:
            if not self.sound_on:
                self._set_sound(True)
            self.st -= 1
        elif self.sound_on:
            self._set_sound(False)

    def _set_sound(self, on: bool):
        self.sound_on = on
        if self.on_sound:
            self.on_sound(on)

    def _skip_if(self, cond: bool):
        self.pc = u16(self.pc + (4 if cond else 2))

    # =====================================================================
    #  Family executors
    # =====================================================================

    # -- 0x0: CLS / RET --
    def _exec_sys(self, word: int):
        op = imm8(word)
        if op == 0xE0:    # CLS
            self.screen.fill(0)
        elif op == 0xEE:  # RET -- resume after the CALL
            self.pc = self.pop16()
        else:
            raise UnknownOpcodeError(word, self.pc)
        self.pc = u16(self.pc + 2)

    # -- 0x1: JP addr --
    def _exec_jp(self, word: int):
        self.pc = addr(word)

    # -- 0x2: CALL addr --
    def _exec_call(self, word: int):
        self.push16(self.pc)   # address of the CALL itself; RET adds 2
        self.pc = addr(word)

    # -- 0x3: SE Vx, byte --
    def _exec_se_imm(self, word: int):
        self._skip_if(self.v[reg_x(word)] == imm8(word))

    # -- 0x4: SNE Vx, byte --
    def _exec_sne_imm(self, word: int):
        self._skip_if(self.v[reg_x(word)] != imm8(word))

    # -- 0x5: SE Vx, Vy --
    def _exec_se_reg(self, word: int):
        if nibble(word) != 0:
            raise UnknownOpcodeError(word, self.pc)
        self._skip_if(self.v[reg_x(word)] == self.v[reg_y(word)])

    # -- 0x6: LD Vx, byte --
    def _exec_ld_imm(self, word: int):
        self.v[reg_x(word)] = imm8(word)
        self.pc = u16(self.pc + 2)

    # -- 0x7: ADD Vx, byte (no carry) --
    def _exec_add_imm(self, word: int):
        x = reg_x(word)
        self.v[x] = u8(self.v[x] + imm8(word))
        self.pc = u16(self.pc + 2)

    # -- 0x8: register/register ALU --
    def _exec_alu(self, word: int):
        x, y, op = reg_x(word), reg_y(word), nibble(word)
        vx, vy = self.v[x], self.v[y]

        # Flags come from the operands as they were before the write to
        # Vx, and VF is written last so it wins when x == 0xF.
        if op == 0x0:    # LD
            self.v[x] = vy
        elif op == 0x1:  # OR
            self.v[x] = vx | vy
        elif op == 0x2:  # AND
            self.v[x] = vx & vy
        elif op == 0x3:  # XOR
            self.v[x] = vx ^ vy
        elif op == 0x4:  # ADD, VF = carry
            total = vx + vy
            self.v[x] = u8(total)
            self.v[VF] = 1 if total > 0xFF else 0
        elif op == 0x5:  # SUB, VF = NOT borrow (>=, not >)
            self.v[x] = u8(vx - vy)
            self.v[VF] = 1 if vx >= vy else 0
        elif op == 0x6:  # SHR, VF = bit shifted out
            self.v[x] = vx >> 1
            self.v[VF] = vx & 1
        elif op == 0x7:  # SUBN, VF = NOT borrow (>=, not >)
            self.v[x] = u8(vy - vx)
            self.v[VF] = 1 if vy >= vx else 0
        elif op == 0xE:  # SHL, VF = bit shifted out
            self.v[x] = u8(vx << 1)
            self.v[VF] = (vx >> 7) & 1
        else:
            raise UnknownOpcodeError(word, self.pc)
        self.pc = u16(self.pc + 2)

    # -- 0x9: SNE Vx, Vy --
    def _exec_sne_reg(self, word: int):
        self._skip_if(self.v[reg_x(word)] != self.v[reg_y(word)])

    # -- 0xA: LD I, addr --
    def _exec_ld_i(self, word: int):
        self.i = addr(word)
        self.pc = u16(self.pc + 2)

    # -- 0xB: JP V0, addr --
    def _exec_jp_v0(self, word: int):
        self.pc = u16(addr(word) + self.v[0])

    # -- 0xC: RND Vx, byte --
    def _exec_rnd(self, word: int):
        self.v[reg_x(word)] = self.rng.randrange(256) & imm8(word)
        self.pc = u16(self.pc + 2)

    # -- 0xD: DRW Vx, Vy, nibble --
    def _exec_drw(self, word: int):
        start_x = self.v[reg_x(word)]
        start_y = self.v[reg_y(word)]
        height = nibble(word)

        collision = 0
        for row in range(height):
            bits = self.mem_read8(self.i + row)
            py = (start_y + row) % DISPLAY_HEIGHT
            for col in range(8):
                if not (bits >> (7 - col)) & 1:
                    continue
                px = (start_x + col) % DISPLAY_WIDTH
                if self.screen[py, px]:
                    collision = 1
                self.screen[py, px] ^= 1

        self.v[VF] = collision
        self.pc = u16(self.pc + 2)

    # -- 0xE: SKP / SKNP --
    def _exec_key(self, word: int):
        low = imm8(word)
        pressed = self.keys[self.v[reg_x(word)] & 0xF]
        if low == 0x9E:    # SKP Vx
            self._skip_if(pressed)
        elif low == 0xA1:  # SKNP Vx
            self._skip_if(not pressed)
        else:
            raise UnknownOpcodeError(word, self.pc)

    # -- 0xF: timers, keypad wait, I arithmetic, BCD, bulk load/store --
    def _exec_misc(self, word: int):
        x = reg_x(word)
        low = imm8(word)

        if low == 0x07:    # LD Vx, DT
            self.v[x] = self.dt
        elif low == 0x0A:  # LD Vx, K -- waits for a key *release*
            if self.last_released_key is None:
                return     # PC held; the same word runs again next step
            self.v[x] = self.last_released_key
            self.last_released_key = None
        elif low == 0x15:  # LD DT, Vx
            self.dt = self.v[x]
        elif low == 0x18:  # LD ST, Vx
            self.st = self.v[x]
        elif low == 0x1E:  # ADD I, Vx
            self.i = u16(self.i + self.v[x])
        elif low == 0x29:  # LD F, Vx
            self.i = FONT_BASE + (self.v[x] & 0xF) * FONT_GLYPH_SIZE
        elif low == 0x33:  # LD B, Vx
            value = self.v[x]
            self.mem_write8(self.i,     value // 100)
            self.mem_write8(self.i + 1, (value // 10) % 10)
            self.mem_write8(self.i + 2, value % 10)
        elif low == 0x55:  # LD [I], Vx
            for r in range(x + 1):
                self.mem_write8(self.i + r, self.v[r])
        elif low == 0x65:  # LD Vx, [I]
            for r in range(x + 1):
                self.v[r] = self.mem_read8(self.i + r)
        else:
            raise UnknownOpcodeError(word, self.pc)
        self.pc = u16(self.pc + 2)
