"""
CHIP-8 System
=============
Ties the interpreter core to a display front-end and a beeper, and runs the
paced main loop.

Timing model (matching the reference machine):

  - one instruction per 1 / cpu_hz seconds
  - a frame is rendered every cpu_hz // fps instructions
  - the 60 Hz timers are ticked by the core itself, every
    Chip8.cycles_per_tick instructions

Everything runs on the caller's thread.  Key events are pumped between
instructions, never during one.
"""

from __future__ import annotations
import time
from typing import Optional

from chip8 import Chip8, CPU_FREQUENCY
from display import HeadlessDisplay, NullBeeper

DEFAULT_FPS = 60


class Chip8System:
    """A Chip8 core wired to a display and a beeper."""

    def __init__(self, cpu: Optional[Chip8] = None, display=None,
                 beeper=None, cpu_hz: int = CPU_FREQUENCY,
                 fps: int = DEFAULT_FPS):
        if cpu_hz < 1 or fps < 1:
            raise ValueError("cpu_hz and fps must be positive")
        self.cpu = cpu if cpu is not None else Chip8()
        self.display = display if display is not None else HeadlessDisplay()
        self.beeper = beeper if beeper is not None else NullBeeper()
        self.cpu.on_sound = self.beeper
        self.cpu_hz = cpu_hz
        self.fps = fps
        self.cycles_per_frame = max(1, cpu_hz // fps)
        self._frame_counter = 0
        self.quit_requested = False

    def load_file(self, path: str) -> int:
        return self.cpu.load_file(path)

    def load_binary(self, data: bytes | bytearray) -> int:
        return self.cpu.load(data)

    def step(self):
        """Pump input, execute one instruction, render when a frame is due."""
        if not self.display.poll(self.cpu):
            self.quit_requested = True
            return
        self.cpu.step()
        self._frame_counter += 1
        if self._frame_counter >= self.cycles_per_frame:
            self._frame_counter = 0
            self.display.render(self.cpu.display())

    def run(self, max_cycles: Optional[int] = None,
            realtime: bool = True) -> int:
        """Run until the display asks to quit or max_cycles is reached.

        Returns the number of instructions executed.  UnknownOpcodeError
        propagates to the caller; the beeper is silenced either way.
        """
        period = 1.0 / self.cpu_hz
        executed = 0
        try:
            while max_cycles is None or executed < max_cycles:
                self.step()
                if self.quit_requested:
                    break
                executed += 1
                if realtime:
                    time.sleep(period)
        finally:
            self.beeper.stop()
        return executed

    def close(self):
        self.beeper.close()
        self.display.stop()
