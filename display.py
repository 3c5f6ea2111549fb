"""
CHIP-8 Display, Keypad and Beeper
=================================
Front-ends that sit around the interpreter core:

  Chip8Display     -- pygame window; renders the 64x32 buffer scaled up and
                      forwards host key up/down events to the keypad
  HeadlessDisplay  -- same interface with no window; records snapshots
  Beeper           -- square-wave tone through pygame.mixer, usable
                      directly as the core's on_sound callback
  NullBeeper       -- silent stand-in

pygame is imported lazily so the headless pieces work without it.

Usage (programmatic):
    from chip8 import Chip8
    from display import Chip8Display
    disp = Chip8Display(scale=15)
    disp.start()
    while disp.poll(cpu):
        cpu.step()
        disp.render(cpu.display())
    disp.stop()
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

import numpy as np

from chip8 import (
    DISPLAY_WIDTH, DISPLAY_HEIGHT,
    KEY_0, KEY_1, KEY_2, KEY_3, KEY_4, KEY_5, KEY_6, KEY_7,
    KEY_8, KEY_9, KEY_A, KEY_B, KEY_C, KEY_D, KEY_E, KEY_F,
)

if TYPE_CHECKING:
    from chip8 import Chip8

DEFAULT_SCALE = 15
FG_COLOR = (255, 255, 255)
BG_COLOR = (0, 0, 0)

SAMPLE_RATE = 44100
TONE_PERIOD = 100     # samples per square-wave period (441 Hz)
TONE_AMPLITUDE = 2048

# Host keyboard -> keypad.  The left-hand 4x4 block of a QWERTY board
# mirrors the physical keypad layout:
#
#   1 2 3 4        1 2 3 C
#   Q W E R   ->   4 5 6 D
#   A S D F        7 8 9 E
#   Z X C V        A 0 B F
KEY_LAYOUT = {
    "K_1": KEY_1, "K_2": KEY_2, "K_3": KEY_3, "K_4": KEY_C,
    "K_q": KEY_4, "K_w": KEY_5, "K_e": KEY_6, "K_r": KEY_D,
    "K_a": KEY_7, "K_s": KEY_8, "K_d": KEY_9, "K_f": KEY_E,
    "K_z": KEY_A, "K_x": KEY_0, "K_c": KEY_B, "K_v": KEY_F,
}


def build_key_map(pygame_module) -> dict[int, int]:
    """Resolve KEY_LAYOUT names to pygame key codes."""
    return {getattr(pygame_module, name): key
            for name, key in KEY_LAYOUT.items()}


def render_ascii(frame: np.ndarray, on: str = "#", off: str = ".") -> str:
    """Render a display buffer as text, one line per row."""
    return "\n".join(
        "".join(on if cell else off for cell in row)
        for row in frame
    )


def frame_to_rgb(frame: np.ndarray, fg=FG_COLOR, bg=BG_COLOR) -> np.ndarray:
    """Convert a (height, width) 0/1 buffer to a (width, height, 3) RGB array.

    pygame.surfarray indexes surfaces as [x, y], hence the transpose.
    """
    lit = frame.T.astype(bool)
    rgb = np.empty((frame.shape[1], frame.shape[0], 3), dtype=np.uint8)
    rgb[:] = bg
    rgb[lit] = fg
    return rgb


# ── Window ────────────────────────────────────────────────────────────


class DisplayUnavailable(RuntimeError):
    """SDL could not open a window (no video device)."""


class Chip8Display:
    """pygame window showing the interpreter's display buffer."""

    def __init__(self, scale: int = DEFAULT_SCALE, title: str = "CHIP-8"):
        self.scale = max(1, scale)
        self.title = title
        self._pygame = None
        self._screen = None
        self._surface = None
        self._key_map: dict[int, int] = {}

    # -- public API -------------------------------------------------------

    def start(self):
        """Open the window.

        Raises ImportError if pygame is missing and DisplayUnavailable if
        SDL cannot open a video device.
        """
        import pygame

        pygame.init()
        pygame.display.set_caption(self.title)
        try:
            self._screen = pygame.display.set_mode(
                (DISPLAY_WIDTH * self.scale, DISPLAY_HEIGHT * self.scale))
        except pygame.error as e:
            pygame.display.quit()
            raise DisplayUnavailable(str(e)) from e
        self._surface = pygame.Surface((DISPLAY_WIDTH, DISPLAY_HEIGHT), 0, 32)
        self._key_map = build_key_map(pygame)
        self._pygame = pygame

    def stop(self):
        if self._pygame is not None:
            self._pygame.display.quit()
            self._pygame = None
            self._screen = None

    @property
    def running(self) -> bool:
        return self._pygame is not None

    def poll(self, cpu: "Chip8") -> bool:
        """Pump window events into the keypad.

        Returns False once the user closes the window or presses Escape.
        """
        pygame = self._pygame
        if pygame is None:
            return False
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                return False
            elif event.type == pygame.KEYDOWN:
                if event.key == pygame.K_ESCAPE:
                    return False
                if event.key in self._key_map:
                    cpu.set_key_state(self._key_map[event.key], True)
            elif event.type == pygame.KEYUP:
                if event.key in self._key_map:
                    cpu.set_key_state(self._key_map[event.key], False)
        return True

    def render(self, frame: np.ndarray):
        pygame = self._pygame
        if pygame is None:
            return
        pygame.surfarray.blit_array(self._surface, frame_to_rgb(frame))
        scaled = pygame.transform.scale(self._surface, self._screen.get_size())
        self._screen.blit(scaled, (0, 0))
        pygame.display.flip()


class HeadlessDisplay:
    """No-op display for testing -- records frame snapshots.

    Key events queued with inject_key() are delivered on the next poll().
    """

    def __init__(self, keep: int = 64):
        self.snapshots: deque[np.ndarray] = deque(maxlen=keep)
        self.frames_rendered = 0
        self._pending_keys: deque[tuple[int, bool]] = deque()

    def start(self):
        pass

    def stop(self):
        pass

    @property
    def running(self) -> bool:
        return False

    def inject_key(self, key: int, pressed: bool):
        self._pending_keys.append((key, pressed))

    def poll(self, cpu: "Chip8") -> bool:
        while self._pending_keys:
            key, pressed = self._pending_keys.popleft()
            cpu.set_key_state(key, pressed)
        return True

    def render(self, frame: np.ndarray):
        self.snapshots.append(frame.copy())
        self.frames_rendered += 1

    @property
    def last_frame(self) -> np.ndarray | None:
        return self.snapshots[-1] if self.snapshots else None


# ── Audio ─────────────────────────────────────────────────────────────


def square_wave(channels: int = 2, period: int = TONE_PERIOD,
                amplitude: int = TONE_AMPLITUDE) -> np.ndarray:
    """One period of a square wave: low for the first half, high after."""
    half = period // 2
    mono = np.full(period, amplitude, dtype=np.int16)
    mono[:half] = -amplitude
    if channels == 1:
        return mono
    return np.repeat(mono[:, None], channels, axis=1)


class Beeper:
    """Looping square-wave tone.  Call with True/False to start/stop."""

    def __init__(self):
        import pygame

        if not pygame.mixer.get_init():
            pygame.mixer.init(frequency=SAMPLE_RATE, size=-16, channels=2)
        _, _, channels = pygame.mixer.get_init()
        self._sound = pygame.sndarray.make_sound(square_wave(channels))
        self.playing = False

    def play(self):
        if not self.playing:
            self._sound.play(loops=-1)
            self.playing = True

    def stop(self):
        if self.playing:
            self._sound.stop()
            self.playing = False

    def close(self):
        self.stop()

    def __call__(self, on: bool):
        if on:
            self.play()
        else:
            self.stop()


class NullBeeper:
    """Silent beeper; remembers the last requested state."""

    def __init__(self):
        self.playing = False

    def play(self):
        self.playing = True

    def stop(self):
        self.playing = False

    def close(self):
        self.stop()

    def __call__(self, on: bool):
        self.playing = bool(on)
