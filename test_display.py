"""
Display, keypad-mapping and beeper tests.

Headless pieces run everywhere; the pygame window and mixer tests run
under SDL's dummy drivers (see conftest.py) and skip when pygame is not
installed.
"""

import unittest
from unittest import mock

import numpy as np
import pytest

from chip8 import Chip8, DISPLAY_WIDTH, DISPLAY_HEIGHT, KEY_C, KEY_4, KEY_0
from display import (
    KEY_LAYOUT, HeadlessDisplay, NullBeeper, build_key_map, frame_to_rgb,
    render_ascii, square_wave, FG_COLOR, BG_COLOR, TONE_PERIOD,
)

try:
    import pygame
except ImportError:
    pygame = None


def blank_frame() -> np.ndarray:
    return np.zeros((DISPLAY_HEIGHT, DISPLAY_WIDTH), dtype=np.uint8)


class TestRenderHelpers(unittest.TestCase):

    def test_render_ascii(self):
        frame = blank_frame()
        frame[0, 0] = 1
        frame[1, 63] = 1
        lines = render_ascii(frame).splitlines()
        self.assertEqual(len(lines), DISPLAY_HEIGHT)
        self.assertTrue(all(len(line) == DISPLAY_WIDTH for line in lines))
        self.assertEqual(lines[0][0], "#")
        self.assertEqual(lines[0][1], ".")
        self.assertEqual(lines[1][63], "#")

    def test_render_ascii_custom_chars(self):
        frame = np.array([[1, 0], [0, 1]], dtype=np.uint8)
        self.assertEqual(render_ascii(frame, on="X", off=" "), "X \n X")

    def test_frame_to_rgb_transposes(self):
        frame = blank_frame()
        frame[2, 10] = 1
        rgb = frame_to_rgb(frame)
        self.assertEqual(rgb.shape, (DISPLAY_WIDTH, DISPLAY_HEIGHT, 3))
        self.assertEqual(tuple(rgb[10, 2]), FG_COLOR)
        self.assertEqual(tuple(rgb[2, 10]), BG_COLOR)


class TestKeyLayout(unittest.TestCase):

    def test_layout_covers_every_key_once(self):
        self.assertEqual(sorted(KEY_LAYOUT.values()), list(range(16)))

    def test_layout_positions(self):
        self.assertEqual(KEY_LAYOUT["K_4"], KEY_C)
        self.assertEqual(KEY_LAYOUT["K_q"], KEY_4)
        self.assertEqual(KEY_LAYOUT["K_x"], KEY_0)

    def test_build_key_map_with_stub_module(self):
        class FakePygame:
            pass
        fake = FakePygame()
        for code, name in enumerate(KEY_LAYOUT):
            setattr(fake, name, 1000 + code)
        key_map = build_key_map(fake)
        self.assertEqual(len(key_map), 16)
        self.assertEqual(key_map[fake.K_v], 0xF)


class TestHeadlessDisplay(unittest.TestCase):

    def test_records_snapshots(self):
        disp = HeadlessDisplay(keep=2)
        self.assertIsNone(disp.last_frame)
        for n in range(3):
            frame = blank_frame()
            frame[0, n] = 1
            disp.render(frame)
        self.assertEqual(disp.frames_rendered, 3)
        self.assertEqual(len(disp.snapshots), 2)
        self.assertEqual(disp.last_frame[0, 2], 1)

    def test_snapshot_is_copied(self):
        disp = HeadlessDisplay()
        frame = blank_frame()
        disp.render(frame)
        frame[0, 0] = 1
        self.assertEqual(disp.last_frame[0, 0], 0)

    def test_injected_keys_delivered_on_poll(self):
        disp = HeadlessDisplay()
        cpu = Chip8()
        disp.inject_key(0x5, True)
        disp.inject_key(0x5, False)
        self.assertTrue(disp.poll(cpu))
        self.assertFalse(cpu.keys[5])
        self.assertEqual(cpu.last_released_key, 5)


class TestNullBeeper(unittest.TestCase):

    def test_tracks_state(self):
        beeper = NullBeeper()
        beeper(True)
        self.assertTrue(beeper.playing)
        beeper(False)
        self.assertFalse(beeper.playing)
        beeper.play()
        beeper.close()
        self.assertFalse(beeper.playing)

    def test_square_wave_shape(self):
        wave = square_wave(channels=2)
        self.assertEqual(wave.shape, (TONE_PERIOD, 2))
        self.assertEqual(wave.dtype, np.int16)
        self.assertLess(wave[0, 0], 0)
        self.assertGreater(wave[-1, 1], 0)
        self.assertEqual(square_wave(channels=1).shape, (TONE_PERIOD,))


@pytest.mark.pygame
@unittest.skipIf(pygame is None, "pygame not installed")
class TestChip8Display(unittest.TestCase):

    def setUp(self):
        from display import Chip8Display
        self.disp = Chip8Display(scale=2)
        self.disp.start()
        pygame.event.clear()

    def tearDown(self):
        self.disp.stop()

    def test_window_size(self):
        self.assertTrue(self.disp.running)
        size = pygame.display.get_surface().get_size()
        self.assertEqual(size, (DISPLAY_WIDTH * 2, DISPLAY_HEIGHT * 2))

    def test_render_scales_pixels(self):
        frame = blank_frame()
        frame[1, 3] = 1
        self.disp.render(frame)
        screen = pygame.display.get_surface()
        self.assertEqual(tuple(screen.get_at((6, 2)))[:3], FG_COLOR)
        self.assertEqual(tuple(screen.get_at((7, 3)))[:3], FG_COLOR)
        self.assertEqual(tuple(screen.get_at((0, 0)))[:3], BG_COLOR)

    def test_key_events_reach_keypad(self):
        cpu = Chip8()
        pygame.event.post(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_q))
        self.assertTrue(self.disp.poll(cpu))
        self.assertTrue(cpu.keys[KEY_4])
        pygame.event.post(pygame.event.Event(pygame.KEYUP, key=pygame.K_q))
        self.assertTrue(self.disp.poll(cpu))
        self.assertFalse(cpu.keys[KEY_4])
        self.assertEqual(cpu.last_released_key, KEY_4)

    def test_quit_event_stops(self):
        pygame.event.post(pygame.event.Event(pygame.QUIT))
        self.assertFalse(self.disp.poll(Chip8()))

    def test_stop_is_idempotent(self):
        self.disp.stop()
        self.disp.stop()
        self.assertFalse(self.disp.running)
        self.assertFalse(self.disp.poll(Chip8()))


@pytest.mark.pygame
@unittest.skipIf(pygame is None, "pygame not installed")
class TestChip8DisplayUnavailable(unittest.TestCase):

    def test_video_failure_raises_display_unavailable(self):
        from display import Chip8Display, DisplayUnavailable
        disp = Chip8Display(scale=2)
        with mock.patch.object(pygame.display, "set_mode",
                               side_effect=pygame.error("No available video device")):
            with self.assertRaises(DisplayUnavailable) as ctx:
                disp.start()
        self.assertIn("No available video device", str(ctx.exception))
        self.assertFalse(disp.running)


@pytest.mark.pygame
@unittest.skipIf(pygame is None, "pygame not installed")
class TestBeeper(unittest.TestCase):

    def setUp(self):
        from display import Beeper
        try:
            self.beeper = Beeper()
        except pygame.error as e:
            self.skipTest(f"no audio device: {e}")

    def tearDown(self):
        self.beeper.close()
        pygame.mixer.quit()

    def test_play_stop(self):
        self.beeper(True)
        self.assertTrue(self.beeper.playing)
        self.beeper(True)
        self.assertTrue(self.beeper.playing)
        self.beeper(False)
        self.assertFalse(self.beeper.playing)

    def test_mixer_is_signed_16_bit(self):
        _, size, _ = pygame.mixer.get_init()
        self.assertEqual(size, -16)

    def test_as_sound_callback(self):
        cpu = Chip8(on_sound=self.beeper, cycles_per_tick=1)
        cpu.load(bytes([0x12, 0x00]))
        cpu.st = 2
        cpu.step()
        self.assertTrue(self.beeper.playing)
        cpu.step()
        cpu.step()
        self.assertFalse(self.beeper.playing)


if __name__ == "__main__":
    unittest.main()
