import os
import tempfile
import unittest
os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")

import pygame
from chip8 import Chip8, Framebuffer
from chip8_io import (
    KEY_MAPPINGS, SAMPLE_RATE, Buzzer, Screen,
    cycles_per_frame, handle_events, parse_args, read_rom, run_frame,
)


class RecordingBuzzer:
    def __init__(self):
        self.calls = []

    def update(self, sound_on):
        self.calls.append(sound_on)


class TestOptions(unittest.TestCase):
    def test_defaults(self):
        args = parse_args(["-f", "pong.ch8"])
        self.assertEqual(args.file, "pong.ch8")
        self.assertEqual(args.ips, 600)
        self.assertIsNone(args.seed)
        self.assertFalse(args.debug)

    def test_rom_is_required(self):
        with self.assertRaises(SystemExit):
            parse_args([])

    def test_cycles_per_frame(self):
        self.assertEqual(cycles_per_frame(600), 10)
        self.assertEqual(cycles_per_frame(10), 1)

    def test_read_rom(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "test.ch8")
            with open(path, "wb") as f:
                f.write(bytes([0x60, 0x05]))
            self.assertEqual(read_rom(path), b"\x60\x05")

    def test_every_key_is_mapped_once(self):
        self.assertEqual(sorted(KEY_MAPPINGS.values()), list(range(16)))


class TestPygameHost(unittest.TestCase):
    def setUp(self):
        pygame.display.init()

    def tearDown(self):
        pygame.display.quit()

    def test_render(self):
        screen = Screen(s=2)
        fb = Framebuffer()
        fb.write_pixel(5, 3, 1)
        screen.render(fb)
        self.assertNotEqual(screen.surface.get_at((10, 6)), screen.surface.get_at((0, 0)))

    def test_key_events_reach_the_keypad(self):
        chip = Chip8()
        pygame.display.set_mode((64, 32))
        pygame.event.post(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_q))
        self.assertTrue(handle_events(chip))
        self.assertTrue(chip.keypad[0x4])
        pygame.event.post(pygame.event.Event(pygame.KEYUP, key=pygame.K_q))
        handle_events(chip)
        self.assertFalse(chip.keypad[0x4])

    def test_quit(self):
        pygame.display.set_mode((64, 32))
        pygame.event.post(pygame.event.Event(pygame.QUIT))
        self.assertFalse(handle_events(Chip8()))


class TestFrame(unittest.TestCase):
    def setUp(self):
        self.buzzer = RecordingBuzzer()

    def test_frame_runs_steps_then_ticks_once(self):
        chip = Chip8()
        chip.load(bytes([0x60, 0x01, 0x70, 0x01, 0x70, 0x01, 0x00, 0xE0, 0x12, 0x08]))
        chip.dt, chip.st = 5, 2
        self.assertTrue(run_frame(chip, 10, self.buzzer))
        self.assertEqual(chip.v_regs[0], 3)
        self.assertEqual(chip.pc, 0x208)
        self.assertEqual((chip.dt, chip.st), (4, 1))
        self.assertEqual(self.buzzer.calls, [True])

    def test_frame_without_drawing_is_clean(self):
        chip = Chip8()
        chip.load(bytes([0x12, 0x00]))
        self.assertFalse(run_frame(chip, 10, self.buzzer))
        self.assertEqual(self.buzzer.calls, [False])

    def test_frame_stops_on_key_wait(self):
        chip = Chip8()
        chip.load(bytes([0xF0, 0x0A, 0x61, 0x07]))
        chip.dt = 3
        run_frame(chip, 10, self.buzzer)
        self.assertTrue(chip.waiting)
        self.assertEqual(chip.pc, 0x200)
        self.assertEqual(chip.dt, 2)
        chip.keypad[0xB] = True
        run_frame(chip, 2, self.buzzer)
        self.assertEqual(chip.v_regs[0], 0xB)
        self.assertEqual(chip.v_regs[1], 0x07)


class TestBuzzer(unittest.TestCase):
    def setUp(self):
        # a stereo mixer, as pygame.init() opens it when nothing was asked for
        try:
            pygame.mixer.init(SAMPLE_RATE, -16, 2)
        except pygame.error as err:
            self.skipTest(f"no audio driver: {err}")

    def tearDown(self):
        pygame.mixer.quit()

    def test_tone_matches_mixer_channels(self):
        buzzer = Buzzer()
        self.assertEqual(pygame.mixer.get_init()[2], 2)
        # one second of tone whatever the channel count, so the pitch is right
        self.assertAlmostEqual(buzzer.tone.get_length(), 1.0, delta=0.05)

    def test_update_starts_and_stops_the_tone(self):
        buzzer = Buzzer()
        buzzer.update(True)
        self.assertTrue(buzzer.playing)
        self.assertEqual(buzzer.tone.get_num_channels(), 1)
        buzzer.update(True)
        self.assertEqual(buzzer.tone.get_num_channels(), 1)
        buzzer.update(False)
        self.assertFalse(buzzer.playing)
        self.assertEqual(buzzer.tone.get_num_channels(), 0)


if __name__ == "__main__":
    unittest.main()
