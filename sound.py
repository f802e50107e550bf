"""
CHIP-8 tone output
==================
The machine has one sound: a fixed beep that plays while the sound timer
is non-zero.  ``Beeper`` loops a square wave through pygame.mixer and
switches it on and off from the boolean tone signal the system derives
from the sound timer.
"""

from __future__ import annotations

import numpy as np

SAMPLE_RATE = 44100
TONE_HZ = 440.0
VOLUME = 0.25


class AudioError(RuntimeError):
    pass


def square_wave(freq: float = TONE_HZ, volume: float = VOLUME,
                sample_rate: int = SAMPLE_RATE, periods: int = 44) -> np.ndarray:
    """Signed 16-bit mono square wave, `periods` whole cycles long.

    Whole cycles make the buffer loop without a click.
    """
    samples = int(round(sample_rate * periods / freq))
    phase = (np.arange(samples) * freq / sample_rate) % 1.0
    amp = int(volume * 32767)
    return np.where(phase <= 0.5, amp, -amp).astype(np.int16)


class Beeper:
    """pygame.mixer square-wave tone sink."""

    def __init__(self, freq: float = TONE_HZ, volume: float = VOLUME,
                 sample_rate: int = SAMPLE_RATE):
        self.freq = freq
        self.volume = volume
        self.sample_rate = sample_rate
        self.playing = False
        self._pg = None
        self._sound = None

    def start(self):
        """Open the audio device. Raises AudioError if pygame cannot."""
        try:
            import pygame
        except ImportError as e:
            raise AudioError(f"pygame not available: {e}") from e
        try:
            pygame.mixer.init(frequency=self.sample_rate, size=-16, channels=1)
        except pygame.error as e:
            raise AudioError(f"Failed to open audio device: {e}") from e
        self._pg = pygame
        # The device may not honour the requested format
        rate, _, channels = pygame.mixer.get_init()
        wave = square_wave(self.freq, self.volume, rate)
        if channels > 1:
            wave = np.repeat(wave[:, np.newaxis], channels, axis=1)
        self._sound = pygame.sndarray.make_sound(wave)

    def stop(self):
        if self._pg is not None:
            self.set_tone(False)
            self._pg.mixer.quit()
            self._pg = None
            self._sound = None

    def set_tone(self, on: bool):
        if self._sound is None or on == self.playing:
            return
        if on:
            self._sound.play(loops=-1)
        else:
            self._sound.stop()
        self.playing = on


class NullBeeper:
    """Silent stand-in used headless or when no audio device is available."""

    def __init__(self):
        self.playing = False
        self.changes = 0

    def start(self):
        pass

    def stop(self):
        pass

    def set_tone(self, on: bool):
        if on != self.playing:
            self.playing = on
            self.changes += 1
