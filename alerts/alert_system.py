"""
alerts/alert_system.py — Haptic alert sink with pygame audio.

The dashboard has no vibration motor, so a vibrate(pattern) request is
rendered as a burst of low-frequency tones: each "on" interval of the
pattern plays the buzz, each "off" interval is silence.

    HIGH urgency   → (200, 100, 200)  strong double buzz
    MEDIUM urgency → (100,)           short pulse
"""

import os
import sys
import threading
from typing import Optional, Sequence

import numpy as np

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
import config
from alerts.notifier import NotificationSink
from takeover_engine.errors import NotificationUnavailable
from core.logger import get_logger

log = get_logger(__name__)

# Pygame is optional; without it vibrate() is a no-op
try:
    import pygame
    import pygame.sndarray
    _PYGAME_AVAILABLE = True
except ImportError:
    _PYGAME_AVAILABLE = False
    log.warning("pygame not installed — haptic alerts disabled.")


class HapticAlertSystem(NotificationSink):
    """
    Plays vibration patterns through the pygame mixer.

    Usage:
        haptic = HapticAlertSystem()
        haptic.start()               # initialises pygame mixer
        haptic.vibrate((200, 100, 200))
        haptic.stop()
    """

    def __init__(
        self,
        sound_path: str = config.HAPTIC_SOUND_PATH,
        freq: float = config.HAPTIC_TONE_FREQ,
        volume: float = config.HAPTIC_TONE_VOLUME,
    ):
        self.sound_path = sound_path
        self.freq       = freq
        self.volume     = volume
        self._mixer_ready: bool = False
        self._sound = None
        self._pattern_thread: Optional[threading.Thread] = None
        self._stop_pattern: threading.Event = threading.Event()

    # ──────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Initialise pygame mixer and pre-load / generate the buzz sound."""
        try:
            self._init_mixer()
        except NotificationUnavailable as exc:
            log.warning(f"{exc}. Haptic alerts disabled.")
            self._mixer_ready = False

    def _init_mixer(self) -> None:
        if not _PYGAME_AVAILABLE:
            raise NotificationUnavailable("pygame not installed")
        try:
            pygame.mixer.pre_init(
                frequency=44100, size=-16, channels=1, buffer=512
            )
            pygame.mixer.init()
            self._mixer_ready = True
            self._sound = self._load_or_generate_sound(self.sound_path)
        except pygame.error as exc:
            raise NotificationUnavailable(f"pygame mixer init failed: {exc}") from exc
        log.info("HapticAlertSystem mixer ready.")

    def stop(self) -> None:
        """Stop any playing pattern and tear down pygame mixer."""
        self._stop_pattern.set()
        if self._pattern_thread and self._pattern_thread.is_alive():
            self._pattern_thread.join(timeout=1.0)
        if _PYGAME_AVAILABLE and self._mixer_ready:
            pygame.mixer.stop()
            pygame.mixer.quit()
            self._mixer_ready = False

    # ──────────────────────────────────────────────────────────────────────────
    # Sink API
    # ──────────────────────────────────────────────────────────────────────────

    def vibrate(self, pattern: Sequence[int]) -> None:
        """Play the pattern on a background thread; replaces one in progress."""
        pattern = tuple(int(ms) for ms in pattern if ms > 0)
        if not pattern or not self._mixer_ready or self._sound is None:
            return

        self._stop_pattern.set()
        if self._pattern_thread and self._pattern_thread.is_alive():
            self._pattern_thread.join(timeout=0.2)
        self._stop_pattern.clear()

        sound = self._sound

        def _play_pattern():
            for i, ms in enumerate(pattern):
                if self._stop_pattern.is_set():
                    break
                if i % 2 == 0:
                    sound.play(maxtime=ms)
                # Wait for the interval or until stop is signalled
                if self._stop_pattern.wait(timeout=ms / 1000.0):
                    break
            sound.stop()

        self._pattern_thread = threading.Thread(
            target=_play_pattern, daemon=True, name="haptic-pattern"
        )
        self._pattern_thread.start()

    # ──────────────────────────────────────────────────────────────────────────
    # Sound generation / loading
    # ──────────────────────────────────────────────────────────────────────────

    @staticmethod
    def generate_tone(
        freq: float = config.HAPTIC_TONE_FREQ,
        duration: float = 0.5,
        sample_rate: int = 44100,
        volume: float = config.HAPTIC_TONE_VOLUME,
    ) -> np.ndarray:
        """
        Generate a sine-wave buzz as a numpy array.

        Args:
            freq:        Frequency in Hz.
            duration:    Duration in seconds.
            sample_rate: Audio sample rate.
            volume:      Peak amplitude 0–1.

        Returns:
            Int16 mono numpy array suitable for pygame.sndarray.make_sound.
        """
        t = np.linspace(0, duration, int(sample_rate * duration), endpoint=False)
        wave = np.sin(2 * np.pi * freq * t)

        # Apply fade-in and fade-out to avoid clicks
        fade_samples = int(sample_rate * 0.01)  # 10 ms
        fade_in = np.linspace(0, 1, fade_samples)
        fade_out = np.linspace(1, 0, fade_samples)
        wave[:fade_samples] *= fade_in
        wave[-fade_samples:] *= fade_out

        return (wave * volume * 32767).astype(np.int16)

    def _load_or_generate_sound(self, path: str):
        """
        Load a .wav file from disk, or synthesize the buzz if not found.

        Returns:
            pygame.mixer.Sound object or None if the mixer is not ready.
        """
        if not self._mixer_ready:
            return None

        if os.path.exists(path):
            try:
                snd = pygame.mixer.Sound(path)
                log.info(f"Loaded haptic sound: {path}")
                return snd
            except pygame.error as exc:
                log.warning(f"Could not load {path}: {exc}. Generating tone.")

        tone = self.generate_tone(freq=self.freq, volume=self.volume)
        snd = pygame.sndarray.make_sound(tone)
        log.info(f"Generated {self.freq:.0f} Hz haptic tone.")
        return snd

    # ──────────────────────────────────────────────────────────────────────────
    # Properties
    # ──────────────────────────────────────────────────────────────────────────

    @property
    def available(self) -> bool:
        return self._mixer_ready

    # ──────────────────────────────────────────────────────────────────────────
    # Context manager
    # ──────────────────────────────────────────────────────────────────────────

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *_):
        self.stop()
