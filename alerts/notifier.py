"""
alerts/notifier.py — Notification sinks driven by the takeover core.

The core only ever talks to a NotificationSink:
    speak(text, category)   spoken message
    vibrate(pattern)        haptic pattern, ms on/off

Every sink is fire-and-forget. A failing speech or vibration backend is
logged and swallowed here; it never reaches the decision loop.

    DedupingNotifier   drops a speak() identical in (category, text) to the
                       immediately preceding one
    CompositeNotifier  fans out to several sinks, isolating each one
    VoiceNotifier      offline text-to-speech through pyttsx3
"""

import queue
import threading
from typing import Iterable, List, Optional, Sequence, Tuple

import pyttsx3

import config
from takeover_engine.errors import NotificationUnavailable
from core.logger import get_logger

log = get_logger(__name__)

CATEGORY_EMERGENCY   = "emergency"
CATEGORY_DISTRACTION = "distraction"
CATEGORY_GENERAL     = "general"


class NotificationSink:
    """No-op sink. Subclasses override what they support."""

    def speak(self, text: str, category: str = CATEGORY_GENERAL) -> None:
        pass

    def vibrate(self, pattern: Sequence[int]) -> None:
        pass

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass


class DedupingNotifier(NotificationSink):
    """
    Wraps a sink and suppresses repeated utterances.

    Dedupe key is (category, text) of the last speak() that went through,
    so the same warning re-issued every tick while a condition persists is
    spoken once.
    """

    def __init__(self, inner: NotificationSink):
        self.inner = inner
        self._last_key: Optional[Tuple[str, str]] = None
        self._lock = threading.Lock()

    def speak(self, text: str, category: str = CATEGORY_GENERAL) -> None:
        key = (category, text.strip())
        with self._lock:
            if key == self._last_key:
                log.debug(f"Suppressed repeated utterance [{category}]")
                return
            self._last_key = key
        self.inner.speak(text, category)

    def vibrate(self, pattern: Sequence[int]) -> None:
        self.inner.vibrate(pattern)

    def reset(self) -> None:
        """Forget the last utterance so the next one always plays."""
        with self._lock:
            self._last_key = None

    def start(self) -> None:
        self.inner.start()

    def stop(self) -> None:
        self.inner.stop()


class CompositeNotifier(NotificationSink):
    """Fan-out to several sinks; one failing sink never blocks the others."""

    def __init__(self, sinks: Iterable[NotificationSink] = ()):
        self.sinks: List[NotificationSink] = list(sinks)

    def add(self, sink: NotificationSink) -> None:
        self.sinks.append(sink)

    def _each(self, method: str, *args) -> None:
        for sink in self.sinks:
            try:
                getattr(sink, method)(*args)
            except Exception as exc:
                log.warning(f"{type(sink).__name__}.{method} failed: {exc}")

    def speak(self, text: str, category: str = CATEGORY_GENERAL) -> None:
        self._each("speak", text, category)

    def vibrate(self, pattern: Sequence[int]) -> None:
        self._each("vibrate", tuple(pattern))

    def start(self) -> None:
        self._each("start")

    def stop(self) -> None:
        # Last started, first stopped
        for sink in reversed(self.sinks):
            try:
                sink.stop()
            except Exception as exc:
                log.warning(f"{type(sink).__name__}.stop failed: {exc}")


class VoiceNotifier(NotificationSink):
    """
    Offline speech synthesis via pyttsx3 on a worker thread.

    speak() only enqueues, so the decision tick never waits on the audio
    device. A newer utterance replaces any that has not started yet.

    Usage:
        voice = VoiceNotifier()
        voice.start()
        voice.speak("Please focus on the road.")
        voice.stop()
    """

    def __init__(self, rate: int = config.VOICE_RATE, volume: float = config.VOICE_VOLUME):
        self.rate   = rate
        self.volume = volume
        self._engine = None
        self._queue: "queue.Queue[Optional[str]]" = queue.Queue(maxsize=1)
        self._thread: Optional[threading.Thread] = None
        self._ready = False

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Initialise the TTS engine. On failure the sink stays a no-op."""
        try:
            self._engine = self._init_engine()
        except NotificationUnavailable as exc:
            log.warning(f"{exc}. Voice alerts disabled.")
            return

        self._ready = True
        self._thread = threading.Thread(
            target=self._speak_loop, daemon=True, name="voice-notifier"
        )
        self._thread.start()
        log.info("VoiceNotifier ready.")

    def stop(self) -> None:
        if not self._ready:
            return
        self._ready = False
        self._replace_pending(None)
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=config.SCHEDULER_JOIN_TIMEOUT)
        try:
            self._engine.stop()
        except Exception as exc:
            log.debug(f"pyttsx3 stop failed: {exc}")
        log.info("VoiceNotifier stopped.")

    def _init_engine(self):
        try:
            engine = pyttsx3.init()
            engine.setProperty("rate", self.rate)
            engine.setProperty("volume", self.volume)
        except Exception as exc:
            raise NotificationUnavailable(f"pyttsx3 init failed: {exc}") from exc
        return engine

    # ── Sink API ──────────────────────────────────────────────────────────────

    def speak(self, text: str, category: str = CATEGORY_GENERAL) -> None:
        if not self._ready:
            log.debug(f"[voice unavailable] {text}")
            return
        self._replace_pending(text)

    def _replace_pending(self, item: Optional[str]) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass

    def _speak_loop(self) -> None:
        while True:
            text = self._queue.get()
            if text is None:
                return
            try:
                self._engine.say(text)
                self._engine.runAndWait()
            except Exception as exc:
                log.warning(f"Speech failed: {exc}")

    @property
    def available(self) -> bool:
        return self._ready
