"""Speech output: the protocol the planner speaks through, plus local speakers."""

import itertools
import logging
import platform
import shutil
import subprocess
import threading
from enum import IntEnum
from queue import Empty, PriorityQueue
from typing import List, Optional, Protocol, Tuple

from .callouts import DrivingMode, VOICE_PROFILES
from config import (
    CODRIVER_AUDIO_ENABLED,
    CODRIVER_THREAD_JOIN_TIMEOUT_S,
    CODRIVER_TTS_SPEED,
    CODRIVER_TTS_VOICE,
)

logger = logging.getLogger('tramo.speech')


class SpeechPriority(IntEnum):
    LOW = 0  # chatter
    NORMAL = 1  # briefings, transitions
    HIGH = 2  # curves


class SpeechOutput(Protocol):
    """Fire-and-forget text sink. Implementations must not block the caller."""

    def speak(
        self,
        text: str,
        priority: SpeechPriority = SpeechPriority.NORMAL,
        voice_profile: Optional[str] = None,
    ) -> None: ...


def voice_rate(voice_profile: Optional[str]) -> float:
    """Relative speaking rate for a voice profile name (1.0 if unknown)."""
    if not voice_profile:
        return 1.0
    try:
        return VOICE_PROFILES[DrivingMode(voice_profile)].rate
    except ValueError:
        return 1.0


class LoggingSpeaker:
    """Logs utterances instead of speaking them. Used headless and in tests."""

    def __init__(self):
        self.spoken: List[Tuple[str, SpeechPriority, Optional[str]]] = []

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def clear(self) -> None:
        pass

    def speak(
        self,
        text: str,
        priority: SpeechPriority = SpeechPriority.NORMAL,
        voice_profile: Optional[str] = None,
    ) -> None:
        self.spoken.append((text, priority, voice_profile))
        logger.info("SAY [%s/%s] %s", priority.name.lower(), voice_profile or "-", text)


class TTSSpeaker:
    """
    Speaks text with the local TTS command (`say` on macOS, espeak-ng elsewhere).

    Utterances are queued and spoken one at a time by a background thread,
    highest priority first. A high-priority item discards any low-priority
    chatter still waiting, so a curve call is never stuck behind it.
    """

    def __init__(
        self,
        voice: str = CODRIVER_TTS_VOICE,
        speed: int = CODRIVER_TTS_SPEED,
        enabled: bool = CODRIVER_AUDIO_ENABLED,
    ):
        self.voice = voice
        self.speed = speed
        self.enabled = enabled
        self._queue: PriorityQueue = PriorityQueue()
        self._seq = itertools.count()
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._platform = platform.system()

        self._has_say = shutil.which("say") is not None
        self._espeak = shutil.which("espeak-ng") or shutil.which("espeak")
        if self.enabled and not (self._has_say or self._espeak):
            logger.warning("No TTS command found (say / espeak-ng), speech will only be logged")

    def start(self) -> None:
        """Start the playback thread."""
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._playback_loop, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the playback thread and drop anything still queued."""
        self._running = False
        self.clear()
        if self._thread:
            self._thread.join(timeout=CODRIVER_THREAD_JOIN_TIMEOUT_S)
            self._thread = None

    def clear(self) -> None:
        """Discard all queued utterances."""
        while True:
            try:
                self._queue.get_nowait()
            except Empty:
                break

    def speak(
        self,
        text: str,
        priority: SpeechPriority = SpeechPriority.NORMAL,
        voice_profile: Optional[str] = None,
    ) -> None:
        """Queue text to be spoken."""
        if not self._running:
            logger.debug("Speaker stopped, dropping: %s", text)
            return
        if priority >= SpeechPriority.HIGH:
            self._discard_low_priority()
        words_per_minute = int(round(self.speed * voice_rate(voice_profile)))
        # PriorityQueue pops the smallest entry; seq keeps FIFO within a priority
        self._queue.put((-int(priority), next(self._seq), text, words_per_minute))

    def _discard_low_priority(self) -> None:
        kept = []
        dropped = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except Empty:
                break
            if -item[0] <= SpeechPriority.LOW:
                dropped += 1
            else:
                kept.append(item)
        for item in kept:
            self._queue.put(item)
        if dropped:
            logger.debug("Discarded %d queued low-priority utterances", dropped)

    def _playback_loop(self) -> None:
        while self._running:
            try:
                _, _, text, words_per_minute = self._queue.get(timeout=0.1)
            except Empty:
                continue
            self._speak(text, words_per_minute)

    def _command(self, text: str, words_per_minute: int) -> Optional[List[str]]:
        if self._platform == "Darwin" and self._has_say:
            return ["say", "-v", self.voice, "-r", str(words_per_minute), text]
        if self._espeak:
            return [self._espeak, "-v", "en-gb", "-s", str(words_per_minute), text]
        return None

    def _speak(self, text: str, words_per_minute: int) -> None:
        logger.info("SAY %s", text)
        if not self.enabled:
            return
        cmd = self._command(text, words_per_minute)
        if cmd is None:
            return
        try:
            subprocess.run(cmd, check=True, capture_output=True)
        except (subprocess.CalledProcessError, OSError) as e:
            logger.warning("TTS failed: %s", e)
