from __future__ import annotations

import asyncio
import time
from typing import Callable, Protocol

from podforge_studio.infrastructure.logging import get_logger

log = get_logger(__name__)


class AudioOutput(Protocol):
    def start(self, segment, offset_s: float, volume: float) -> None: ...

    def stop(self) -> None: ...


class PydubWaveformDecoder:
    """Decode a local audio file with pydub and drive a transport clock.

    The decoder determines duration, computes normalised waveform peaks for
    display and tracks the play head against ``time.monotonic``. It fires the
    finish callback when the play head reaches the end. With an ``output``
    the decoded segment is also sent to it from the play head on each
    play, seek or volume change.
    """

    def __init__(
        self,
        *,
        bars: int = 120,
        audio_format: str | None = None,
        output: AudioOutput | None = None,
    ) -> None:
        self.bars = bars
        self.audio_format = audio_format
        self.output = output
        self.peaks: list[float] = []
        self.volume = 1.0
        self._segment = None
        self._duration = 0.0
        self._offset = 0.0
        self._started_at: float | None = None
        self._finish_timer: asyncio.TimerHandle | None = None
        self._finish_callbacks: list[Callable[[], None]] = []
        self._destroyed = False

    async def load(self, path: str) -> float:
        segment = await asyncio.to_thread(self._decode, path)
        self._segment = segment
        self._duration = round(segment.duration_seconds, 3)
        self.peaks = await asyncio.to_thread(self._compute_peaks, segment)
        log.debug("decoder.loaded path=%s duration=%.2f", path, self._duration)
        return self._duration

    def _decode(self, path: str):
        from pydub import AudioSegment

        return AudioSegment.from_file(path, format=self.audio_format)

    def _compute_peaks(self, segment) -> list[float]:
        if len(segment) == 0 or self.bars <= 0:
            return []
        window = max(1, len(segment) // self.bars)
        raw = [segment[i : i + window].max for i in range(0, len(segment), window)][: self.bars]
        top = max(raw) if raw else 0
        if not top:
            return [0.0 for _ in raw]
        return [round(v / top, 4) for v in raw]

    def play(self) -> None:
        if self._destroyed or self._started_at is not None:
            return
        if self._offset >= self._duration:
            self._offset = 0.0
        self._start_output(self._offset)
        self._started_at = time.monotonic()
        self._schedule_finish()

    def pause(self) -> None:
        if self._started_at is None:
            return
        self._offset = self.current_time()
        self._started_at = None
        self._cancel_finish()
        self._stop_output()

    def stop(self) -> None:
        self.pause()
        self._offset = 0.0

    def seek(self, seconds: float) -> None:
        playing = self._started_at is not None
        self._offset = max(0.0, min(seconds, self._duration))
        if playing:
            self._start_output(self._offset)
            self._started_at = time.monotonic()
            self._schedule_finish()

    def set_volume(self, volume: float) -> None:
        self.volume = max(0.0, min(1.0, volume))
        if self._started_at is not None:
            self._offset = self.current_time()
            self._start_output(self._offset)
            self._started_at = time.monotonic()

    def current_time(self) -> float:
        if self._started_at is None:
            return self._offset
        return min(self._duration, self._offset + time.monotonic() - self._started_at)

    def is_playing(self) -> bool:
        return self._started_at is not None

    def on_finish(self, callback: Callable[[], None]) -> None:
        self._finish_callbacks.append(callback)

    def destroy(self) -> None:
        self._cancel_finish()
        self._stop_output()
        self._started_at = None
        self._finish_callbacks.clear()
        self._segment = None
        self.peaks = []
        self._destroyed = True

    def _start_output(self, offset_s: float) -> None:
        if self.output is not None and self._segment is not None:
            self.output.start(self._segment, offset_s, self.volume)

    def _stop_output(self) -> None:
        if self.output is not None:
            self.output.stop()

    def _schedule_finish(self) -> None:
        self._cancel_finish()
        remaining = max(0.0, self._duration - self._offset)
        loop = asyncio.get_running_loop()
        self._finish_timer = loop.call_later(remaining, self._finish)

    def _cancel_finish(self) -> None:
        if self._finish_timer is not None:
            self._finish_timer.cancel()
            self._finish_timer = None

    def _finish(self) -> None:
        self._finish_timer = None
        self._offset = self._duration
        self._started_at = None
        self._stop_output()
        for callback in list(self._finish_callbacks):
            try:
                callback()
            except Exception:
                log.warning("decoder.finish_callback_failed", exc_info=True)
