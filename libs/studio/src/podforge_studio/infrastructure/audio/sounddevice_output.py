from __future__ import annotations

from podforge_contracts.errors import ResourceError
from podforge_studio.infrastructure.logging import get_logger

log = get_logger(__name__)


class SoundDeviceOutput:
    """Plays a decoded pydub segment on the default output device.

    ``sounddevice`` needs the PortAudio system library, so it is imported on
    first use rather than at module load.
    """

    def __init__(self, *, device: int | str | None = None) -> None:
        self.device = device
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def start(self, segment, offset_s: float, volume: float) -> None:
        import numpy as np

        try:
            import sounddevice as sd
        except OSError as exc:
            raise ResourceError(f"No audio output available: {exc}") from exc

        self.stop()
        clip = segment[int(offset_s * 1000) :]
        if len(clip) == 0:
            return
        samples = np.array(clip.get_array_of_samples(), dtype=np.float32)
        if clip.channels > 1:
            samples = samples.reshape((-1, clip.channels))
        full_scale = float(1 << (8 * clip.sample_width - 1))
        samples *= volume / full_scale
        try:
            sd.play(samples, clip.frame_rate, device=self.device)
        except sd.PortAudioError as exc:
            raise ResourceError(f"Audio output failed: {exc}") from exc
        self._active = True
        log.debug("output.start offset=%.2f volume=%.2f rate=%s", offset_s, volume, clip.frame_rate)

    def stop(self) -> None:
        if not self._active:
            return
        import sounddevice as sd

        self._active = False
        sd.stop()
        log.debug("output.stop")
