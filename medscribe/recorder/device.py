"""
Microphone input devices

A device is opened once per recording and must be closed on every exit path;
:func:`acquire_device` is the only place that opens one.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from medscribe.core.exceptions import DeviceUnavailable
from medscribe.core.logging import get_logger
from medscribe.recorder.state import AudioFormat, PCM_CONTENT_TYPE

logger = get_logger(__name__)

ChunkCallback = Callable[[bytes], None]
FaultCallback = Callable[[Exception], None]


class InputDevice(ABC):
    """An audio source that pushes chunks to ``on_chunk`` and faults to ``on_fault``."""

    format: AudioFormat

    def __init__(self, on_chunk: ChunkCallback, on_fault: FaultCallback):
        self.on_chunk = on_chunk
        self.on_fault = on_fault

    @abstractmethod
    def open(self) -> None:
        """Starts capture. Raises :class:`DeviceUnavailable` when the input cannot be opened."""

    @abstractmethod
    def close(self) -> None:
        """Stops capture and releases the input. Safe to call more than once."""


class MicrophoneInput(InputDevice):
    """Raw int16 PCM capture through sounddevice (PortAudio)."""

    def __init__(
        self,
        on_chunk: ChunkCallback,
        on_fault: FaultCallback,
        sample_rate: int = 16000,
        channels: int = 1,
        device: Optional[int] = None,
    ):
        super().__init__(on_chunk, on_fault)
        self.format = AudioFormat(
            content_type=PCM_CONTENT_TYPE,
            sample_rate=sample_rate,
            channels=channels,
            sample_width=2,
        )
        self.device = device
        self._stream = None
        self._closing = False

    def open(self) -> None:
        try:
            # PortAudio is loaded on import; a host without it has no microphone
            import sounddevice as sd
        except OSError as e:
            raise DeviceUnavailable(f"PortAudio library not available: {e}", cause=e) from e

        self._closing = False
        try:
            self._stream = sd.RawInputStream(
                samplerate=self.format.sample_rate,
                channels=self.format.channels,
                dtype="int16",
                blocksize=self.format.sample_rate,  # one-second chunks
                device=self.device,
                callback=self._on_audio,
                finished_callback=self._on_finished,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as e:
            self._discard_stream()
            raise DeviceUnavailable(f"Audio input device unavailable: {e}", cause=e) from e
        logger.info(f"Microphone opened (device={self.device}, {self.format.sample_rate} Hz)")

    def close(self) -> None:
        if self._stream is None:
            return
        self._closing = True
        stream, self._stream = self._stream, None
        try:
            stream.stop()
        finally:
            stream.close()
        logger.info("Microphone released")

    def _discard_stream(self) -> None:
        if self._stream is not None:
            self._closing = True
            self._stream.close()
            self._stream = None

    def _on_audio(self, indata, frames, time_info, status) -> None:
        if status:
            logger.warning(f"Audio input status: {status}")
        self.on_chunk(bytes(indata))

    def _on_finished(self) -> None:
        # Called when the stream goes inactive; unexpected when we did not close it
        if not self._closing:
            self.on_fault(DeviceUnavailable("Audio input stream ended unexpectedly"))


@contextmanager
def acquire_device(device: InputDevice) -> Iterator[InputDevice]:
    """Opens ``device`` and guarantees it is closed when the block exits, however it exits."""
    device.open()
    try:
        yield device
    finally:
        device.close()
