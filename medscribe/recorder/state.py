"""
Recording session state machine

The session is an immutable value; every command is a pure function from the
current state (plus the current monotonic time) to the next state::

    Idle -> Recording <-> Paused -> Stopped -> (reset) -> Idle
    Idle/Recording/Paused -> Faulted -> (reset) -> Idle

Elapsed time counts only the time spent in ``Recording``. Chunks are an
append-only tuple and only grow while recording. ``Stopped`` is the only state
that carries a finalized artifact.
"""

import io
import math
import wave
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple, Union

from medscribe.core.exceptions import InvalidTransition

PCM_CONTENT_TYPE = "audio/pcm"


@dataclass(frozen=True)
class AudioFormat:
    content_type: str = PCM_CONTENT_TYPE
    sample_rate: Optional[int] = 16000
    channels: Optional[int] = 1
    sample_width: Optional[int] = 2  # bytes per sample (int16)


@dataclass(frozen=True)
class AudioArtifact:
    """Finalized, immutable recording."""

    data: bytes
    format: AudioFormat
    elapsed_seconds: int

    @property
    def content_type(self) -> str:
        return self.format.content_type

    @property
    def is_empty(self) -> bool:
        return not self.data

    def to_wav(self) -> bytes:
        """Wraps raw PCM in a WAV container; other formats are returned unchanged."""
        if self.format.content_type != PCM_CONTENT_TYPE:
            return self.data
        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as wav_file:
            wav_file.setnchannels(self.format.channels or 1)
            wav_file.setsampwidth(self.format.sample_width or 2)
            wav_file.setframerate(self.format.sample_rate or 16000)
            wav_file.writeframes(self.data)
        return buffer.getvalue()


@dataclass(frozen=True)
class Idle:
    name = "idle"


@dataclass(frozen=True)
class Recording:
    name = "recording"

    format: AudioFormat
    segment_started_at: float
    banked_seconds: float = 0.0
    chunks: Tuple[bytes, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Paused:
    name = "paused"

    format: AudioFormat
    banked_seconds: float
    chunks: Tuple[bytes, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Stopped:
    name = "stopped"

    artifact: AudioArtifact


@dataclass(frozen=True)
class Faulted:
    """Sticky error state; only ``reset`` leaves it."""

    name = "faulted"

    error: str
    elapsed_seconds: int = 0


SessionState = Union[Idle, Recording, Paused, Stopped, Faulted]


def _active_seconds(state: SessionState, now: float) -> float:
    if isinstance(state, Recording):
        return state.banked_seconds + max(0.0, now - state.segment_started_at)
    if isinstance(state, Paused):
        return state.banked_seconds
    if isinstance(state, Stopped):
        return float(state.artifact.elapsed_seconds)
    if isinstance(state, Faulted):
        return float(state.elapsed_seconds)
    return 0.0


def elapsed_seconds(state: SessionState, now: float) -> int:
    """Whole seconds spent recording, excluding paused time."""
    return int(math.floor(_active_seconds(state, now)))


def start(state: SessionState, now: float, audio_format: AudioFormat) -> Recording:
    if not isinstance(state, Idle):
        raise InvalidTransition("start", state.name)
    return Recording(format=audio_format, segment_started_at=now)


def pause(state: SessionState, now: float) -> Paused:
    if not isinstance(state, Recording):
        raise InvalidTransition("pause", state.name)
    return Paused(
        format=state.format,
        banked_seconds=_active_seconds(state, now),
        chunks=state.chunks,
    )


def resume(state: SessionState, now: float) -> Recording:
    if not isinstance(state, Paused):
        raise InvalidTransition("resume", state.name)
    return Recording(
        format=state.format,
        segment_started_at=now,
        banked_seconds=state.banked_seconds,
        chunks=state.chunks,
    )


def stop(state: SessionState, now: float) -> Stopped:
    """Finalizes the chunks in arrival order. Stopping a stopped session keeps its artifact."""
    if isinstance(state, Stopped):
        return state
    if not isinstance(state, (Recording, Paused)):
        raise InvalidTransition("stop", state.name)
    artifact = AudioArtifact(
        data=b"".join(state.chunks),
        format=state.format,
        elapsed_seconds=elapsed_seconds(state, now),
    )
    return Stopped(artifact=artifact)


def reset(state: SessionState) -> Idle:
    return Idle()


def fault(state: SessionState, error: str, now: float) -> SessionState:
    """Moves a live session to ``Faulted``; late faults after ``stop`` are ignored."""
    if isinstance(state, (Stopped, Faulted)):
        return state
    return Faulted(error=error, elapsed_seconds=elapsed_seconds(state, now))


def append_chunk(state: SessionState, chunk: bytes) -> SessionState:
    """Accumulates a chunk while recording; chunks arriving in any other state are dropped."""
    if not isinstance(state, Recording) or not chunk:
        return state
    return replace(state, chunks=state.chunks + (bytes(chunk),))
