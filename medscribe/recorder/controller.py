"""
Recording controller

Drives one recording session at a time through the reducers in
:mod:`medscribe.recorder.state` and holds the microphone for exactly as long
as the session is live (recording or paused).
"""

import threading
import time
from contextlib import ExitStack
from typing import Callable, List, Optional

from medscribe.core.exceptions import DeviceUnavailable, InvalidTransition
from medscribe.core.logging import get_logger
from medscribe.recorder import state as session
from medscribe.recorder.device import (
    ChunkCallback, FaultCallback, InputDevice, MicrophoneInput, acquire_device,
)
from medscribe.recorder.state import AudioArtifact, SessionState

logger = get_logger(__name__)

DeviceFactory = Callable[[ChunkCallback, FaultCallback], InputDevice]
ArtifactListener = Callable[[AudioArtifact], None]


class RecordingController:
    """
    Start/pause/resume/stop/reset over a single microphone session.

    Device callbacks arrive on the audio thread, so state changes happen under
    a lock. The device is released outside the lock because closing a stream
    waits for its pending callbacks.
    """

    def __init__(
        self,
        device_factory: DeviceFactory = MicrophoneInput,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._device_factory = device_factory
        self._clock = clock
        self._lock = threading.Lock()
        self._state: SessionState = session.Idle()
        self._device_scope = ExitStack()
        self._device: Optional[InputDevice] = None
        self._listeners: List[ArtifactListener] = []

    # --- Introspection ---

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def state_name(self) -> str:
        return self._state.name

    @property
    def elapsed_seconds(self) -> int:
        return session.elapsed_seconds(self._state, self._clock())

    @property
    def artifact(self) -> Optional[AudioArtifact]:
        if isinstance(self._state, session.Stopped):
            return self._state.artifact
        return None

    @property
    def error(self) -> Optional[str]:
        if isinstance(self._state, session.Faulted):
            return self._state.error
        return None

    @property
    def holds_device(self) -> bool:
        return self._device is not None

    @property
    def can_start(self) -> bool:
        return isinstance(self._state, session.Idle)

    def add_listener(self, listener: ArtifactListener) -> None:
        """Registers a callback that receives each finalized artifact once."""
        self._listeners.append(listener)

    def remove_listener(self, listener: ArtifactListener) -> None:
        self._listeners.remove(listener)

    # --- Commands ---

    def start(self) -> None:
        with self._lock:
            if not isinstance(self._state, session.Idle):
                raise InvalidTransition("start", self._state.name)
            device = self._device_factory(self._on_chunk, self._on_fault)
            with ExitStack() as scope:
                try:
                    scope.enter_context(acquire_device(device))
                except DeviceUnavailable as e:
                    logger.error(f"Could not start recording: {e}")
                    self._state = session.fault(self._state, str(e), self._clock())
                    raise
                self._state = session.start(self._state, self._clock(), device.format)
                self._device = device
                self._device_scope = scope.pop_all()
        logger.info("Recording started")

    def pause(self) -> None:
        with self._lock:
            self._state = session.pause(self._state, self._clock())
        logger.info(f"Recording paused at {self.elapsed_seconds}s")

    def resume(self) -> None:
        with self._lock:
            self._state = session.resume(self._state, self._clock())
        logger.info("Recording resumed")

    def stop(self) -> AudioArtifact:
        """
        Finalizes the session and releases the microphone.

        Listeners receive the artifact once, from the call that finalized it;
        stopping again returns the same artifact without notifying them.
        """
        with self._lock:
            if isinstance(self._state, session.Stopped):
                return self._state.artifact
            next_state = session.stop(self._state, self._clock())
            self._state = next_state
            listeners = list(self._listeners)

        self._release_device()

        artifact = next_state.artifact
        logger.info(f"Recording stopped: {len(artifact.data)} bytes, {artifact.elapsed_seconds}s")
        for listener in listeners:
            listener(artifact)
        return artifact

    def reset(self) -> None:
        """Discards the session from any state and returns to idle."""
        self._release_device()
        with self._lock:
            self._state = session.reset(self._state)
        logger.info("Recorder reset")

    def close(self) -> None:
        """Teardown: releases any held device."""
        self.reset()

    def __enter__(self) -> "RecordingController":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --- Device callbacks ---

    def _on_chunk(self, chunk: bytes) -> None:
        with self._lock:
            self._state = session.append_chunk(self._state, chunk)

    def _on_fault(self, error: Exception) -> None:
        with self._lock:
            if not isinstance(self._state, (session.Recording, session.Paused)):
                return
            self._state = session.fault(self._state, str(error), self._clock())
        logger.error(f"Recording faulted: {error}")
        # The stream cannot be closed from its own callback thread
        threading.Thread(target=self._release_device, name="recorder-release", daemon=True).start()

    def _release_device(self) -> None:
        with self._lock:
            scope, self._device_scope = self._device_scope, ExitStack()
            self._device = None
        scope.close()
