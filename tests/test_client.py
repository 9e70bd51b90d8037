import base64
import json

import httpx
import pytest

from medscribe.client import MedScribeClient, MedScribeClientError
from medscribe.recorder.controller import RecordingController
from medscribe.recorder.device import InputDevice
from medscribe.recorder.state import AudioArtifact, AudioFormat


class FakeService:
    """Routes client requests to canned service answers."""

    def __init__(self, transcript: str = "Paciente refiere cefalea."):
        self.transcript = transcript
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.requests.append((request.url.path, payload, request.headers.get("Authorization")))
        if request.url.path == "/v1/audio":
            return httpx.Response(201, json={"recordingId": "rec-1", "filePath": "u/rec.wav", "success": True})
        if request.url.path == "/v1/transcribe":
            return httpx.Response(200, json={"transcription": self.transcript, "provider": payload["provider"], "success": True})
        if request.url.path == "/v1/structure":
            return httpx.Response(200, json={"structured": {"subjetivo": "cefalea"}, "provider": payload["provider"], "success": True})
        return httpx.Response(404, json={"detail": "Not Found"})

    def paths(self):
        return [path for path, _, _ in self.requests]


def make_client(handler) -> MedScribeClient:
    return MedScribeClient("http://medscribe.test", "token-abc", transport=httpx.MockTransport(handler))


def pcm_artifact() -> AudioArtifact:
    return AudioArtifact(data=b"\x01\x00" * 1600, format=AudioFormat(), elapsed_seconds=1)


def test_process_artifact_uploads_transcribes_and_structures() -> None:
    service = FakeService()

    with make_client(service) as client:
        result = client.process_artifact(pcm_artifact(), provider="openai", consultation_id="c-1")

    assert service.paths() == ["/v1/audio", "/v1/transcribe", "/v1/structure"]
    assert all(auth == "Bearer token-abc" for _, _, auth in service.requests)

    _, upload, _ = service.requests[0]
    assert upload["fileName"] == "recording.wav"
    assert upload["consultationId"] == "c-1"
    assert base64.b64decode(upload["audioBlob"]).startswith(b"RIFF")

    _, transcribe, _ = service.requests[1]
    assert transcribe["recordingRef"] == "rec-1"
    assert transcribe["contentType"] == "audio/wav"
    assert transcribe["provider"] == "openai"

    assert result["transcription"] == "Paciente refiere cefalea."
    assert result["structured"] == {"subjetivo": "cefalea"}


def test_empty_transcript_skips_structuring() -> None:
    service = FakeService(transcript="")

    with make_client(service) as client:
        result = client.process_artifact(pcm_artifact())

    assert service.paths() == ["/v1/audio", "/v1/transcribe"]
    assert result["structured"] is None


def test_error_body_is_raised_with_code() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, json={
            "success": False,
            "error": "unparseable_structure",
            "message": "Could not parse structured response from provider",
        })

    with make_client(handler) as client:
        with pytest.raises(MedScribeClientError) as exc_info:
            client.structure("texto")

    assert exc_info.value.status_code == 502
    assert exc_info.value.error == "unparseable_structure"
    assert exc_info.value.retryable


def test_framework_error_without_code_is_not_retryable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"detail": "Invalid or missing authentication credentials"})

    with make_client(handler) as client:
        with pytest.raises(MedScribeClientError) as exc_info:
            client.generate_plan(assessment="Migraña")

    assert exc_info.value.error == "http_error"
    assert exc_info.value.message == "Invalid or missing authentication credentials"
    assert not exc_info.value.retryable


class SilentDevice(InputDevice):
    opened = []

    def __init__(self, on_chunk, on_fault):
        super().__init__(on_chunk, on_fault)
        self.format = AudioFormat()
        SilentDevice.opened.append(self)

    def open(self) -> None:
        pass

    def close(self) -> None:
        pass


def test_attach_processes_each_stopped_recording() -> None:
    service = FakeService()
    results = []
    controller = RecordingController(device_factory=SilentDevice)

    with make_client(service) as client:
        client.attach(controller, on_result=results.append)

        controller.start()
        SilentDevice.opened[-1].on_chunk(b"\x00\x01" * 800)
        controller.stop()

        controller.reset()
        controller.start()
        controller.stop()

    assert len(results) == 1
    assert service.paths().count("/v1/audio") == 1
