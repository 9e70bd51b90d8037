"""
Audio transport encoding and metadata
"""

import base64
import binascii
import io
from typing import Optional, Dict, Any
from mutagen import File as MutagenFile, MutagenError
from medscribe.config import settings
from medscribe.core.exceptions import EmptyArtifact, InvalidRequestError
from medscribe.core.logging import get_logger

logger = get_logger(__name__)


def encode_audio(data: Optional[bytes]) -> str:
    """Encodes an audio artifact as base64 text for JSON transport."""
    if data is None:
        raise EmptyArtifact("No audio artifact to encode")
    return base64.b64encode(bytes(data)).decode("ascii")


def decode_audio(encoded: Optional[str]) -> bytes:
    """Reverses :func:`encode_audio`; rejects text that is not valid base64."""
    if encoded is None:
        raise EmptyArtifact("No audio data provided")
    # Browsers send data URLs ("data:audio/webm;base64,....") from FileReader
    if encoded.startswith("data:") and "," in encoded:
        encoded = encoded.split(",", 1)[1]
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidRequestError("Audio data is not valid base64", {"reason": str(e)}) from e


class AudioProcessor:
    """Payload decoding, format detection and metadata"""

    def decode_payload(self, encoded: Optional[str]) -> bytes:
        """Decodes a request payload; an empty payload is rejected before any upstream call."""
        if not encoded:
            raise EmptyArtifact("Audio data is required")
        audio_data = decode_audio(encoded)
        if not audio_data:
            raise EmptyArtifact("Audio data is required")
        logger.info(f"Received {len(audio_data)} bytes of audio data.")
        return audio_data

    @staticmethod
    def detect_content_type(audio_data: bytes, filename: Optional[str] = None) -> str:
        """Detects the content type from the file signature, then the file name"""
        if b'ftyp' in audio_data[4:12]:
            return "audio/mp4"

        signatures = {
            b'\x1a\x45\xdf\xa3': "audio/webm",  # EBML (WebM/Matroska)
            b'ID3': "audio/mpeg",      # MP3 with ID3 Tag
            b'\xff\xfb': "audio/mpeg",  # MP3 frame
            b'\xff\xf3': "audio/mpeg",  # MP3 frame
            b'\xff\xf2': "audio/mpeg",  # MP3 frame
            b'RIFF': "audio/wav",      # WAV
            b'OggS': "audio/ogg",      # OGG
        }

        for signature, detected_type in signatures.items():
            if audio_data.startswith(signature):
                return detected_type

        if filename:
            ext_map = {
                '.mp3': 'audio/mpeg',
                '.wav': 'audio/wav',
                '.m4a': 'audio/mp4',
                '.mp4': 'audio/mp4',
                '.ogg': 'audio/ogg',
                '.webm': 'audio/webm',
            }
            for ext, content_type in ext_map.items():
                if filename.lower().endswith(ext):
                    return content_type

        # MediaRecorder output without a recognizable header
        return settings.default_audio_content_type

    def extract_metadata(self, audio_data: bytes, content_type: str) -> Dict[str, Any]:
        """Extracts duration and other metadata using mutagen (best effort)."""
        try:
            audio = MutagenFile(io.BytesIO(audio_data))
        except MutagenError as e:
            logger.warning(f"Could not extract metadata using mutagen: {e}")
            audio = None

        if audio is None or audio.info is None:
            return {"duration_seconds": None, "content_type": content_type}

        return {
            "duration_seconds": float(getattr(audio.info, 'length', 0.0)) or None,
            "bitrate": getattr(audio.info, 'bitrate', None),
            "sample_rate": getattr(audio.info, 'sample_rate', None),
            "channels": getattr(audio.info, 'channels', None),
            "content_type": content_type,
        }
