"""Persistence of binary media returned by providers.

Providers hand back base64 payloads; this module turns them into files and
gives callers a stable path to keep instead of the raw payload.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)

_DATA_URL_PREFIX = re.compile(r"^data:[^;,]*;base64,", re.IGNORECASE)

_IMAGE_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", "png"),
    (b"GIF8", "gif"),
    (b"\xff\xd8\xff", "jpg"),
)


def strip_data_url(payload: str) -> str:
    """Remove a ``data:<mime>;base64,`` prefix and surrounding whitespace."""
    return _DATA_URL_PREFIX.sub("", payload.strip(), count=1)


def decode_base64(payload: str) -> bytes | None:
    """Decode a (possibly data-URL) base64 payload; None if it is not valid base64."""
    cleaned = strip_data_url(payload)
    if not cleaned:
        return None
    try:
        return base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError):
        return None


def _image_extension(data: bytes) -> str:
    for signature, extension in _IMAGE_SIGNATURES:
        if data.startswith(signature):
            return extension
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    return "jpg"


class MediaPersistence:
    """Writes provider media into ``images/`` and ``audio/`` directories."""

    def __init__(self, images_dir: Path | str, audio_dir: Path | str) -> None:
        self.images_dir = Path(images_dir).expanduser()
        self.audio_dir = Path(audio_dir).expanduser()

    def _write(self, path: Path, data: bytes) -> str | None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            logger.error("Failed to write media file %s: %s", path, e)
            return None
        return str(path)

    def save_base64_image(self, payload: str) -> str | None:
        """Store an image under a random name.

        Returns:
            The file path, or None if the payload is empty or not base64.
        """
        data = decode_base64(payload)
        if not data:
            logger.warning("Refusing to store invalid or empty image payload")
            return None
        path = self.images_dir / f"{uuid.uuid4()}.{_image_extension(data)}"
        return self._write(path, data)

    def save_base64_audio(
        self, payload: str, file_stem: str | None = None, audio_format: str = "m4a"
    ) -> str | None:
        """Store audio as ``<file_stem>.<audio_format>``.

        ``file_stem`` is normally the audio cache key, which turns the file
        into the persistent cache entry for that clip.
        """
        saved = self.save_base64_audio_complete(payload, file_stem, audio_format)
        return saved[0] if saved else None

    def save_base64_audio_complete(
        self, payload: str, file_stem: str | None = None, audio_format: str = "m4a"
    ) -> tuple[str, str] | None:
        """Like save_base64_audio but also returns the cleaned base64 payload."""
        data = decode_base64(payload)
        if not data:
            logger.warning("Refusing to store invalid or empty audio payload")
            return None
        stem = file_stem or str(uuid.uuid4())
        path = self._write(self.audio_dir / f"{stem}.{audio_format}", data)
        if path is None:
            return None
        return path, base64.b64encode(data).decode("ascii")

    @staticmethod
    def _read(path: Path | str) -> bytes | None:
        try:
            return Path(path).read_bytes()
        except OSError as e:
            logger.debug("Cannot read media file %s: %s", path, e)
            return None

    def load_audio_bytes(self, path: Path | str) -> bytes | None:
        return self._read(path)

    def load_image_bytes(self, path: Path | str) -> bytes | None:
        return self._read(path)

    def delete_media_file(self, path: Path | str) -> bool:
        try:
            Path(path).unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning("Could not delete media file %s: %s", path, e)
            return False
        return True

    @staticmethod
    def _clear(directory: Path) -> int:
        if not directory.exists():
            return 0
        removed = 0
        for path in directory.iterdir():
            if not path.is_file():
                continue
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                logger.warning("Could not delete media file %s: %s", path, e)
        return removed

    def clear_audio_cache(self) -> int:
        return self._clear(self.audio_dir)

    def clear_image_cache(self) -> int:
        return self._clear(self.images_dir)
