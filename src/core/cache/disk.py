"""Persistent on-disk cache for synthesized audio and provider listings.

Layout under the cache root::

    audio/<sha256>.<container>            binary audio, named by content hash
    models/<provider>_models_cache.json   {"provider", "timestamp", "models"}
    voices/<provider>_voices_cache.json   {"provider", "timestamp", "voices"}

Every record expires after a fixed age. Expired, empty or malformed
records are treated as missing, never as errors.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import time
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
DEFAULT_MAX_AGE = timedelta(days=7)


def audio_cache_key(
    text: str,
    voice: str,
    language: str,
    provider: str,
    speed: float,
    pitch: float,
    audio_format: str,
) -> str:
    """Content hash identifying one synthesized clip.

    Every parameter that changes the produced audio is part of the hash,
    including the output container format.
    """
    normalized = text.strip()
    raw = f"{provider}:{voice}:{language}:{speed}:{pitch}:{audio_format}:{normalized}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class PersistentCache:
    """Directory-scoped cache with audio, models and voices sub-areas."""

    def __init__(
        self,
        cache_dir: Path | str,
        max_age: timedelta = DEFAULT_MAX_AGE,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache_dir = Path(cache_dir).expanduser()
        self.max_age = max_age
        self._clock = clock

    @property
    def audio_dir(self) -> Path:
        return self.cache_dir / "audio"

    @property
    def models_dir(self) -> Path:
        return self.cache_dir / "models"

    @property
    def voices_dir(self) -> Path:
        return self.cache_dir / "voices"

    def ensure_directories(self) -> None:
        for directory in (self.audio_dir, self.models_dir, self.voices_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def _is_expired(self, timestamp_seconds: float) -> bool:
        return self._clock() - timestamp_seconds > self.max_age.total_seconds()

    @staticmethod
    def _unlink_quietly(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove cache file %s: %s", path, e)

    # === Audio ===

    def audio_file_path(self, cache_key: str, audio_format: str) -> Path:
        return self.audio_dir / f"{cache_key}.{audio_format}"

    def get_cached_audio_file(
        self, cache_key: str, audio_format: str | None = None
    ) -> Path | None:
        """Return the cached clip for ``cache_key``, or None on a miss.

        Without ``audio_format`` a file with any extension matches, since the
        extension names the container the provider returned.
        Zero-length and expired files are deleted and reported as misses.
        """
        if audio_format is not None:
            path = self.audio_file_path(cache_key, audio_format)
        else:
            matches = sorted(self.audio_dir.glob(f"{cache_key}.*"))
            if not matches:
                return None
            path = matches[0]
        try:
            stat = path.stat()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Cannot stat cached audio %s: %s", path, e)
            return None

        if stat.st_size == 0:
            logger.warning("Removing empty cached audio file %s", path.name)
            self._unlink_quietly(path)
            return None
        if self._is_expired(stat.st_mtime):
            logger.debug("Cached audio %s expired", path.name)
            self._unlink_quietly(path)
            return None
        return path

    def clear_audio_cache(self) -> int:
        return self._clear_directory(self.audio_dir)

    # === Models & voices ===

    def _record_path(self, directory: Path, provider: str, kind: str) -> Path:
        return directory / f"{provider}_{kind}_cache.json"

    def _read_record(self, path: Path, payload_key: str) -> list[Any] | None:
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
            logger.debug("Discarding unreadable cache record %s: %s", path, e)
            self._unlink_quietly(path)
            return None

        if not isinstance(data, dict):
            self._unlink_quietly(path)
            return None
        timestamp_ms = data.get("timestamp")
        payload = data.get(payload_key)
        if not isinstance(timestamp_ms, (int, float)) or not isinstance(payload, list):
            self._unlink_quietly(path)
            return None
        if self._is_expired(timestamp_ms / 1000):
            logger.debug("Cache record %s expired", path.name)
            self._unlink_quietly(path)
            return None
        return payload

    def _write_record(self, path: Path, provider: str, payload_key: str, payload: list[Any]) -> None:
        data = {
            "schema_version": SCHEMA_VERSION,
            "provider": provider,
            "timestamp": int(self._clock() * 1000),
            payload_key: payload,
        }
        try:
            self._atomic_write(path, data)
        except OSError as e:
            # Best effort: a missing record is refetched on the next read
            logger.warning("Could not write cache record %s: %s", path, e)

    @staticmethod
    def _atomic_write(path: Path, data: dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get_cached_models(self, provider: str) -> list[str] | None:
        models = self._read_record(self._record_path(self.models_dir, provider, "models"), "models")
        if models is None:
            return None
        return [m for m in models if isinstance(m, str)]

    def save_models(self, provider: str, models: list[str]) -> None:
        self._write_record(
            self._record_path(self.models_dir, provider, "models"), provider, "models", models
        )

    def get_cached_voices(self, provider: str) -> list[dict[str, Any]] | None:
        voices = self._read_record(self._record_path(self.voices_dir, provider, "voices"), "voices")
        if voices is None:
            return None
        return [v for v in voices if isinstance(v, dict)]

    def save_voices(self, provider: str, voices: list[dict[str, Any]]) -> None:
        self._write_record(
            self._record_path(self.voices_dir, provider, "voices"), provider, "voices", voices
        )

    def clear_models_cache(self) -> int:
        """Remove model and voice records; returns the number of files deleted."""
        return self._clear_directory(self.models_dir) + self._clear_directory(self.voices_dir)

    # === Maintenance ===

    def _clear_directory(self, directory: Path) -> int:
        if not directory.exists():
            return 0
        removed = 0
        for path in directory.rglob("*"):
            if path.is_file():
                try:
                    path.unlink()
                    removed += 1
                except OSError as e:
                    logger.warning("Could not remove cache file %s: %s", path, e)
        return removed

    def stats(self) -> dict[str, int]:
        def count(directory: Path) -> tuple[int, int]:
            if not directory.exists():
                return 0, 0
            files = [p for p in directory.rglob("*") if p.is_file()]
            return len(files), sum(p.stat().st_size for p in files)

        audio_files, audio_bytes = count(self.audio_dir)
        model_files, _ = count(self.models_dir)
        voice_files, _ = count(self.voices_dir)
        return {
            "audio_files": audio_files,
            "audio_bytes": audio_bytes,
            "model_records": model_files,
            "voice_records": voice_files,
        }
