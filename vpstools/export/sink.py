"""Destinations for rendered client artifacts."""

from __future__ import annotations

import os
import re
import tempfile
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger
from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from vpstools.core.exceptions import ExportFailedError

if TYPE_CHECKING:
    from vpstools.compiler.model import ClientConfigFormat, ClientConfiguration

_UNSAFE = re.compile(r"[/\\:]")


def export_filename(config: ClientConfiguration, fmt: ClientConfigFormat) -> str:
    """``{protocol}_{serverAddress}_{port}.{ext}``, safe as a single path segment."""
    server = _UNSAFE.sub("-", config.server_address)
    return f"{config.protocol_type}_{server}_{config.port}.{fmt.extension}"


def _check_filename(filename: str) -> None:
    if not filename or filename in (".", "..") or _UNSAFE.search(filename):
        raise ExportFailedError(f"invalid filename '{filename}'")


class FileSink:
    """Writes artifacts into a directory, atomically.

    Content goes to a temporary file in the target directory and is moved
    into place with ``os.replace``, so readers never see a partial file.
    Transient OS errors are retried.
    """

    def __init__(
        self,
        directory: str | Path,
        retry_max_attempts: int = 3,
        retry_delay: float = 0.2,
    ) -> None:
        self.directory = Path(directory).expanduser()
        self.retry_max_attempts = retry_max_attempts
        self.retry_delay = retry_delay
        self._log = logger.bind(component="export", directory=str(self.directory))

    def write(self, filename: str, content: str) -> str:
        _check_filename(filename)
        target = self.directory / filename
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self.retry_max_attempts),
                wait=wait_fixed(self.retry_delay),
                retry=retry_if_exception_type(OSError),
            ):
                with attempt:
                    self._write_atomic(target, content)
        except RetryError as e:
            cause = e.last_attempt.exception()
            self._log.error("Export of {name} failed: {error}", name=filename, error=cause)
            raise ExportFailedError(f"{target}: {cause}") from cause

        self._log.info("Exported {name} ({size} bytes)", name=filename, size=len(content.encode()))
        return str(target)

    def _write_atomic(self, target: Path, content: str) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp, target)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


class MemorySink:
    """Keeps artifacts in a dict. Locations are ``memory://{filename}``."""

    def __init__(self) -> None:
        self.files: dict[str, str] = {}
        self._lock = threading.Lock()

    def write(self, filename: str, content: str) -> str:
        _check_filename(filename)
        with self._lock:
            self.files[filename] = content
        return f"memory://{filename}"

    def read(self, filename: str) -> str:
        with self._lock:
            return self.files[filename]
