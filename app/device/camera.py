"""Capture devices — produce one JPEG per call.

CommandCaptureDevice shells out to a still-capture tool that writes the JPEG
to stdout (``libcamera-still ... -o -`` on a Raspberry Pi). FileCaptureDevice
reads an existing image (or the newest image in a directory) and re-encodes
it as JPEG; it stands in for the camera on a workstation.
"""

from __future__ import annotations

import asyncio
import contextlib
import io
from pathlib import Path
from typing import Protocol

import structlog
from PIL import Image, UnidentifiedImageError

from app.errors import CaptureFailure

log = structlog.get_logger("device.camera")

JPEG_MAGIC = b"\xff\xd8\xff"
IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".bmp", ".tif", ".tiff"}
JPEG_QUALITY = 90


class CaptureDevice(Protocol):
    async def capture(self) -> bytes:
        """Return the bytes of one JPEG image. Raises CaptureFailure."""
        ...


class CommandCaptureDevice:
    def __init__(self, command: list[str], timeout: float = 10.0) -> None:
        if not command:
            raise ValueError("Capture command must not be empty")
        self._command = command
        self._timeout = timeout

    async def capture(self) -> bytes:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CaptureFailure(f"Cannot start {self._command[0]}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except TimeoutError as e:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            raise CaptureFailure(f"{self._command[0]} timed out after {self._timeout}s") from e

        if proc.returncode != 0:
            raise CaptureFailure(
                f"{self._command[0]} exited {proc.returncode}: {stderr.decode(errors='replace')[:200]}"
            )
        if not stdout.startswith(JPEG_MAGIC):
            raise CaptureFailure(f"{self._command[0]} did not produce a JPEG")

        log.info("image_captured", source="command", size=len(stdout))
        return stdout


def _newest_image(directory: Path) -> Path:
    candidates = [p for p in directory.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES]
    if not candidates:
        raise CaptureFailure(f"No images in {directory}")
    return max(candidates, key=lambda p: p.stat().st_mtime)


def encode_jpeg(path: Path) -> bytes:
    """Load any Pillow-readable image and return it as JPEG bytes."""
    try:
        with Image.open(path) as img:
            buffer = io.BytesIO()
            img.convert("RGB").save(buffer, format="JPEG", quality=JPEG_QUALITY)
    except (OSError, UnidentifiedImageError) as e:
        raise CaptureFailure(f"Cannot read image {path}: {e}") from e
    return buffer.getvalue()


class FileCaptureDevice:
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    async def capture(self) -> bytes:
        path = _newest_image(self._path) if self._path.is_dir() else self._path
        data = await asyncio.to_thread(encode_jpeg, path)
        log.info("image_captured", source="file", file=str(path), size=len(data))
        return data
