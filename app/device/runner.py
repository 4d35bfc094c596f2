"""Capture device entrypoint.

Run on the device with:
    python -m app.device.runner            # camera via CAPTURE_COMMAND
    python -m app.device.runner --image x  # file/directory instead of camera

Every line on stdin (the button bridge writes one per press; Enter works
interactively) is a trigger event. Triggers go through an asyncio.Queue and
each one is handed to the upload client as its own task, so presses during an
upload reach the in-flight guard and are dropped there instead of queuing up.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time

import httpx
import structlog

from app.config import settings
from app.device.camera import CaptureDevice, CommandCaptureDevice, FileCaptureDevice
from app.device.session import CredentialManager, build_idp_client, load_credentials
from app.device.uploader import CaptureUploadClient
from app.errors import AuthenticationFailure, ConfigurationError
from app.logging import configure_logging

log = structlog.get_logger("device.runner")


async def read_stdin_triggers(queue: asyncio.Queue[float | None]) -> None:
    """Feed one trigger per stdin line; ``None`` marks end of input."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    while await reader.readline():
        await queue.put(time.monotonic())
    await queue.put(None)


async def consume_triggers(
    queue: asyncio.Queue[float | None],
    client: CaptureUploadClient,
    source: asyncio.Task[None] | None = None,
) -> None:
    """Dispatch triggers until end of input or a fatal cycle error.

    ``source`` is the task feeding ``queue``. If it fails, no end-of-input
    marker will ever arrive, so its exception is fatal too.
    """
    fatal: asyncio.Future[None] = asyncio.get_running_loop().create_future()
    pending: set[asyncio.Task[str | None]] = set()

    def _on_done(task: asyncio.Task) -> None:
        pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not fatal.done():
            fatal.set_exception(exc)

    if source is not None:
        source.add_done_callback(_on_done)

    while True:
        getter = asyncio.ensure_future(queue.get())
        done, _ = await asyncio.wait({getter, fatal}, return_when=asyncio.FIRST_COMPLETED)
        if fatal in done:
            getter.cancel()
            break
        if getter.result() is None:
            break
        task = asyncio.create_task(client.on_capture_trigger())
        pending.add(task)
        task.add_done_callback(_on_done)

    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
    if fatal.done():
        fatal.result()


def _build_camera(image: str | None) -> CaptureDevice:
    if image:
        return FileCaptureDevice(image)
    return CommandCaptureDevice(settings.capture_command, timeout=settings.capture_timeout_seconds)


async def run_device(image: str | None = None) -> None:
    credentials = load_credentials(settings.credentials_file)
    manager = CredentialManager(build_idp_client(), credentials)
    queue: asyncio.Queue[float | None] = asyncio.Queue()

    async with httpx.AsyncClient() as http_client:
        client = CaptureUploadClient(manager, _build_camera(image), http_client)
        log.info(
            "device_started",
            api_base_url=settings.api_base_url,
            debounce_seconds=settings.capture_debounce_seconds,
            camera="file" if image else "command",
        )
        reader = asyncio.create_task(read_stdin_triggers(queue))
        try:
            await consume_triggers(queue, client, source=reader)
        finally:
            reader.cancel()
    log.info("device_stopped")


def main(argv: list[str] | None = None) -> None:
    """Entrypoint for `python -m app.device.runner`."""
    parser = argparse.ArgumentParser(description="Shopping list capture device")
    parser.add_argument("--image", help="Image file or directory to use instead of the camera")
    args = parser.parse_args(argv)

    configure_logging()
    try:
        asyncio.run(run_device(args.image))
    except KeyboardInterrupt:
        pass
    except ConfigurationError as e:
        log.error("device_misconfigured", error=str(e))
        sys.exit(2)
    except AuthenticationFailure as e:
        log.error("device_authentication_failed", error=str(e))
        sys.exit(1)
    except Exception:
        log.exception("device_fatal_error")
        sys.exit(1)


if __name__ == "__main__":
    main()
