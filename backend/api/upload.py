"""Multipart upload endpoint.

The handler parses the request body, picks the configured file field and
streams it to ``<dir>/<client filename>``. Every failure is answered at the
point where it is detected; nothing is retried and nothing is rolled back,
so a failed copy can leave a partial file behind.

The client filename is used as given. It is joined to the upload directory
without any traversal or collision checks. Concurrent uploads of the same
name are written one after another, so the last one to finish wins and the
file always holds a single payload.
"""

import asyncio
import os
import time
import weakref
from typing import Awaitable, BinaryIO, Callable

import structlog
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import FormData, UploadFile
from starlette.formparsers import MultiPartException, MultiPartParser
from starlette.requests import ClientDisconnect, Request
from starlette.responses import PlainTextResponse, Response

from config import Config

logger = structlog.get_logger(__name__)

MULTIPART_MEDIA_TYPE = "multipart/form-data"

COPY_CHUNK_SIZE = 64 * 1024


def plain_error(message: str, status_code: int) -> PlainTextResponse:
    """Plain-text error response, one line per message."""
    return PlainTextResponse(
        f"{message}\n",
        status_code=status_code,
        headers={"X-Content-Type-Options": "nosniff"},
    )


async def parse_multipart(request: Request, max_in_memory_size: int) -> FormData:
    """Parse the request body as ``multipart/form-data``.

    Parts up to ``max_in_memory_size`` bytes stay in memory; larger parts are
    rolled over to temporary files by the parser.

    Raises:
        MultiPartException: If the body is not multipart or is malformed.
        ValueError: If the underlying multipart parser rejects the body.
    """
    content_type = request.headers.get("content-type", "")
    media_type = content_type.partition(";")[0].strip().lower()
    if media_type != MULTIPART_MEDIA_TYPE:
        raise MultiPartException(f"request Content-Type isn't {MULTIPART_MEDIA_TYPE}")

    parser = MultiPartParser(request.headers, request.stream())
    parser.spool_max_size = max_in_memory_size
    return await parser.parse()


def destination_path(directory: str, filename: str) -> str:
    """Join *filename* onto *directory* lexically.

    Leading separators are dropped so that an absolute filename lands under
    *directory*; ``..`` components are resolved but not rejected.
    """
    return os.path.normpath(os.path.join(directory, filename.lstrip("/\\")))


def _first_file(form: FormData, field: str) -> UploadFile | None:
    for value in form.getlist(field):
        if isinstance(value, UploadFile) and value.filename:
            return value
    return None


def _copy_part(part: UploadFile, dst: BinaryIO, deadline: float) -> None:
    # Runs in a worker thread, so the deadline is checked here rather than
    # by cancelling the awaiting task.
    with dst:
        part.file.seek(0)
        while True:
            chunk = part.file.read(COPY_CHUNK_SIZE)
            if not chunk:
                return
            dst.write(chunk)
            if time.monotonic() > deadline:
                raise TimeoutError("write deadline exceeded")


def upload(config: Config) -> Callable[[Request], Awaitable[Response]]:
    """Build the upload endpoint for *config*."""
    # One writer per destination path at a time.
    path_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    async def upload_file(request: Request) -> Response:
        if request.method != "POST":
            return plain_error("Method not allowed", 405)

        try:
            form = await asyncio.wait_for(
                parse_multipart(request, config.max_in_memory_size),
                timeout=config.read_timeout,
            )
        except (MultiPartException, ValueError, ClientDisconnect, asyncio.TimeoutError) as e:
            logger.warning("multipart_parse_failed", error=str(e) or type(e).__name__)
            return plain_error("Could not parse multipart form", 400)

        try:
            part = _first_file(form, config.form_upload_field)
            if part is None:
                logger.warning("upload_field_missing", field=config.form_upload_field)
                return plain_error("Could not get file from form", 400)

            path = destination_path(config.dir, part.filename)
            lock = path_locks.setdefault(path, asyncio.Lock())
            async with lock:
                try:
                    dst = await run_in_threadpool(open, path, "wb")
                except (OSError, ValueError) as e:
                    logger.error("file_create_failed", path=path, error=str(e))
                    return plain_error("Could not create file on disk", 500)

                deadline = time.monotonic() + config.write_timeout
                try:
                    await run_in_threadpool(_copy_part, part, dst, deadline)
                except (OSError, ValueError) as e:
                    logger.error("file_save_failed", path=path, error=str(e) or type(e).__name__)
                    return plain_error("Could not save file", 500)

            logger.info("file_uploaded", filename=part.filename, path=path)
            return PlainTextResponse(f"File uploaded successfully: {part.filename}\n")
        finally:
            await form.close()

    return upload_file
