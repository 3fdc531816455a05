"""Ingestion service: upload validation and pipeline execution.

The router only wires HTTP to these helpers. Everything here works on
plain bytes and a ``Request`` so the disconnect handling can be tested
without a multipart round trip.
"""

import asyncio
import os
from contextlib import suppress
from functools import partial
from typing import Any, Awaitable, Optional, TypeVar

import structlog
from fastapi import Request
from starlette.datastructures import FormData, UploadFile

from apps.api.core.config import Settings
from apps.api.core.errors import (
    BadRequestError,
    ClientDisconnectedError,
    PayloadTooLargeError,
)
from packages.ingestion_engine.pipeline import StatementPipeline
from packages.ingestion_engine.reader import SUPPORTED_EXTENSIONS

logger = structlog.get_logger()

T = TypeVar("T")

UPLOAD_FIELDS = ("file", "excel", "spreadsheet")

# Multipart boundaries and part headers on top of the file itself
FORM_OVERHEAD_BYTES = 64 * 1024

DISCONNECT_POLL_SECONDS = 0.25


def build_pipeline(settings: Settings) -> StatementPipeline:
    return StatementPipeline(settings.pipeline_config())


def _too_large(max_bytes: int) -> PayloadTooLargeError:
    return PayloadTooLargeError(f"File too large (max {max_bytes // (1024 * 1024)}MB)")


def check_content_length(request: Request, max_bytes: int) -> None:
    """Reject oversized bodies from the header alone, before reading them."""
    raw = request.headers.get("content-length")
    if raw is None:
        return
    try:
        length = int(raw)
    except ValueError:
        raise BadRequestError("Invalid Content-Length header")
    if length > max_bytes + FORM_OVERHEAD_BYTES:
        raise _too_large(max_bytes)


def pick_upload(form: FormData) -> UploadFile:
    """Return the first file found under any of the accepted field names."""
    for field in UPLOAD_FIELDS:
        value = form.get(field)
        if isinstance(value, UploadFile):
            return value
    raise BadRequestError(
        "No file uploaded. Send the statement in the 'file', 'excel' or 'spreadsheet' field"
    )


def validate_extension(filename: Optional[str]) -> str:
    filename = filename or ""
    ext = os.path.splitext(filename)[1].lower()
    if ext not in SUPPORTED_EXTENSIONS:
        accepted = ", ".join(sorted(SUPPORTED_EXTENSIONS))
        raise BadRequestError(f"Unsupported file type. Accepted: {accepted}")
    return filename


async def read_upload(upload: UploadFile, max_bytes: int) -> bytes:
    # One byte past the limit is enough to know it is too large
    content = await upload.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise _too_large(max_bytes)
    return content


async def run_until_disconnected(request: Request, work: Awaitable[T]) -> T:
    """Await ``work`` as a task, cancelling it if the client goes away.

    Partial results of a cancelled task are discarded and
    ``ClientDisconnectedError`` is raised instead.
    """
    task = asyncio.ensure_future(work)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info("client_disconnected", path=request.url.path)
                raise ClientDisconnectedError()
    finally:
        if not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task


async def parse_statement(
    request: Request,
    pipeline: StatementPipeline,
    content: bytes,
    filename: str,
    password: Optional[str] = None,
) -> list[dict[str, Any]]:
    result = await run_until_disconnected(
        request, pipeline.run(content, filename=filename, password=password)
    )
    logger.info(
        "ingest_complete",
        count=len(result.transactions),
        source=result.source,
        attempts=len(result.attempts),
        filename=filename,
    )
    return result.to_dicts()


async def preview_statement(
    pipeline: StatementPipeline,
    content: bytes,
    filename: str,
    password: Optional[str] = None,
) -> dict[str, Any]:
    loop = asyncio.get_event_loop()
    preview = await loop.run_in_executor(
        None, partial(pipeline.preview, content, filename, password)
    )
    logger.info(
        "preview_complete",
        prompt_hash=preview["promptHash"],
        length=preview["length"],
        filename=filename,
    )
    return preview
