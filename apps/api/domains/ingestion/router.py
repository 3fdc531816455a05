"""Ingestion router: bank statement upload and normalization.

The multipart body is parsed by hand (``request.form()``) so the
Content-Length guard runs before any of the upload is buffered, and so
the file may arrive under any of the accepted field names.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from apps.api.core.config import Settings, get_settings
from apps.api.domains.ingestion.schemas import ParseSpreadsheetResponse
from apps.api.domains.ingestion.service import (
    build_pipeline,
    check_content_length,
    parse_statement,
    pick_upload,
    preview_statement,
    read_upload,
    validate_extension,
)
from packages.ingestion_engine.pipeline import StatementPipeline

router = APIRouter(prefix="/import", tags=["ingestion"])


def get_pipeline(settings: Settings = Depends(get_settings)) -> StatementPipeline:
    """One pipeline per request; overridden in tests."""
    return build_pipeline(settings)


@router.post(
    "/parse-spreadsheet",
    response_model=ParseSpreadsheetResponse,
    response_model_exclude_none=True,
)
async def parse_spreadsheet(
    request: Request,
    preview: Optional[str] = Query(None, description="Set to 1 to preview redacted text"),
    settings: Settings = Depends(get_settings),
    pipeline: StatementPipeline = Depends(get_pipeline),
):
    """Accept a CSV or Excel statement and return normalized expenses.

    Amounts are positive for money out and negative for money in. With
    ``?preview=1`` nothing is sent to a provider; the response carries a
    hash and samples of the redacted text instead.
    """
    max_bytes = settings.MAX_UPLOAD_BYTES
    check_content_length(request, max_bytes)

    form = await request.form()
    try:
        upload = pick_upload(form)
        filename = validate_extension(upload.filename)
        content = await read_upload(upload, max_bytes)
        password = form.get("password")
        password = password if isinstance(password, str) and password else None
    finally:
        await form.close()

    if preview == "1":
        usage = {"preview": await preview_statement(pipeline, content, filename, password)}
        return {"success": True, "expenses": [], "usage": usage}

    expenses = await parse_statement(request, pipeline, content, filename, password)
    return {"success": True, "expenses": expenses}
