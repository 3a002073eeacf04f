from __future__ import annotations

import logging
from typing import Callable

from fastapi import HTTPException
from sqlalchemy.orm import Session

from crm.account_store import AccountStore
from crm.config import settings
from crm.import_result import ImportResult
from crm.reconcile import import_candidates
from crm.workbook_import import WorkbookReadError, parse_workbook, read_workbook

logger = logging.getLogger(__name__)

VALID_IMPORT_MODES = {"apply", "preview"}


def normalize_import_mode(import_mode: str) -> str:
    mode = (import_mode or "").strip().lower() or "apply"
    if mode not in VALID_IMPORT_MODES:
        raise HTTPException(status_code=400, detail="Invalid import mode. Use preview or apply.")
    return mode


def _validate_upload(content: bytes, filename: str) -> None:
    if not filename.lower().endswith(settings.import_allowed_extensions):
        allowed = ", ".join(settings.import_allowed_extensions)
        raise HTTPException(status_code=400, detail=f"Unsupported file type. Upload one of: {allowed}")
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded workbook is empty")
    if len(content) > settings.import_max_upload_bytes:
        raise HTTPException(
            status_code=400,
            detail=f"Uploaded workbook exceeds {settings.import_max_upload_bytes} bytes",
        )


def import_crm_workbook(
    db: Session,
    content: bytes,
    filename: str,
    user_id: str,
    *,
    should_cancel: Callable[[], bool] | None = None,
) -> ImportResult:
    """Parse an uploaded workbook and reconcile it inside the caller's transaction.

    Committing or rolling back is left to the caller so the same run can serve
    as a preview.
    """
    _validate_upload(content, filename)

    try:
        workbook = read_workbook(content)
    except WorkbookReadError as exc:
        failed = ImportResult()
        failed.mark_failed(str(exc))
        raise HTTPException(
            status_code=400,
            detail={"message": "Workbook could not be read", **failed.as_dict()},
        ) from exc

    parsed = parse_workbook(workbook)
    if not parsed.accounts and not parsed.interactions and parsed.diagnostics.errors:
        failed = ImportResult(success=False)
        failed.prepend(parsed.diagnostics)
        raise HTTPException(
            status_code=400,
            detail={"message": "Workbook could not be parsed", **failed.as_dict()},
        )

    logger.info("Importing %r for user %s", filename, user_id)
    result = import_candidates(
        AccountStore(db),
        parsed.accounts,
        parsed.interactions,
        user_id,
        should_cancel=should_cancel,
    )
    result.prepend(parsed.diagnostics)
    return result
