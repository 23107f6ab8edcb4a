from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import FileResponse, JSONResponse
from sqlmodel import Session, select

from markpress.api.deps import enforce_rate_limit, get_blob_store, require_admin
from markpress.cleaner import sweep_all
from markpress.config import ALLOWED_IMAGE_TYPES, CACHE_MAX_AGE_SECONDS, MAX_FILE_SIZE, STORAGE_BUCKET
from markpress.core.metrics import metrics
from markpress.db import ensure_connection, get_session
from markpress.models import UploadedFile
from markpress.services.stats import fetch_content_totals, fetch_storage_totals
from markpress.services.uploads import abandon_draft, remove_upload, save_upload, start_draft
from markpress.storage import BlobStoreError, LocalBlobStore

router = APIRouter()

logger = logging.getLogger("markpress")

MAX_FILE_SIZE_MB = MAX_FILE_SIZE / (1024 * 1024)


def _human_bytes(value: int) -> str:
    units = ["B", "KB", "MB", "GB", "TB"]
    size = float(max(value, 0))
    for unit in units:
        if size < 1024 or unit == units[-1]:
            formatted = f"{size:.1f}".rstrip("0").rstrip(".")
            return f"{formatted or '0'} {unit}"
        size /= 1024
    return "0 B"


def upload_payload(record: UploadedFile, store: LocalBlobStore) -> dict:
    return {
        "id": record.id,
        "name": record.name,
        "url": store.public_url(record.path),
        "path": record.path,
        "size": record.size,
        "type": record.content_type,
        "uploaded_at": record.uploaded_at,
        "is_temporary": record.is_temporary,
    }


@router.get("/api/health")
def health_check():
    return {"status": "ok", "database": "ok" if ensure_connection() else "unreachable"}


@router.post("/api/drafts", status_code=201, dependencies=[Depends(require_admin)])
def create_draft(session: Session = Depends(get_session)):
    draft = start_draft(session)
    return {"draft_id": draft.id, "created_at": draft.created_at}


@router.delete("/api/drafts/{draft_id}", dependencies=[Depends(require_admin)])
def delete_draft(
    draft_id: str,
    session: Session = Depends(get_session),
    store: LocalBlobStore = Depends(get_blob_store),
):
    deleted = abandon_draft(session, store, draft_id)
    metrics.record_sweep(deleted)
    return {"status": "abandoned", "draft_id": draft_id, "deleted": deleted}


@router.post("/api/uploads", dependencies=[Depends(require_admin), Depends(enforce_rate_limit)])
async def upload(
    file: UploadFile = File(...),
    draft_id: Optional[str] = None,
    session: Session = Depends(get_session),
    store: LocalBlobStore = Depends(get_blob_store),
):
    if not file.filename:
        raise HTTPException(status_code=400, detail="Missing filename")
    content_type = file.content_type or "application/octet-stream"
    if content_type not in ALLOWED_IMAGE_TYPES:
        logger.warning("event=upload_rejected reason=content_type filename=%s content_type=%s", file.filename, content_type)
        raise HTTPException(status_code=415, detail=f"Unsupported file type: {content_type}")

    data = await file.read()
    size_bytes = len(data)
    if size_bytes > MAX_FILE_SIZE:
        logger.warning(
            "event=upload_rejected reason=max_size filename=%s size_bytes=%s limit_bytes=%s",
            file.filename,
            size_bytes,
            MAX_FILE_SIZE,
        )
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum allowed size is {MAX_FILE_SIZE_MB:.1f} MB.",
        )

    record = save_upload(session, store, data, file.filename, content_type, draft_id)
    metrics.record_upload(size_bytes)
    logger.info(
        "event=upload_success file_id=%s path=%s size_bytes=%s content_type=%s",
        record.id,
        record.path,
        size_bytes,
        content_type,
    )
    return upload_payload(record, store)


@router.delete("/api/uploads/{file_id}", dependencies=[Depends(require_admin)])
def delete_upload(
    file_id: str,
    session: Session = Depends(get_session),
    store: LocalBlobStore = Depends(get_blob_store),
):
    record = remove_upload(session, store, file_id)
    return {"status": "deleted", "file_id": file_id, "path": record.path}


@router.get("/storage/v1/object/public/{bucket}/{path:path}")
def serve_object(bucket: str, path: str, store: LocalBlobStore = Depends(get_blob_store)):
    if bucket != (store.bucket or STORAGE_BUCKET):
        raise HTTPException(status_code=404, detail="Not found")
    try:
        target = store.open(path)
    except BlobStoreError:
        raise HTTPException(status_code=404, detail="Not found")

    metrics.record_download()
    response = FileResponse(target)
    response.headers["Cache-Control"] = f"public, max-age={CACHE_MAX_AGE_SECONDS}"
    return response


@router.get("/api/admin/summary", dependencies=[Depends(require_admin)])
def admin_summary(session: Session = Depends(get_session)):
    totals = fetch_storage_totals(session)
    return {
        **fetch_content_totals(session),
        **metrics.snapshot(),
        "files": totals["total_files"],
        "temp_files": totals["temp_files"],
        "storage_bytes": totals["total_bytes"],
        "storage_human": _human_bytes(totals["total_bytes"]),
    }


@router.get("/api/admin/uploads", dependencies=[Depends(require_admin)])
def admin_uploads(
    session: Session = Depends(get_session),
    store: LocalBlobStore = Depends(get_blob_store),
):
    records = session.exec(select(UploadedFile).order_by(UploadedFile.uploaded_at.desc()).limit(200)).all()
    return {"files": [upload_payload(r, store) for r in records]}


@router.delete("/api/admin/temp", dependencies=[Depends(require_admin)])
def admin_sweep_temp(
    session: Session = Depends(get_session),
    store: LocalBlobStore = Depends(get_blob_store),
):
    deleted = sweep_all(store, session.get_bind())
    metrics.record_sweep(deleted)
    return {"status": "swept", "count": deleted}


@router.get("/metrics", dependencies=[Depends(enforce_rate_limit)])
def metrics_snapshot(session: Session = Depends(get_session)):
    totals = fetch_storage_totals(session)
    payload = {**metrics.snapshot(), "storage_bytes": totals["total_bytes"]}
    response = JSONResponse(payload)
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
    return response
