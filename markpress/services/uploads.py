from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlmodel import Session

from markpress.cleaner import sweep_draft
from markpress.core.exceptions import NotFoundError
from markpress.models import DraftSession, UploadedFile
from markpress.storage import new_upload_path

logger = logging.getLogger("markpress.uploads")


def start_draft(session: Session) -> DraftSession:
    draft = DraftSession(id=uuid.uuid4().hex)
    session.add(draft)
    session.commit()
    session.refresh(draft)
    logger.info("event=draft_started draft_id=%s", draft.id)
    return draft


def abandon_draft(session: Session, store, draft_id: str) -> int:
    draft = session.get(DraftSession, draft_id)
    if draft is None:
        raise NotFoundError("Draft", draft_id)
    deleted = sweep_draft(store, draft_id, session.get_bind())
    session.delete(draft)
    session.commit()
    logger.info("event=draft_abandoned draft_id=%s deleted=%s", draft_id, deleted)
    return deleted


def save_upload(
    session: Session,
    store,
    data: bytes,
    original_name: str,
    content_type: str,
    draft_id: Optional[str] = None,
) -> UploadedFile:
    if draft_id and session.get(DraftSession, draft_id) is None:
        raise NotFoundError("Draft", draft_id)

    file_id, path = new_upload_path(original_name, draft_id)
    size = store.put(path, data)
    record = UploadedFile(
        id=file_id,
        name=original_name,
        path=path,
        content_type=content_type,
        size=size,
        draft_id=draft_id,
    )
    session.add(record)
    session.commit()
    session.refresh(record)
    return record


def remove_upload(session: Session, store, file_id: str) -> UploadedFile:
    record = session.get(UploadedFile, file_id)
    if record is None:
        raise NotFoundError("Upload", file_id)
    store.delete([record.path])
    session.delete(record)
    session.commit()
    logger.info("event=upload_removed file_id=%s path=%s", file_id, record.path)
    return record
