from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import delete
from sqlmodel import Session

from markpress.models import UploadedFile
from markpress.storage import TEMP_PREFIX, BlobStoreError, temp_scope

logger = logging.getLogger("markpress.cleaner")


class SweepError(Exception):
    """Temp objects were listed but could not be deleted."""


def _forget_uploads(engine, paths: list[str]) -> None:
    if engine is None or not paths:
        return
    with Session(engine) as session:
        session.execute(delete(UploadedFile).where(UploadedFile.path.in_(paths)))
        session.commit()


def _sweep(store, prefix: str, engine=None, older_than: datetime | None = None) -> int:
    try:
        entries = store.list(prefix)
    except BlobStoreError as exc:
        logger.warning("event=sweep_list_failed prefix=%s error=%s", prefix, exc)
        return 0

    if older_than is not None:
        entries = [e for e in entries if e.modified_at < older_than]
    paths = [e.path for e in entries]
    if not paths:
        return 0

    try:
        store.delete(paths)
    except BlobStoreError as exc:
        raise SweepError(f"Failed to delete temp objects under {prefix}") from exc

    _forget_uploads(engine, paths)
    logger.info("event=sweep_deleted prefix=%s count=%s", prefix, len(paths))
    return len(paths)


def sweep_all(store, engine=None) -> int:
    """Delete every object under ``temp/``, regardless of which draft owns it.

    This covers both undrafted uploads (``temp/image/``) and every draft scope
    (``temp/<draft_id>/``), so uploads of drafts still being edited are lost
    too. Publishing uses ``sweep_draft`` instead; this is the admin-triggered
    global cleanup.
    """
    return _sweep(store, TEMP_PREFIX, engine)


def sweep_draft(store, draft_id: str, engine=None) -> int:
    return _sweep(store, temp_scope(draft_id), engine)


def sweep_expired(store, max_age_hours: int, engine=None) -> int:
    cutoff = datetime.now(timezone.utc) - timedelta(hours=max_age_hours)
    return _sweep(store, TEMP_PREFIX, engine, older_than=cutoff)


def start_cleaner(store, engine, metrics, max_age_hours: int, interval_minutes: int = 60):
    scheduler = BackgroundScheduler()

    def _job():
        try:
            deleted = sweep_expired(store, max_age_hours, engine)
            if deleted:
                metrics.record_sweep(deleted)
        except SweepError as e:
            logger.error("Temp sweep failed: %s (cause: %s)", e, e.__cause__)
        except Exception as e:
            logger.error("Unexpected error in cleanup job: %s", str(e))

    scheduler.add_job(_job, "interval", minutes=interval_minutes)
    scheduler.start()
    return scheduler
