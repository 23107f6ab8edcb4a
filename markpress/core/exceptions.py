from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from markpress.cleaner import SweepError
from markpress.promotion import PromotionError
from markpress.storage import BlobStoreError

logger = logging.getLogger("markpress")


class NotFoundError(Exception):
    def __init__(self, resource: str, key) -> None:
        super().__init__(f"{resource} {key} not found")
        self.resource = resource
        self.key = key


class PermissionDeniedError(Exception):
    pass


class PublishError(Exception):
    """Publishing was aborted before the post row was written."""

    def __init__(
        self, message: str, paths: list[str] | None = None, promoted: dict[str, str] | None = None
    ) -> None:
        super().__init__(message)
        self.paths = paths or []
        # temp -> permanent moves that stayed in place despite the abort
        self.promoted = promoted or {}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse({"detail": str(exc)}, status_code=404)

    @app.exception_handler(PermissionDeniedError)
    async def permission_denied_handler(request: Request, exc: PermissionDeniedError):
        return JSONResponse({"detail": str(exc) or "Permission denied"}, status_code=403)

    @app.exception_handler(PromotionError)
    async def promotion_error_handler(request: Request, exc: PromotionError):
        logger.error("event=publish_failed reason=promotion path=%s cause=%s", exc.path, exc.__cause__)
        return JSONResponse(
            {"detail": "Publish failed: image storage could not be finalized", "path": exc.path},
            status_code=502,
        )

    @app.exception_handler(PublishError)
    async def publish_error_handler(request: Request, exc: PublishError):
        logger.error("event=publish_failed reason=%s paths=%s", exc, exc.paths)
        return JSONResponse(
            {"detail": f"Publish failed: {exc}", "paths": exc.paths, "promoted": exc.promoted},
            status_code=502,
        )

    @app.exception_handler(SweepError)
    async def sweep_error_handler(request: Request, exc: SweepError):
        logger.warning("event=sweep_failed error=%s cause=%s", exc, exc.__cause__)
        return JSONResponse({"detail": str(exc)}, status_code=502)

    @app.exception_handler(BlobStoreError)
    async def blob_store_error_handler(request: Request, exc: BlobStoreError):
        logger.error("event=store_error operation=%s path=%s error=%s", exc.operation, exc.path, exc)
        return JSONResponse({"detail": "Storage operation failed"}, status_code=502)
