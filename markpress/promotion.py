"""Promotion of temp uploads into the permanent namespace.

Each temp path is copied to its permanent location and the temp original is
then deleted. A failed copy only affects that path; a failed delete after a
successful copy leaves a duplicate behind and stops the whole batch.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from markpress.storage import BlobStoreError, is_temp_path, permanent_path_for

logger = logging.getLogger("markpress.promotion")


class Outcome(str, Enum):
    PROMOTED = "promoted"
    SKIPPED = "skipped"
    RECOVERED = "recovered"
    FATAL = "fatal"


@dataclass
class PathOutcome:
    path: str
    outcome: Outcome
    target: Optional[str] = None
    error: Optional[BlobStoreError] = None


@dataclass
class PromotionReport:
    outcomes: list[PathOutcome] = field(default_factory=list)

    @property
    def promoted(self) -> dict[str, str]:
        return {o.path: o.target for o in self.outcomes if o.outcome is Outcome.PROMOTED}

    @property
    def succeeded_paths(self) -> list[str]:
        return [o.path for o in self.outcomes if o.outcome is Outcome.PROMOTED]

    @property
    def failed_paths(self) -> list[str]:
        return [o.path for o in self.outcomes if o.outcome is Outcome.RECOVERED]

    @property
    def skipped_paths(self) -> list[str]:
        return [o.path for o in self.outcomes if o.outcome is Outcome.SKIPPED]

    @property
    def fatal(self) -> Optional[PathOutcome]:
        for o in self.outcomes:
            if o.outcome is Outcome.FATAL:
                return o
        return None


class PromotionError(Exception):
    """A temp original could not be removed after its permanent copy was made."""

    def __init__(self, report: PromotionReport) -> None:
        fatal = report.fatal
        path = fatal.path if fatal else "<unknown>"
        super().__init__(f"Promotion aborted: temp object {path} could not be removed after copy")
        self.report = report
        self.path = path


def _unique(paths: Iterable[str]) -> list[str]:
    seen = set()
    ordered = []
    for path in paths:
        if path not in seen:
            seen.add(path)
            ordered.append(path)
    return ordered


def promote_paths(store, paths: Iterable[str]) -> PromotionReport:
    report = PromotionReport()
    for path in _unique(paths):
        if not is_temp_path(path):
            report.outcomes.append(PathOutcome(path, Outcome.SKIPPED))
            continue

        target = permanent_path_for(path)
        try:
            store.copy(path, target)
        except BlobStoreError as exc:
            logger.warning("event=promotion_copy_failed path=%s target=%s error=%s", path, target, exc)
            report.outcomes.append(PathOutcome(path, Outcome.RECOVERED, target, exc))
            continue

        try:
            store.delete([path])
        except BlobStoreError as exc:
            logger.error("event=promotion_delete_failed path=%s target=%s error=%s", path, target, exc)
            report.outcomes.append(PathOutcome(path, Outcome.FATAL, target, exc))
            return report

        logger.info("event=promotion_success path=%s target=%s", path, target)
        report.outcomes.append(PathOutcome(path, Outcome.PROMOTED, target))
    return report


def promote(store, paths: Iterable[str]) -> PromotionReport:
    """Promote ``paths`` and raise ``PromotionError`` on the fatal outcome."""
    report = promote_paths(store, paths)
    fatal = report.fatal
    if fatal is not None:
        raise PromotionError(report) from fatal.error
    return report


def restore(store, promoted: dict[str, str]) -> dict[str, str]:
    """Move promoted objects back to their temp paths.

    Returns the temp -> permanent entries that could not be moved back; those
    objects stay under ``permanent/``.
    """
    kept = {}
    for path, target in promoted.items():
        try:
            store.copy(target, path)
        except BlobStoreError as exc:
            logger.warning("event=promotion_restore_failed path=%s target=%s error=%s", path, target, exc)
            kept[path] = target
            continue
        try:
            store.delete([target])
        except BlobStoreError as exc:
            # Both copies exist now; the temp one is what the draft references
            logger.warning("event=promotion_restore_cleanup_failed target=%s error=%s", target, exc)
        logger.info("event=promotion_restored path=%s target=%s", path, target)
    return kept
