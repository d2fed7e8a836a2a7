# Report moderation state machine and the admin access audit trail.
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import Request
from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger("vendra.moderation")

# Allowed forward moves; resolved and dismissed are terminal
REPORT_TRANSITIONS: Dict[str, frozenset] = {
    "pending": frozenset({"reviewing", "dismissed"}),
    "reviewing": frozenset({"resolved", "dismissed"}),
    "resolved": frozenset(),
    "dismissed": frozenset(),
}
TERMINAL_STATUSES = frozenset({"resolved", "dismissed"})
OPEN_STATUSES = ("pending", "reviewing")


class ReportClosed(Exception):
    """Update attempted on a resolved or dismissed report."""


class InvalidTransition(Exception):
    pass


class StaleVersion(Exception):
    """The caller's expected_version no longer matches the stored row."""

    def __init__(self, current_version: int) -> None:
        super().__init__(f"Report was modified (current version {current_version})")
        self.current_version = current_version


class NothingToUpdate(Exception):
    pass


def can_transition(current: str, target: str) -> bool:
    return target in REPORT_TRANSITIONS.get(current, frozenset())


def apply_report_update(
    report: models.Report,
    admin_id: int,
    status: Optional[str] = None,
    resolution_notes: Optional[str] = None,
    assign_to_me: bool = False,
    expected_version: Optional[int] = None,
) -> Dict[str, object]:
    """
    Validate and apply an admin update to a report in memory; returns the changes.

    - Terminal reports never change again (ReportClosed).
    - Setting the current status again is allowed (notes-only update).
    - assign_to_me takes ownership and moves pending -> reviewing when no status is given.
    - expected_version, when supplied, must equal the stored version (StaleVersion).
    The caller commits.
    """
    if report.status in TERMINAL_STATUSES:
        raise ReportClosed(f"Report is already {report.status}")
    if expected_version is not None and expected_version != report.version:
        raise StaleVersion(report.version)

    changes: Dict[str, object] = {}
    target = status
    if assign_to_me:
        changes["assigned_admin_id"] = admin_id
        if target is None and report.status == "pending":
            target = "reviewing"

    if target is not None and target != report.status:
        if not can_transition(report.status, target):
            raise InvalidTransition(f"Cannot move report from {report.status} to {target}")
        changes["status"] = target
        if target in TERMINAL_STATUSES:
            changes["resolved_at"] = datetime.now(timezone.utc)

    if resolution_notes is not None:
        changes["resolution_notes"] = resolution_notes

    if not changes:
        raise NothingToUpdate("No updates provided")

    for key, value in changes.items():
        setattr(report, key, value)
    report.version = (report.version or 1) + 1
    return changes


def access_type_for(status: Optional[str]) -> str:
    if status == "resolved":
        return "resolve_report"
    if status == "dismissed":
        return "dismiss_report"
    return "update_report"


def report_counts(db: Session) -> Dict[str, int]:
    rows = db.query(models.Report.status, func.count(models.Report.id)).group_by(models.Report.status).all()
    by_status = {s: n for s, n in rows}
    counts = {f"{s}_count": by_status.get(s, 0) for s in REPORT_TRANSITIONS}
    counts["total_count"] = sum(by_status.values())
    return counts


def open_report_for_pair(db: Session, reporter_id: int, reported_user_id: int) -> Optional[models.Report]:
    return (
        db.query(models.Report)
        .filter(
            models.Report.reporter_id == reporter_id,
            models.Report.reported_user_id == reported_user_id,
            models.Report.status.in_(OPEN_STATUSES),
        )
        .first()
    )


def log_admin_access(
    db: Session,
    admin: models.User,
    access_type: str,
    request: Optional[Request] = None,
    user_id: Optional[int] = None,
    report_id: Optional[int] = None,
    reason: Optional[str] = None,
) -> None:
    """Stage an audit row in the current transaction; the caller commits."""
    ip = None
    agent = None
    if request is not None:
        ip = request.headers.get("x-forwarded-for") or (request.client.host if request.client else None)
        agent = request.headers.get("user-agent")
    db.add(
        models.AdminAccessLog(
            admin_id=admin.id,
            user_id=user_id,
            report_id=report_id,
            access_type=access_type,
            access_reason=reason,
            ip_address=ip,
            user_agent=agent,
        )
    )
