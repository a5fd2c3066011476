"""Per-email cooldown for password-reset requests.

One row per email holds the start of the current window and how many
requests it has seen. Every change is a single conditional UPDATE (or the
first INSERT, guarded by the primary key), so two concurrent requests can
never both slip past the limit.
"""
import logging
import math
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from db_sql import commit
from Models.auth_models import ResetCooldown
from utils.date_utils import utcnow
from utils.errors import RateLimited

logger = logging.getLogger(__name__)

FORGOT_MAX_REQUESTS = int(os.getenv("FORGOT_MAX_REQUESTS", "2"))
FORGOT_WINDOW_SECONDS = int(os.getenv("FORGOT_WINDOW_SECONDS", str(2 * 60 * 60)))


@dataclass(frozen=True)
class CooldownStatus:
    is_blocked: bool
    remaining_seconds: int


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _status(window_started_at: datetime, count: int, now: datetime) -> CooldownStatus:
    window_end = window_started_at + timedelta(seconds=FORGOT_WINDOW_SECONDS)
    if now >= window_end or count < FORGOT_MAX_REQUESTS:
        return CooldownStatus(False, 0)
    return CooldownStatus(True, max(1, math.ceil((window_end - now).total_seconds())))


def check_cooldown(db: DBSession, email: str, now: Optional[datetime] = None) -> CooldownStatus:
    """Read-only view of the cooldown for `email`."""
    now = now or utcnow()
    row = db.execute(
        select(ResetCooldown.window_started_at, ResetCooldown.request_count)
        .where(ResetCooldown.email == normalize_email(email))
    ).first()
    if row is None:
        return CooldownStatus(False, 0)
    return _status(row.window_started_at, row.request_count, now)


def register_request(db: DBSession, email: str, now: Optional[datetime] = None) -> None:
    """Count one reset request for `email` or raise RateLimited."""
    key = normalize_email(email)
    now = now or utcnow()
    cutoff = now - timedelta(seconds=FORGOT_WINDOW_SECONDS)

    for _ in range(2):
        # inside a live window and under the limit
        res = db.execute(
            update(ResetCooldown)
            .where(ResetCooldown.email == key,
                   ResetCooldown.window_started_at > cutoff,
                   ResetCooldown.request_count < FORGOT_MAX_REQUESTS)
            .values(request_count=ResetCooldown.request_count + 1)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 1:
            commit(db)
            return

        # previous window has elapsed: start a new one
        res = db.execute(
            update(ResetCooldown)
            .where(ResetCooldown.email == key, ResetCooldown.window_started_at <= cutoff)
            .values(window_started_at=now, request_count=1)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 1:
            commit(db)
            return

        exists = db.execute(select(ResetCooldown.email).where(ResetCooldown.email == key)).first()
        if exists is not None:
            break
        db.add(ResetCooldown(email=key, window_started_at=now, request_count=1))
        try:
            commit(db)
            return
        except IntegrityError:
            # a concurrent first request created the row; evaluate again
            continue

    status = check_cooldown(db, key, now)
    logger.warning("password reset cooldown active, %ss remaining", status.remaining_seconds)
    raise RateLimited(
        "Reset link limit reached for this email. Please try again later.",
        code="ResetCooldown",
        remaining_seconds=status.remaining_seconds,
    )
