"""
Human-readable request IDs: ``TCRS-<yyyy>-<nnnnnn>``.

Serials come from the ``request_serials`` counter row of the current year and
are allocated inside the caller's transaction, so two requests created
concurrently cannot receive the same ID. The first time a year is seen the
counter is seeded from the highest serial already stored for it.
"""
from __future__ import annotations
import logging
import re
import time
from datetime import datetime
from typing import Callable, Optional

from fastapi import Request
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tcrs_approval.models.request import ApprovalRequest, RequestSerial

logger = logging.getLogger(__name__)

PREFIX = "TCRS"
MAX_SERIAL = 999_999
REQUEST_ID_RE = re.compile(r"^TCRS-(\d{4})-(\d{6})$")


def format_request_id(year: int, serial: int) -> str:
    return f"{PREFIX}-{year:04d}-{serial:06d}"


def parse_request_id(request_id: str) -> Optional[tuple[int, int]]:
    m = REQUEST_ID_RE.match(request_id or "")
    if not m:
        return None
    return int(m.group(1)), int(m.group(2))


class RequestIdGenerator:
    def __init__(self, clock: Callable[[], datetime] = datetime.utcnow):
        self._clock = clock

    def next_id(self, db: Session) -> str:
        year = self._clock().year
        try:
            with db.begin_nested():
                serial = self._allocate(db, year)
        except SQLAlchemyError as e:
            # Known race window: the fallback is not guaranteed unique.
            logger.warning("request serial allocation failed for %s, using timestamp id: %s", year, e)
            return self.fallback_id(year)
        if serial > MAX_SERIAL:
            raise RuntimeError(f"request serials exhausted for {year}")
        return format_request_id(year, serial)

    def fallback_id(self, year: int) -> str:
        return format_request_id(year, (time.time_ns() // 1_000_000) % (MAX_SERIAL + 1))

    def _allocate(self, db: Session, year: int) -> int:
        if not self._bump(db, year):
            seed = self._highest_existing(db, year)
            try:
                with db.begin_nested():
                    db.add(RequestSerial(year=year, last_serial=seed + 1))
            except IntegrityError:
                # another worker seeded the year first
                if not self._bump(db, year):
                    raise
        return db.query(RequestSerial.last_serial).filter(RequestSerial.year == year).scalar()

    @staticmethod
    def _bump(db: Session, year: int) -> bool:
        res = db.execute(
            update(RequestSerial)
            .where(RequestSerial.year == year)
            .values(last_serial=RequestSerial.last_serial + 1)
            .execution_options(synchronize_session=False)
        )
        return bool(res.rowcount)

    @staticmethod
    def _highest_existing(db: Session, year: int) -> int:
        # zero padding makes the lexical max the numeric max
        top = (
            db.query(func.max(ApprovalRequest.request_id))
            .filter(ApprovalRequest.request_id.like(f"{PREFIX}-{year:04d}-%"))
            .scalar()
        )
        parsed = parse_request_id(top) if top else None
        return parsed[1] if parsed else 0


def get_request_id_generator(request: Request) -> RequestIdGenerator:
    return request.app.state.request_ids
