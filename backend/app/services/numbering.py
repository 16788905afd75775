from __future__ import annotations

import logging
import random
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import InstrumentedAttribute, Session

from app.core.settings import settings
from app.models.billing import Bill
from app.models.sales_return import SalesReturn

logger = logging.getLogger("hms_billing.numbering")

SEQUENCE_WIDTH = 4


def date_code(now: datetime) -> str:
    return now.strftime("%y%m")


def format_number(prefix: str, code: str, sequence: int) -> str:
    return f"{prefix}{code}-{sequence:0{SEQUENCE_WIDTH}d}"


def parse_sequence(number: str) -> int | None:
    _, sep, suffix = number.rpartition("-")
    if not sep:
        return None
    try:
        return int(suffix)
    except ValueError:
        return None


def generate_sequential_number(
    db: Session,
    column: InstrumentedAttribute,
    prefix: str,
    *,
    now: datetime | None = None,
) -> str:
    """Next ``{prefix}{YYMM}-{NNNN}`` value for ``column``.

    Reads the greatest existing number for the month and adds one. Nothing is
    reserved, so two callers can receive the same value; the unique index on
    the column decides and the caller retries. When the lookup itself fails
    the number falls back to a random suffix in the same format so billing is
    not blocked.
    """
    now = now or datetime.now()
    code = date_code(now)
    stem = f"{prefix}{code}-"
    # Longest first so 10000 sorts after 9999.
    stmt = (
        select(column)
        .where(column.startswith(stem, autoescape=True))
        .order_by(func.length(column).desc(), column.desc())
        .limit(1)
    )
    try:
        with db.begin_nested():
            latest = db.scalar(stmt)
    except SQLAlchemyError as exc:
        fallback = format_number(prefix, code, random.randint(0, 10**SEQUENCE_WIDTH - 1))
        logger.warning(
            "Sequence lookup for %s failed, falling back to %s: %s", stem, fallback, exc
        )
        return fallback

    sequence = 1
    if latest:
        last = parse_sequence(latest)
        if last is not None:
            sequence = last + 1
    return format_number(prefix, code, sequence)


def generate_bill_number(
    db: Session, *, prefix: str | None = None, now: datetime | None = None
) -> str:
    return generate_sequential_number(
        db, Bill.bill_number, prefix or settings.bill_number_prefix, now=now
    )


def generate_return_number(
    db: Session, *, prefix: str | None = None, now: datetime | None = None
) -> str:
    return generate_sequential_number(
        db, SalesReturn.return_number, prefix or settings.sales_return_prefix, now=now
    )
