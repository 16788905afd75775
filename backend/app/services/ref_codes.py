from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.ref_code import RefCode

BILLING_LINE_DOMAIN = "billing_line"
DEFAULT_LINE_TYPE = "service"

BILLING_LINE_CODES: list[tuple[str, str]] = [
    ("service", "Service"),
    ("lab", "Lab"),
    ("medicine", "Medicine"),
    ("procedure", "Procedure"),
    ("stay", "Stay"),
]

# Item types used by the order screens that map onto the billing vocabulary.
LINE_TYPE_ALIASES: dict[str, str] = {
    "lab_test": "lab",
    "accommodation": "stay",
}


def ensure_billing_line_codes(db: Session) -> list[RefCode]:
    existing = {
        row.code: row
        for row in db.scalars(select(RefCode).where(RefCode.domain == BILLING_LINE_DOMAIN))
    }
    created: list[RefCode] = []
    updated = False
    for order, (code, label) in enumerate(BILLING_LINE_CODES):
        row = existing.get(code)
        if row:
            if row.label != label or row.sort_order != order:
                row.label = label
                row.sort_order = order
                updated = True
            continue
        row = RefCode(domain=BILLING_LINE_DOMAIN, code=code, label=label, sort_order=order)
        db.add(row)
        created.append(row)
    if created or updated:
        db.commit()
    return list(
        db.scalars(
            select(RefCode)
            .where(RefCode.domain == BILLING_LINE_DOMAIN)
            .order_by(RefCode.sort_order)
        )
    )


def billing_line_type_ids(db: Session) -> dict[str, int]:
    rows = db.execute(
        select(RefCode.code, RefCode.id).where(
            RefCode.domain == BILLING_LINE_DOMAIN, RefCode.is_active.is_(True)
        )
    )
    ids = {code: ref_id for code, ref_id in rows}
    if DEFAULT_LINE_TYPE not in ids:
        raise RuntimeError(
            "billing_line vocabulary is missing the 'service' code; run ensure_billing_line_codes"
        )
    return ids


def resolve_line_type_id(ids: dict[str, int], category: str | None) -> int:
    code = (category or "").strip().lower()
    code = LINE_TYPE_ALIASES.get(code, code)
    return ids.get(code, ids[DEFAULT_LINE_TYPE])
