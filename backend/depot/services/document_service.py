# Overview: Atomic human-readable document numbering (loads, purchases, free bills, stock documents).

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow


# document_type -> (prefix, includes year)
DOCUMENT_FORMATS = {
    "LOAD": ("LOAD", True),
    "PURCHASE": ("PO", False),
    "FREE_BILL": ("FB", True),
    "ORDER": ("ORD", False),
    "INVOICE": ("INV", False),
    "DAMAGE": ("DMG", False),
    "ADJUSTMENT": ("ADJ", False),
    "TRANSFER": ("TRF", False),
    "TRANSACTION": ("TXN", False),
    "SUPPLIER_PAYMENT": ("SP", False),
}


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _allocate(business_id: int, document_type: str) -> int:
    """
    Reserve the next raw sequence value (1, 2, 3 ...) for (business, type).

    Runs inside the caller's transaction and never commits. A concurrent
    first insert of the same sequence row surfaces as StaleDataError so the
    caller's run_atomic retries the whole unit of work.
    """
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.business_id == business_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(business_id=business_id, document_type=document_type)
            .scalar()
        )
        return current - 1

    seq = DocumentSequence(business_id=business_id, document_type=document_type, next_number=2)
    db.session.add(seq)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise StaleDataError(f"document sequence {document_type} created concurrently") from exc
    return 1


def next_document_number(
    *,
    business_id: int | None,
    document_type: str,
    base: int = 0,
    year: int | None = None,
) -> str:
    """
    Allocate the next document number for a business/type.

    Examples: LOAD-2026-1001, PO-1001, FB-2026-1001, TXN-1003.
    base is added to the raw sequence value (LOAD_NUMBER_BASE /
    DOCUMENT_NUMBER_BASE). Global documents use business_id 0.
    Year-prefixed formats keep one sequence per year, so LOAD-2027-*
    starts again at base + 1.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if document_type not in DOCUMENT_FORMATS:
        raise DocumentSequenceError(f"Unknown document type {document_type}")

    prefix, with_year = DOCUMENT_FORMATS[document_type]
    if not with_year:
        return f"{prefix}-{base + _allocate(business_id or 0, document_type)}"

    year = year or utcnow().year
    n = base + _allocate(business_id or 0, f"{document_type}-{year}")
    return f"{prefix}-{year}-{n}"
