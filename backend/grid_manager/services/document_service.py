# Overview: Allocation of human-readable order numbers.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


DOC_TYPE_SALE = "SALE"
DOC_TYPE_PURCHASE = "PURCHASE"

PREFIXES = {
    DOC_TYPE_SALE: "VTA",
    DOC_TYPE_PURCHASE: "CPR",
}


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def format_document_number(prefix: str, number: int, pad: int = 6) -> str:
    return f"{prefix}-{str(number).zfill(pad)}"


def next_document_number(*, org_id: int, document_type: str, pad: int = 6) -> str:
    """
    Atomically allocate the next number for an org/document type.

    Runs inside the caller's transaction: the UPDATE holds the sequence row
    until the caller commits, so two creations never share a number.
    """
    if not org_id:
        raise DocumentSequenceError("org_id is required")
    prefix = PREFIXES.get(document_type)
    if not prefix:
        raise DocumentSequenceError(f"Unknown document type: {document_type}")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.org_id == org_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(org_id=org_id, document_type=document_type)
            .scalar()
        )
        return format_document_number(prefix, current - 1, pad)

    seq = DocumentSequence(org_id=org_id, document_type=document_type, next_number=2)
    try:
        with db.session.begin_nested():
            db.session.add(seq)
    except IntegrityError:
        # Another transaction created the row first; take the next slot from it.
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise DocumentSequenceError("Could not allocate document number")
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(org_id=org_id, document_type=document_type)
            .scalar()
        )
        return format_document_number(prefix, current - 1, pad)
    return format_document_number(prefix, 1, pad)
