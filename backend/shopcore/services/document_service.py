# Overview: Service-layer operations for document numbering; encapsulates sequence allocation.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ValidationError
from ..models import DocumentSequence
from .concurrency import ConcurrentUpdateError

DOCUMENT_TYPE_ORDER = "ORDER"
DOCUMENT_TYPE_PURCHASE_ORDER = "PURCHASE_ORDER"


class DocumentSequenceError(ValidationError):
    """Raised when a document number cannot be allocated from the given inputs."""


def next_document_number(*, document_type: str, prefix: str, pad: int = 6) -> str:
    """
    Atomically allocate the next document number for a type ("ORD-000042").

    The increment is a single UPDATE, so the row write lock serializes
    concurrent allocations. Must be called inside the caller's unit of work
    (wrapped by run_with_retry): the number is only consumed if that unit
    commits, and a lost race on the very first allocation surfaces as
    ConcurrentUpdateError so the whole unit is re-run.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    if not prefix:
        raise DocumentSequenceError("prefix is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        seq = DocumentSequence(document_type=document_type, next_number=2)
        db.session.add(seq)
        try:
            db.session.flush()
        except IntegrityError as exc:
            # Another writer created the sequence row first
            db.session.rollback()
            raise ConcurrentUpdateError(f"sequence {document_type} created concurrently") from exc
        next_num = 1

    return f"{prefix}-{next_num:0{pad}d}"
