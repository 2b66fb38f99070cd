"""Decode/encode boundary between raw store documents and domain models.

Raw documents are loosely typed; this is the only place they are converted.
A document that fails validation is logged and dropped rather than leaking a
half-populated object into the services.
"""

from __future__ import annotations

from typing import TypeVar

import structlog
from pydantic import ValidationError

from eventsocial.domain.models import Record
from eventsocial.repos.interfaces import Document

logger = structlog.get_logger(__name__)

R = TypeVar("R", bound=Record)


def decode(model: type[R], raw: Document | None) -> R | None:
    if raw is None:
        return None
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        logger.warning(
            "record_rejected",
            model=model.__name__,
            doc_id=raw.get("id"),
            errors=exc.error_count(),
        )
        return None


def decode_all(model: type[R], raws: list[Document]) -> list[R]:
    records = (decode(model, raw) for raw in raws)
    return [r for r in records if r is not None]


def encode(record: Record) -> Document:
    """Serialize to camelCase keys, keeping datetimes as datetimes."""
    return record.model_dump(by_alias=True, exclude_none=False)
