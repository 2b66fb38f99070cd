"""Store interfaces (repository pattern).

The social layer never owns its storage. Both stores are external and are
reached only through these two narrow contracts, so they stay swappable: the
in-memory implementations in ``repos.memory`` back the tests and the demo app.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

Document = dict[str, Any]

OPERATORS = frozenset({"==", "!=", "<", "<=", ">", ">=", "in", "array_contains"})


class StoreUnavailableError(Exception):
    """The backing store could not be reached."""


class StoreTimeoutError(StoreUnavailableError):
    """The backing store did not answer within the caller's timeout."""


class DocumentNotFoundError(KeyError):
    """An update targeted a document that does not exist."""


@dataclass(frozen=True)
class Filter:
    """One query predicate: ``field op value``."""

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in OPERATORS:
            raise ValueError(f"Unsupported operator: {self.op}")


def where(field: str, op: str, value: Any) -> Filter:
    return Filter(field=field, op=op, value=value)


class DocumentStore(ABC):
    """Create/read/update of records keyed by collection + id, plus queries.

    Every call takes an optional ``timeout`` in seconds; implementations raise
    ``StoreTimeoutError`` when it is exceeded and ``StoreUnavailableError`` for
    any other failure to reach the store. No multi-document atomicity.
    """

    @abstractmethod
    def get(self, collection: str, doc_id: str, timeout: float | None = None) -> Document | None:
        """Return a copy of the document (with its ``id``), or None."""
        ...

    @abstractmethod
    def set(
        self,
        collection: str,
        doc_id: str,
        data: Document,
        merge: bool = False,
        timeout: float | None = None,
    ) -> None:
        """Create or overwrite a document under a caller-chosen id."""
        ...

    @abstractmethod
    def add(self, collection: str, data: Document, timeout: float | None = None) -> str:
        """Create a document under a generated id and return the id."""
        ...

    @abstractmethod
    def update(
        self,
        collection: str,
        doc_id: str,
        fields: Document,
        timeout: float | None = None,
    ) -> None:
        """Merge fields into an existing document.

        Raises:
            DocumentNotFoundError: If the document does not exist.
        """
        ...

    @abstractmethod
    def delete(self, collection: str, doc_id: str, timeout: float | None = None) -> None:
        ...

    @abstractmethod
    def query(
        self,
        collection: str,
        filters: tuple[Filter, ...] | list[Filter] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        timeout: float | None = None,
    ) -> list[Document]:
        """Return matching documents (each with its ``id``)."""
        ...


class BroadcastStore(ABC):
    """Small keyed records with low-latency fan-out; no durability."""

    @abstractmethod
    def set(self, path: str, value: Document) -> None:
        ...

    @abstractmethod
    def remove(self, path: str) -> None:
        ...

    @abstractmethod
    def children(self, path: str) -> dict[str, Document]:
        """Return the records directly under ``path``, keyed by child name."""
        ...

    @abstractmethod
    def subscribe(
        self, path: str, callback: Callable[[dict[str, Document]], None]
    ) -> Callable[[], None]:
        """Call ``callback`` with the children of ``path`` on every change.

        The callback also fires once immediately with the current snapshot.
        Returns an unsubscribe function.
        """
        ...
