"""In-memory implementations of the external stores."""

from __future__ import annotations

import copy
import uuid
from collections import defaultdict
from typing import Any, Callable

from eventsocial.repos.interfaces import (
    BroadcastStore,
    Document,
    DocumentNotFoundError,
    DocumentStore,
    Filter,
    StoreTimeoutError,
    StoreUnavailableError,
)

_MISSING = object()


def _matches(doc: Document, flt: Filter) -> bool:
    value = doc.get(flt.field, _MISSING)
    if flt.op == "==":
        return value is not _MISSING and value == flt.value
    if flt.op == "!=":
        # Missing and null fields never match an inequality.
        if value is _MISSING or value is None:
            return False
        return value != flt.value
    if flt.op == "in":
        return value is not _MISSING and value in flt.value
    if flt.op == "array_contains":
        return isinstance(value, (list, tuple)) and flt.value in value
    if value is _MISSING or value is None or flt.value is None:
        return False
    try:
        if flt.op == "<":
            return value < flt.value
        if flt.op == "<=":
            return value <= flt.value
        if flt.op == ">":
            return value > flt.value
        return value >= flt.value
    except TypeError:
        return False


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed document store, keyed by collection then id.

    ``available`` and ``latency`` let tests simulate an outage or a slow store:
    a call whose ``timeout`` is below ``latency`` raises ``StoreTimeoutError``
    without actually sleeping.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Document]] = defaultdict(dict)
        self.available = True
        self.latency = 0.0

    def _check(self, timeout: float | None) -> None:
        if not self.available:
            raise StoreUnavailableError("document store unavailable")
        if timeout is not None and self.latency > timeout:
            raise StoreTimeoutError(f"document store did not answer within {timeout}s")

    def get(self, collection: str, doc_id: str, timeout: float | None = None) -> Document | None:
        self._check(timeout)
        doc = self._collections[collection].get(doc_id)
        if doc is None:
            return None
        return {**copy.deepcopy(doc), "id": doc_id}

    def set(
        self,
        collection: str,
        doc_id: str,
        data: Document,
        merge: bool = False,
        timeout: float | None = None,
    ) -> None:
        self._check(timeout)
        payload = {k: v for k, v in copy.deepcopy(data).items() if k != "id"}
        existing = self._collections[collection].get(doc_id)
        if merge and existing is not None:
            existing.update(payload)
        else:
            self._collections[collection][doc_id] = payload

    def add(self, collection: str, data: Document, timeout: float | None = None) -> str:
        doc_id = data.get("id") or str(uuid.uuid4())
        self.set(collection, doc_id, data, timeout=timeout)
        return doc_id

    def update(
        self,
        collection: str,
        doc_id: str,
        fields: Document,
        timeout: float | None = None,
    ) -> None:
        self._check(timeout)
        existing = self._collections[collection].get(doc_id)
        if existing is None:
            raise DocumentNotFoundError(f"{collection}/{doc_id}")
        existing.update(copy.deepcopy(fields))

    def delete(self, collection: str, doc_id: str, timeout: float | None = None) -> None:
        self._check(timeout)
        self._collections[collection].pop(doc_id, None)

    def query(
        self,
        collection: str,
        filters: tuple[Filter, ...] | list[Filter] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        timeout: float | None = None,
    ) -> list[Document]:
        self._check(timeout)
        results = [
            {**copy.deepcopy(doc), "id": doc_id}
            for doc_id, doc in self._collections[collection].items()
            if all(_matches(doc, f) for f in filters)
        ]
        if order_by is not None:
            # Documents lacking the ordering field are excluded, as in Firestore.
            results = [d for d in results if d.get(order_by) is not None]
            results.sort(key=lambda d: d[order_by], reverse=descending)
        if limit is not None:
            results = results[:limit]
        return results

    def clear(self) -> None:
        self._collections.clear()


class InMemoryBroadcastStore(BroadcastStore):
    """Path-keyed ephemeral records with synchronous fan-out."""

    def __init__(self) -> None:
        self._nodes: dict[str, dict[str, Document]] = defaultdict(dict)
        self._listeners: dict[str, list[Callable[[dict[str, Document]], None]]] = defaultdict(list)
        self.available = True

    @staticmethod
    def _split(path: str) -> tuple[str, str]:
        parent, _, child = path.strip("/").rpartition("/")
        return parent, child

    def _check(self) -> None:
        if not self.available:
            raise StoreUnavailableError("broadcast store unavailable")

    def _notify(self, parent: str) -> None:
        snapshot = self.children(parent)
        for callback in list(self._listeners.get(parent, [])):
            callback(snapshot)

    def set(self, path: str, value: Document) -> None:
        self._check()
        parent, child = self._split(path)
        self._nodes[parent][child] = copy.deepcopy(value)
        self._notify(parent)

    def remove(self, path: str) -> None:
        self._check()
        parent, child = self._split(path)
        if self._nodes[parent].pop(child, None) is not None:
            self._notify(parent)

    def children(self, path: str) -> dict[str, Document]:
        self._check()
        return copy.deepcopy(self._nodes.get(path.strip("/"), {}))

    def subscribe(
        self, path: str, callback: Callable[[dict[str, Document]], None]
    ) -> Callable[[], None]:
        key = path.strip("/")
        self._listeners[key].append(callback)
        callback(self.children(key))

        def unsubscribe() -> None:
            listeners = self._listeners.get(key, [])
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    def clear(self) -> None:
        self._nodes.clear()
        self._listeners.clear()
