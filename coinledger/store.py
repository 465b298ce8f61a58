"""
In-memory document store with optimistic transactions.

Documents are plain dicts grouped into named collections. A transaction
records the version of every document it reads and the result of every field
query it runs; writes are buffered and only applied on commit, under the
store lock, after checking that none of those reads went stale. A stale read
raises TransactionConflictError and nothing is written.
"""

import copy
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional
from uuid import uuid4


class TransactionConflictError(Exception):
    pass


class InMemoryDocumentStore:
    def __init__(self):
        self._collections: dict[str, dict[str, dict]] = {}
        self._versions: dict[tuple[str, str], int] = {}
        self._lock = threading.Lock()

    @staticmethod
    def new_id() -> str:
        return uuid4().hex

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        with self._lock:
            doc, _ = self._read(collection, doc_id)
        return doc

    def find(self, collection: str, field: str, value: Any) -> list[dict]:
        with self._lock:
            return [doc for _, doc, _ in self._match(collection, field, value)]

    @contextmanager
    def transaction(self) -> Iterator["StoreTransaction"]:
        txn = StoreTransaction(self)
        yield txn
        self._commit(txn)

    def _read(self, collection: str, doc_id: str) -> tuple[Optional[dict], int]:
        doc = self._collections.get(collection, {}).get(doc_id)
        version = self._versions.get((collection, doc_id), 0)
        return (copy.deepcopy(doc) if doc is not None else None), version

    def _match(self, collection: str, field: str, value: Any) -> list[tuple[str, dict, int]]:
        return [
            (doc_id, copy.deepcopy(doc), self._versions.get((collection, doc_id), 0))
            for doc_id, doc in self._collections.get(collection, {}).items()
            if doc.get(field) == value
        ]

    def _commit(self, txn: "StoreTransaction") -> None:
        if not txn._writes:
            return
        with self._lock:
            for key, version in txn._reads.items():
                if self._versions.get(key, 0) != version:
                    raise TransactionConflictError(f"Document {key[0]}/{key[1]} changed during transaction")
            for (collection, field, value), doc_ids in txn._queries.items():
                current = frozenset(doc_id for doc_id, _, _ in self._match(collection, field, value))
                if current != doc_ids:
                    raise TransactionConflictError(f"Query {collection}.{field} changed during transaction")
            for (collection, doc_id), data in txn._writes.items():
                self._collections.setdefault(collection, {})[doc_id] = data
                self._versions[(collection, doc_id)] = self._versions.get((collection, doc_id), 0) + 1


class StoreTransaction:
    def __init__(self, store: InMemoryDocumentStore):
        self._store = store
        self._reads: dict[tuple[str, str], int] = {}
        self._queries: dict[tuple[str, str, Any], frozenset[str]] = {}
        self._writes: dict[tuple[str, str], dict] = {}

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        key = (collection, doc_id)
        if key in self._writes:
            return copy.deepcopy(self._writes[key])
        with self._store._lock:
            doc, version = self._store._read(collection, doc_id)
        self._reads.setdefault(key, version)
        return doc

    def find(self, collection: str, field: str, value: Any) -> list[dict]:
        with self._store._lock:
            matches = self._store._match(collection, field, value)
        self._queries.setdefault((collection, field, value), frozenset(doc_id for doc_id, _, _ in matches))

        results: dict[str, dict] = {}
        for doc_id, doc, version in matches:
            self._reads.setdefault((collection, doc_id), version)
            results[doc_id] = doc

        # Read-your-writes: pending writes override what the store holds
        for (written_collection, doc_id), data in self._writes.items():
            if written_collection != collection:
                continue
            if data.get(field) == value:
                results[doc_id] = copy.deepcopy(data)
            else:
                results.pop(doc_id, None)
        return list(results.values())

    def find_one(self, collection: str, field: str, value: Any) -> Optional[dict]:
        results = self.find(collection, field, value)
        return results[0] if results else None

    def set(self, collection: str, doc_id: str, data: dict) -> None:
        self._writes[(collection, doc_id)] = copy.deepcopy(data)

    def update(self, collection: str, doc_id: str, fields: dict) -> dict:
        current = self.get(collection, doc_id)
        if current is None:
            raise KeyError(f"{collection}/{doc_id}")
        current.update(copy.deepcopy(fields))
        self._writes[(collection, doc_id)] = current
        return copy.deepcopy(current)
