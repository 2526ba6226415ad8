import copy
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from circulation.exceptions import NotFoundError, TransactionConflictError
from circulation.store import COLLECTIONS, KINDS, check_fields, matches, new_id

logger = logging.getLogger(__name__)

_Key = Tuple[str, str]


class MemoryTransaction:
    """Buffers writes and remembers the version of every document it read."""

    def __init__(self, store: "MemoryStore") -> None:
        self._store = store
        self.read_versions: Dict[_Key, int] = {}
        # Latest view of every document this transaction wrote; None means deleted
        self.pending: Dict[_Key, Optional[Dict[str, Any]]] = {}
        self.writes: List[Tuple[str, str, str, Optional[Dict[str, Any]]]] = []

    def _read(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        key = (collection, doc_id)
        if key in self.pending:
            doc = self.pending[key]
            return copy.deepcopy(doc) if doc is not None else None
        version, doc = self._store._snapshot(collection, doc_id)
        self.read_versions.setdefault(key, version)
        return doc

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        check_fields(collection, ())
        return self._read(collection, doc_id)

    def query(self, collection: str, where: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        check_fields(collection, where or {})
        results = []
        for doc_id in self._store._ids(collection) | {k[1] for k in self.pending if k[0] == collection}:
            doc = self._read(collection, doc_id)
            if doc is not None and matches(doc, where):
                results.append(doc)
        return results

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        check_fields(collection, fields)
        if "id" in fields:
            raise ValueError("Document id cannot be changed.")
        current = self._read(collection, doc_id)
        if current is None:
            raise NotFoundError(KINDS[collection], doc_id)
        current.update(copy.deepcopy(fields))
        self.pending[(collection, doc_id)] = current
        self.writes.append(("update", collection, doc_id, copy.deepcopy(fields)))

    def insert(self, collection: str, data: Dict[str, Any]) -> str:
        doc = copy.deepcopy(dict(data))
        doc_id = doc.pop("id", None) or new_id()
        check_fields(collection, doc)
        doc = {name: doc.get(name) for name in COLLECTIONS[collection] if name != "id"}
        doc["id"] = doc_id
        self.pending[(collection, doc_id)] = doc
        self.writes.append(("insert", collection, doc_id, copy.deepcopy(doc)))
        return doc_id

    def delete(self, collection: str, doc_id: str) -> bool:
        check_fields(collection, ())
        if self._read(collection, doc_id) is None:
            return False
        self.pending[(collection, doc_id)] = None
        self.writes.append(("delete", collection, doc_id, None))
        return True


class MemoryStore:
    """In-process document store with optimistic concurrency control.

    A transaction reads committed snapshots without locking. At commit time the
    version of every document it read is compared with the current version; if
    any changed the whole transaction is discarded and ``TransactionConflictError``
    is raised. Writes are applied only after validation succeeds.
    """

    def __init__(self) -> None:
        self._docs: Dict[str, Dict[str, Tuple[int, Dict[str, Any]]]] = {name: {} for name in COLLECTIONS}
        self._lock = threading.RLock()

    def initialize(self) -> None:
        return None

    def close(self) -> None:
        return None

    def _snapshot(self, collection: str, doc_id: str) -> Tuple[int, Optional[Dict[str, Any]]]:
        with self._lock:
            entry = self._docs[collection].get(doc_id)
            if entry is None:
                return 0, None
            version, doc = entry
            return version, copy.deepcopy(doc)

    def _ids(self, collection: str) -> set:
        with self._lock:
            return set(self._docs[collection])

    @contextmanager
    def transaction(self) -> Iterator[MemoryTransaction]:
        tx = MemoryTransaction(self)
        yield tx
        self._commit(tx)

    def _commit(self, tx: MemoryTransaction) -> None:
        with self._lock:
            for (collection, doc_id), version in tx.read_versions.items():
                entry = self._docs[collection].get(doc_id)
                current = entry[0] if entry else 0
                if current != version:
                    logger.debug(f"Conflict on {collection}/{doc_id}: read v{version}, now v{current}")
                    raise TransactionConflictError("Concurrent modification detected; try again.")
            for op, collection, doc_id, payload in tx.writes:
                docs = self._docs[collection]
                entry = docs.get(doc_id)
                version = entry[0] if entry else 0
                if op == "delete":
                    docs.pop(doc_id, None)
                elif op == "insert":
                    docs[doc_id] = (version + 1, payload)
                else:
                    merged = dict(entry[1])
                    merged.update(payload)
                    docs[doc_id] = (version + 1, merged)

    def find(self, collection: str, where: Optional[Dict[str, Any]] = None,
             order_by: Optional[str] = None, descending: bool = False) -> List[Dict[str, Any]]:
        check_fields(collection, list(where or {}) + ([order_by] if order_by else []))
        with self._lock:
            docs = [copy.deepcopy(doc) for _, doc in self._docs[collection].values() if matches(doc, where)]
        if order_by:
            # None sorts first ascending and last descending, as in SQLite
            docs.sort(key=lambda doc: (doc.get(order_by) is not None,
                                       doc.get(order_by) if doc.get(order_by) is not None else ""),
                      reverse=descending)
        return docs
