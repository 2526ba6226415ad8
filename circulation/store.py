"""Transactional document-store contract shared by the SQLite and in-memory stores.

A store holds three collections of flat documents keyed by an opaque string id.
All reads and writes that must be atomic go through ``store.transaction()``,
which commits when the block exits cleanly and discards every write when it
raises. A store that cannot guarantee isolation for a transaction raises
:class:`~circulation.exceptions.TransactionConflictError` without applying any
write.
"""

import uuid
from typing import Any, ContextManager, Dict, Iterable, List, Optional, Protocol

COLLECTIONS: Dict[str, tuple] = {
    "books": (
        "id", "title", "author", "category", "isbn",
        "total_stock", "available_stock", "damaged_stock",
        "image_url", "arrival_date", "created_at",
    ),
    "borrows": (
        "id", "book_id", "book_title", "book_isbn", "borrower_name", "qty",
        "borrow_date", "due_date", "return_date", "status",
    ),
    "categories": ("id", "name", "created_at"),
}

# Singular names used in NotFoundError messages
KINDS = {"books": "book", "borrows": "borrow", "categories": "category"}


def new_id() -> str:
    return uuid.uuid4().hex


def check_fields(collection: str, fields: Iterable[str]) -> None:
    """Reject unknown collections and columns before they reach a query string."""
    columns = COLLECTIONS.get(collection)
    if columns is None:
        raise ValueError(f"Unknown collection: {collection}")
    unknown = [name for name in fields if name not in columns]
    if unknown:
        raise ValueError(f"Unknown field(s) for {collection}: {', '.join(unknown)}")


def matches(doc: Dict[str, Any], where: Optional[Dict[str, Any]]) -> bool:
    if not where:
        return True
    return all(doc.get(name) == value for name, value in where.items())


class Transaction(Protocol):
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]: ...

    def query(self, collection: str, where: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]: ...

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None: ...

    def insert(self, collection: str, data: Dict[str, Any]) -> str: ...

    def delete(self, collection: str, doc_id: str) -> bool: ...


class DocumentStore(Protocol):
    def initialize(self) -> None: ...

    def transaction(self) -> ContextManager[Transaction]: ...

    def find(self, collection: str, where: Optional[Dict[str, Any]] = None,
             order_by: Optional[str] = None, descending: bool = False) -> List[Dict[str, Any]]: ...

    def close(self) -> None: ...
