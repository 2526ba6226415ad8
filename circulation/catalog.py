"""Catalog management: books, categories and the dashboard counters.

The circulation core only reads books and patches ``available_stock``; this
module owns everything else about them.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List

from circulation.book import Book
from circulation.borrow import OPEN_STATUSES
from circulation.category import Category
from circulation.exceptions import NotFoundError, ValidationError
from circulation.store import DocumentStore
from circulation.utils.dates import to_iso, utc_now
from circulation.utils.validators import ISBNValidator, StockValidator, TextValidator

logger = logging.getLogger(__name__)

EDITABLE_BOOK_FIELDS = (
    "title", "author", "isbn", "category",
    "total_stock", "available_stock", "damaged_stock",
    "image_url", "arrival_date",
)
STOCK_FIELDS = ("total_stock", "available_stock", "damaged_stock")


def _clean_book(book: Book) -> Book:
    book.title = TextValidator.require_text(book.title, "Title")
    book.author = TextValidator.require_text(book.author, "Author")
    book.isbn = ISBNValidator.normalize_isbn(book.isbn)
    book.category = TextValidator.optional_text(book.category)
    StockValidator.validate_counts(book.total_stock, book.available_stock, book.damaged_stock)
    return book


def _book_fields(book: Book) -> Dict[str, Any]:
    fields = book.to_dict()
    fields.pop("id")
    return fields


# ------------------------- Books ------------------------- #
def add_book(store: DocumentStore, book: Book, *, clock: Callable[[], datetime] = utc_now) -> Book:
    """Validate and insert a book. Returns it with its new id and ``created_at``.

    A new book has no borrows yet, so every undamaged copy is on the shelf:
    ``available_stock`` is set to ``total_stock - damaged_stock`` whatever the
    caller passed.
    """
    StockValidator.require_count(book.total_stock, "total_stock")
    StockValidator.require_count(book.damaged_stock, "damaged_stock")
    if book.damaged_stock > book.total_stock:
        raise ValidationError("damaged_stock cannot exceed total_stock.")
    book.available_stock = book.total_stock - book.damaged_stock
    _clean_book(book)
    book.created_at = book.created_at or to_iso(clock())
    with store.transaction() as tx:
        book.id = tx.insert("books", _book_fields(book))
    logger.info(f"Added book '{book.title}' ({book.id}) with {book.total_stock} copies")
    return book


def get_book(store: DocumentStore, book_id: str) -> Book:
    docs = store.find("books", {"id": book_id})
    if not docs:
        raise NotFoundError("book", book_id)
    return Book.from_dict(docs[0])


def list_books(store: DocumentStore) -> List[Book]:
    """Every book, most recently added first."""
    return [Book.from_dict(doc) for doc in store.find("books", order_by="created_at", descending=True)]


def search_books(store: DocumentStore, query: str) -> List[Book]:
    """Case-insensitive substring search over title, author, ISBN and category."""
    needle = (query or "").strip().lower()
    books = list_books(store)
    if not needle:
        return books
    return [
        b for b in books
        if needle in b.title.lower() or needle in b.author.lower()
        or needle in b.isbn.lower() or needle in b.category.lower()
    ]


def update_book(store: DocumentStore, book_id: str, **fields: Any) -> Book:
    """Patch a book. The merged record must still satisfy the stock bounds."""
    unknown = sorted(set(fields) - set(EDITABLE_BOOK_FIELDS))
    if unknown:
        raise ValidationError(f"Cannot update field(s): {', '.join(unknown)}")
    if not fields:
        raise ValidationError("Nothing to update.")
    for name in STOCK_FIELDS:
        if name in fields:
            StockValidator.require_count(fields[name], name)
    for name in ("title", "author"):
        if name in fields and not isinstance(fields[name], str):
            raise ValidationError(f"{name.capitalize()} is required.")
    for name in ("isbn", "category"):
        if name in fields and not isinstance(fields[name], str):
            raise ValidationError(f"{name} must be a string.")
    for name in ("image_url", "arrival_date"):
        if fields.get(name) is not None and not isinstance(fields[name], str):
            raise ValidationError(f"{name} must be a string or null.")

    with store.transaction() as tx:
        current = tx.get("books", book_id)
        if current is None:
            raise NotFoundError("book", book_id)
        book = _clean_book(Book.from_dict({**current, **fields}))
        changes = {name: value for name, value in _book_fields(book).items() if current.get(name) != value}
        if changes:
            tx.update("books", book_id, changes)
    return book


def delete_book(store: DocumentStore, book_id: str) -> None:
    """Delete a book. Its borrow records keep their snapshot and become unreturnable."""
    with store.transaction() as tx:
        if not tx.delete("books", book_id):
            raise NotFoundError("book", book_id)
    logger.info(f"Deleted book {book_id}")


# ------------------------- Categories ------------------------- #
def add_category(store: DocumentStore, name: str, *, clock: Callable[[], datetime] = utc_now) -> Category:
    category = Category(name=TextValidator.require_text(name, "Category name"), created_at=to_iso(clock()))
    with store.transaction() as tx:
        category.id = tx.insert("categories", {"name": category.name, "created_at": category.created_at})
    return category


def list_categories(store: DocumentStore) -> List[Category]:
    return [Category.from_dict(doc) for doc in store.find("categories", order_by="name")]


def delete_category(store: DocumentStore, category_id: str) -> None:
    with store.transaction() as tx:
        if not tx.delete("categories", category_id):
            raise NotFoundError("category", category_id)


# ------------------------- Statistics ------------------------- #
def get_statistics(store: DocumentStore, low_stock_threshold: int = 5) -> Dict[str, int]:
    """Dashboard counters.

    ``total_stock`` is the number of copies on the shelf right now (the sum of
    ``available_stock``), not the number owned.
    """
    books = store.find("books")
    borrows = store.find("borrows")
    return {
        "total_books": len(books),
        "total_stock": sum(int(b["available_stock"]) for b in books),
        "low_stock": sum(1 for b in books if int(b["available_stock"]) < low_stock_threshold),
        "total_damaged": sum(int(b["damaged_stock"] or 0) for b in books),
        "active_borrows": sum(1 for r in borrows if r["status"] in OPEN_STATUSES),
    }
