"""Borrow and return transactions over a document store.

Every operation takes the store explicitly and runs its reads and writes in a
single ``store.transaction()``, so either all of its effects are committed or
none are. Nothing here retries: a ``TransactionConflictError`` reaches the
caller, who decides whether running the operation again is safe.

For every book the following holds after each committed operation::

    available_stock == total_stock - damaged_stock - sum(qty of open borrows)

It is maintained incrementally by :func:`borrow_book` and :func:`return_book`.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional, Union

from circulation.borrow import BorrowRecord, BorrowStatus
from circulation.exceptions import (
    AlreadyReturnedError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from circulation.store import DocumentStore
from circulation.utils.dates import parse_timestamp, to_iso, utc_now
from circulation.utils.validators import StockValidator, TextValidator

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
DueDate = Union[str, datetime, date]

DEFAULT_LOAN_DAYS = 14


def borrow_book(store: DocumentStore, borrower_name: str, book_id: str, qty: int,
                due_date: Optional[DueDate] = None, *, clock: Clock = utc_now,
                loan_days: int = DEFAULT_LOAN_DAYS) -> BorrowRecord:
    """Take ``qty`` copies of a book off the shelf and record who has them.

    Input is validated before the store is touched. The stock check, the stock
    decrement and the record insert then run in one transaction.

    Raises:
        ValidationError: empty borrower name, empty book id, bad quantity or
            unparseable due date.
        NotFoundError: the book does not exist.
        InsufficientStockError: fewer than ``qty`` copies are available.
        TransactionConflictError: the store saw a concurrent modification.
    """
    borrower_name = TextValidator.require_text(borrower_name, "Borrower name")
    if not book_id:
        raise ValidationError("Book id is required.")
    StockValidator.require_count(qty, "Quantity", minimum=1)
    explicit_due = parse_timestamp(due_date) if due_date is not None else None

    with store.transaction() as tx:
        book = tx.get("books", book_id)
        if book is None:
            raise NotFoundError("book", book_id)

        available = int(book["available_stock"])
        if available < qty:
            raise InsufficientStockError(available, qty)

        tx.update("books", book_id, {"available_stock": available - qty})

        now = clock()
        due = explicit_due if explicit_due is not None else now + timedelta(days=loan_days)
        record = BorrowRecord(
            book_id=book_id,
            book_title=book["title"],
            book_isbn=book.get("isbn") or "",
            borrower_name=borrower_name,
            qty=qty,
            borrow_date=to_iso(now),
            due_date=to_iso(due),
        )
        fields = record.to_dict()
        fields.pop("id")
        record.id = tx.insert("borrows", fields)

    logger.info(f"{borrower_name} borrowed {qty} x '{record.book_title}' ({book_id}), due {record.due_date}")
    return record


def return_book(store: DocumentStore, borrow_id: str, book_id: Optional[str] = None, *,
                clock: Clock = utc_now) -> BorrowRecord:
    """Mark a borrow as returned and put its copies back on the shelf.

    ``book_id`` defaults to the book the record points at; when given it must
    match it. Returned copies are assumed undamaged.

    Raises:
        NotFoundError: the borrow record or the book does not exist.
        AlreadyReturnedError: the record was returned before.
        ValidationError: ``book_id`` does not match the record.
        TransactionConflictError: the store saw a concurrent modification.
    """
    if not borrow_id:
        raise ValidationError("Borrow id is required.")

    with store.transaction() as tx:
        data = tx.get("borrows", borrow_id)
        if data is None:
            raise NotFoundError("borrow", borrow_id)
        record = BorrowRecord.from_dict(data)

        if record.status == BorrowStatus.RETURNED.value:
            raise AlreadyReturnedError(borrow_id)

        book_id = book_id or record.book_id
        if book_id != record.book_id:
            raise ValidationError(f"Borrow {borrow_id} is for book {record.book_id}, not {book_id}.")

        book = tx.get("books", book_id)
        if book is None:
            raise NotFoundError("book", book_id)

        record.status = BorrowStatus.RETURNED.value
        record.return_date = to_iso(clock())
        tx.update("borrows", borrow_id, {"status": record.status, "return_date": record.return_date})
        tx.update("books", book_id, {"available_stock": int(book["available_stock"]) + record.qty})

    logger.info(f"{record.borrower_name} returned {record.qty} x '{record.book_title}' ({borrow_id})")
    return record


def list_borrows(store: DocumentStore, borrower_name: Optional[str] = None) -> List[BorrowRecord]:
    """All borrow records, newest first, optionally only one borrower's (exact match)."""
    where = {"borrower_name": borrower_name} if borrower_name else None
    docs = store.find("borrows", where, order_by="borrow_date", descending=True)
    return [BorrowRecord.from_dict(doc) for doc in docs]


def mark_overdue(store: DocumentStore, *, clock: Clock = utc_now) -> List[BorrowRecord]:
    """Move every ``borrowed`` record whose due date has passed to ``overdue``.

    Stock is not touched: overdue copies are still out. Returns the records
    that changed; running it again right away changes nothing.
    """
    now = clock()
    changed: List[BorrowRecord] = []
    with store.transaction() as tx:
        for doc in tx.query("borrows", {"status": BorrowStatus.BORROWED.value}):
            if parse_timestamp(doc["due_date"]) < now:
                tx.update("borrows", doc["id"], {"status": BorrowStatus.OVERDUE.value})
                doc["status"] = BorrowStatus.OVERDUE.value
                changed.append(BorrowRecord.from_dict(doc))
    if changed:
        logger.info(f"Marked {len(changed)} borrow(s) overdue")
    return changed
