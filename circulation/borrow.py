from __future__ import annotations

from enum import Enum


class BorrowStatus(str, Enum):
    BORROWED = "borrowed"
    RETURNED = "returned"
    OVERDUE = "overdue"


# Records in these states still hold copies off the shelf
OPEN_STATUSES = frozenset({BorrowStatus.BORROWED.value, BorrowStatus.OVERDUE.value})


class BorrowRecord:
    """One borrow transaction.

    ``book_title`` and ``book_isbn`` are copied from the book when the record is
    created and are never re-read, so history stays accurate after the book is
    edited or deleted.
    """

    def __init__(self, book_id: str, book_title: str, borrower_name: str, qty: int,
                 borrow_date: str, due_date: str, book_isbn: str = "",
                 return_date: str | None = None, status: str = BorrowStatus.BORROWED.value,
                 id: str | None = None) -> None:
        self.id = id
        self.book_id = book_id
        self.book_title = book_title
        self.book_isbn = book_isbn
        self.borrower_name = borrower_name
        self.qty = qty
        self.borrow_date = borrow_date
        self.due_date = due_date
        self.return_date = return_date
        self.status = BorrowStatus(status).value

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.borrower_name}: {self.qty} x {self.book_title} [{self.status}]"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "book_title": self.book_title,
            "book_isbn": self.book_isbn,
            "borrower_name": self.borrower_name,
            "qty": self.qty,
            "borrow_date": self.borrow_date,
            "due_date": self.due_date,
            "return_date": self.return_date,
            "status": self.status,
        }

    @staticmethod
    def from_dict(data: dict) -> "BorrowRecord":
        return BorrowRecord(
            id=data.get("id"),
            book_id=data["book_id"],
            book_title=data.get("book_title") or "",
            book_isbn=data.get("book_isbn") or "",
            borrower_name=data["borrower_name"],
            qty=int(data["qty"]),
            borrow_date=data["borrow_date"],
            due_date=data["due_date"],
            return_date=data.get("return_date"),
            status=data.get("status") or BorrowStatus.BORROWED.value,
        )
