import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar

from circulation import borrowing, catalog
from circulation.book import Book
from circulation.borrow import BorrowRecord
from circulation.category import Category
from circulation.config import Settings, settings as default_settings
from circulation.database import SQLiteStore
from circulation.exceptions import TransactionConflictError
from circulation.memory_store import MemoryStore
from circulation.store import DocumentStore
from circulation.utils.dates import utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


def create_store(config: Settings, db_file: Optional[str] = None) -> DocumentStore:
    """Build the store selected by ``LIBRARY_STORE``."""
    if config.store_backend == "memory":
        return MemoryStore()
    if config.store_backend != "sqlite":
        raise ValueError(f"Unknown store backend: {config.store_backend}")
    return SQLiteStore(db_file or config.database_file, busy_timeout=config.db_busy_timeout)


class Library:
    """Front door used by the CLI and the HTTP API.

    Wires a store, the settings and a clock into the catalog and circulation
    operations. It is also where the retry policy for transaction conflicts
    lives: every write (catalog edits, borrow, return and sweep) is re-run
    only when the store reports a conflict, which it does before anything is
    written. Reads are never retried.
    """

    def __init__(self, store: Optional[DocumentStore] = None, db_file: Optional[str] = None,
                 config: Optional[Settings] = None, clock: Callable[[], datetime] = utc_now) -> None:
        self.settings = config or default_settings
        self.store = store if store is not None else create_store(self.settings, db_file)
        self.clock = clock
        self.store.initialize()

    # ------------------------- Catalog ------------------------- #
    def add_book(self, book: Book) -> Book:
        return self._with_conflict_retry(catalog.add_book, self.store, book, clock=self.clock)

    def get_book(self, book_id: str) -> Book:
        return catalog.get_book(self.store, book_id)

    def list_books(self) -> List[Book]:
        return catalog.list_books(self.store)

    def search_books(self, query: str) -> List[Book]:
        return catalog.search_books(self.store, query)

    def update_book(self, book_id: str, **fields: Any) -> Book:
        return self._with_conflict_retry(catalog.update_book, self.store, book_id, **fields)

    def remove_book(self, book_id: str) -> None:
        self._with_conflict_retry(catalog.delete_book, self.store, book_id)

    def add_category(self, name: str) -> Category:
        return self._with_conflict_retry(catalog.add_category, self.store, name, clock=self.clock)

    def list_categories(self) -> List[Category]:
        return catalog.list_categories(self.store)

    def remove_category(self, category_id: str) -> None:
        self._with_conflict_retry(catalog.delete_category, self.store, category_id)

    def get_statistics(self) -> Dict[str, int]:
        return catalog.get_statistics(self.store, low_stock_threshold=self.settings.low_stock_threshold)

    # ------------------------- Circulation ------------------------- #
    def borrow(self, borrower_name: str, book_id: str, qty: int = 1,
               due_date: Optional[borrowing.DueDate] = None) -> BorrowRecord:
        return self._with_conflict_retry(
            borrowing.borrow_book, self.store, borrower_name, book_id, qty, due_date,
            clock=self.clock, loan_days=self.settings.loan_days,
        )

    def return_book(self, borrow_id: str, book_id: Optional[str] = None) -> BorrowRecord:
        return self._with_conflict_retry(borrowing.return_book, self.store, borrow_id, book_id, clock=self.clock)

    def list_borrows(self, borrower_name: Optional[str] = None) -> List[BorrowRecord]:
        return borrowing.list_borrows(self.store, borrower_name)

    def sweep_overdue(self) -> List[BorrowRecord]:
        return self._with_conflict_retry(borrowing.mark_overdue, self.store, clock=self.clock)

    # ------------------------- Retry policy ------------------------- #
    def _with_conflict_retry(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``operation``, re-running it with exponential backoff on conflicts only.

        Any other error, and the last conflict once attempts run out, propagate.
        """
        attempts = max(1, self.settings.transaction_max_attempts)
        backoff = self.settings.transaction_retry_backoff
        for attempt in range(attempts):
            try:
                return operation(*args, **kwargs)
            except TransactionConflictError:
                if attempt == attempts - 1:
                    raise
                wait = backoff * (2 ** attempt)
                logger.warning(f"{operation.__name__}: transaction conflict, retrying in {wait:.2f}s "
                               f"(attempt {attempt + 2}/{attempts})")
                time.sleep(wait)
        raise AssertionError("unreachable")  # pragma: no cover

    def close(self) -> None:
        self.store.close()
