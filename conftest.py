from datetime import datetime, timedelta, timezone

import pytest

from circulation.book import Book
from circulation.config import Settings
from circulation.database import SQLiteStore
from circulation.library import Library
from circulation.memory_store import MemoryStore

START = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock; call advance() to move time forward."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_settings():
    return Settings(transaction_max_attempts=3, transaction_retry_backoff=0.0, loan_days=14)


@pytest.fixture
def sqlite_store(tmp_path, request):
    # Unique database file per test
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    store = SQLiteStore(db_file, busy_timeout=2.0)
    store.initialize()
    return store


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture(params=["sqlite", "memory"])
def store(request, sqlite_store, memory_store):
    """Runs a test once against each store implementation."""
    return sqlite_store if request.param == "sqlite" else memory_store


@pytest.fixture
def lib(store, clock, test_settings):
    lib = Library(store=store, config=test_settings, clock=clock)
    yield lib
    lib.close()


@pytest.fixture
def make_book(store, clock):
    """Insert a book straight through the catalog and return it."""
    from circulation import catalog

    def _make(title="Ulysses", author="James Joyce", isbn="9780199535675", total=5, damaged=0):
        book = Book(title=title, author=author, isbn=isbn, total_stock=total,
                    damaged_stock=damaged)
        return catalog.add_book(store, book, clock=clock)

    return _make
