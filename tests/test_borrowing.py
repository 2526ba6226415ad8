import pytest

from circulation import borrowing, catalog
from circulation.borrow import BorrowStatus
from circulation.exceptions import (
    AlreadyReturnedError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)


def assert_stock_invariant(store, book_id):
    book = catalog.get_book(store, book_id)
    outstanding = sum(r.qty for r in borrowing.list_borrows(store) if r.book_id == book_id and r.is_open)
    assert book.available_stock == book.total_stock - book.damaged_stock - outstanding


def test_borrow_decrements_stock_and_creates_record(store, make_book, clock):
    book = make_book(total=5)

    record = borrowing.borrow_book(store, "Alice", book.id, 3, clock=clock)

    assert catalog.get_book(store, book.id).available_stock == 2
    assert record.qty == 3
    assert record.status == "borrowed"
    assert record.return_date is None
    assert record.book_title == "Ulysses"
    assert record.book_isbn == "9780199535675"
    assert record.borrow_date == "2026-10-19T09:00:00.000Z"
    assert record.due_date == "2026-11-02T09:00:00.000Z"
    history = borrowing.list_borrows(store)
    assert [r.id for r in history] == [record.id]
    assert_stock_invariant(store, book.id)


def test_borrow_with_explicit_due_date(store, make_book, clock):
    book = make_book()
    record = borrowing.borrow_book(store, "Alice", book.id, 1, due_date="2026-10-25", clock=clock)
    assert record.due_date == "2026-10-25T00:00:00.000Z"


def test_borrow_uses_configured_loan_days(store, make_book, clock):
    book = make_book()
    record = borrowing.borrow_book(store, "Alice", book.id, 1, clock=clock, loan_days=7)
    assert record.due_date == "2026-10-26T09:00:00.000Z"


def test_insufficient_stock_leaves_no_trace(store, make_book, clock):
    book = make_book(total=2)

    with pytest.raises(InsufficientStockError) as excinfo:
        borrowing.borrow_book(store, "Bob", book.id, 5, clock=clock)

    assert excinfo.value.available == 2
    assert excinfo.value.requested == 5
    assert catalog.get_book(store, book.id).available_stock == 2
    assert borrowing.list_borrows(store) == []


@pytest.mark.parametrize("name, qty", [("", 1), ("   ", 1), ("Alice", 0), ("Alice", -2), ("Alice", True), ("Alice", 1.5)])
def test_borrow_rejects_bad_input_before_touching_store(name, qty, clock):
    class ExplodingStore:
        def transaction(self):
            raise AssertionError("store must not be touched")

        def find(self, *args, **kwargs):
            raise AssertionError("store must not be touched")

    with pytest.raises(ValidationError):
        borrowing.borrow_book(ExplodingStore(), name, "some-book", qty, clock=clock)


def test_borrow_rejects_unparseable_due_date(store, make_book, clock):
    book = make_book()
    with pytest.raises(ValidationError):
        borrowing.borrow_book(store, "Alice", book.id, 1, due_date="next tuesday", clock=clock)
    assert catalog.get_book(store, book.id).available_stock == 5


def test_borrow_missing_book(store, clock):
    with pytest.raises(NotFoundError) as excinfo:
        borrowing.borrow_book(store, "Alice", "no-such-book", 1, clock=clock)
    assert excinfo.value.kind == "book"


def test_return_restores_stock(store, make_book, clock):
    book = make_book(total=5)
    record = borrowing.borrow_book(store, "Alice", book.id, 3, clock=clock)
    assert catalog.get_book(store, book.id).available_stock == 2

    clock.advance(days=3)
    returned = borrowing.return_book(store, record.id, book.id, clock=clock)

    assert returned.status == "returned"
    assert returned.return_date == "2026-10-22T09:00:00.000Z"
    assert catalog.get_book(store, book.id).available_stock == 5
    assert borrowing.list_borrows(store)[0].status == "returned"
    assert_stock_invariant(store, book.id)


def test_second_return_is_rejected_and_stock_incremented_once(store, make_book, clock):
    book = make_book(total=5)
    record = borrowing.borrow_book(store, "Alice", book.id, 3, clock=clock)
    borrowing.return_book(store, record.id, book.id, clock=clock)

    with pytest.raises(AlreadyReturnedError):
        borrowing.return_book(store, record.id, book.id, clock=clock)

    assert catalog.get_book(store, book.id).available_stock == 5


def test_return_defaults_to_the_records_book(store, make_book, clock):
    book = make_book(total=1)
    record = borrowing.borrow_book(store, "Alice", book.id, 1, clock=clock)
    borrowing.return_book(store, record.id, clock=clock)
    assert catalog.get_book(store, book.id).available_stock == 1


def test_return_rejects_mismatched_book(store, make_book, clock):
    first = make_book(title="First", total=2)
    second = make_book(title="Second", total=2)
    record = borrowing.borrow_book(store, "Alice", first.id, 1, clock=clock)

    with pytest.raises(ValidationError):
        borrowing.return_book(store, record.id, second.id, clock=clock)

    assert catalog.get_book(store, first.id).available_stock == 1
    assert catalog.get_book(store, second.id).available_stock == 2
    assert borrowing.list_borrows(store)[0].status == "borrowed"


def test_return_unknown_record(store, clock):
    with pytest.raises(NotFoundError) as excinfo:
        borrowing.return_book(store, "missing", "whatever", clock=clock)
    assert excinfo.value.kind == "borrow"


def test_return_after_book_deleted_is_impossible(store, make_book, clock):
    book = make_book(total=2)
    record = borrowing.borrow_book(store, "Alice", book.id, 1, clock=clock)
    catalog.delete_book(store, book.id)

    with pytest.raises(NotFoundError) as excinfo:
        borrowing.return_book(store, record.id, book.id, clock=clock)

    assert excinfo.value.kind == "book"
    # the record is untouched and keeps its snapshot
    kept = borrowing.list_borrows(store)[0]
    assert kept.status == "borrowed"
    assert kept.book_title == "Ulysses"


def test_snapshot_survives_book_edit(store, make_book, clock):
    book = make_book()
    borrowing.borrow_book(store, "Alice", book.id, 1, clock=clock)
    catalog.update_book(store, book.id, title="Ulysses (Annotated)", isbn="0000000000")

    record = borrowing.list_borrows(store)[0]
    assert record.book_title == "Ulysses"
    assert record.book_isbn == "9780199535675"


def test_history_newest_first_and_filtered_by_borrower(store, make_book, clock):
    book = make_book(total=10)
    first = borrowing.borrow_book(store, "Alice", book.id, 1, clock=clock)
    clock.advance(hours=1)
    second = borrowing.borrow_book(store, "Bob", book.id, 1, clock=clock)
    clock.advance(hours=1)
    third = borrowing.borrow_book(store, "Alice", book.id, 2, clock=clock)

    assert [r.id for r in borrowing.list_borrows(store)] == [third.id, second.id, first.id]
    assert [r.id for r in borrowing.list_borrows(store, "Alice")] == [third.id, first.id]
    assert borrowing.list_borrows(store, "alice") == []


def test_invariant_over_mixed_sequence(store, make_book, clock):
    book = make_book(total=10, damaged=2)
    assert book.available_stock == 8

    records = []
    for name, qty in [("Alice", 3), ("Bob", 2), ("Carol", 1)]:
        records.append(borrowing.borrow_book(store, name, book.id, qty, clock=clock))
        clock.advance(minutes=5)
        assert_stock_invariant(store, book.id)

    with pytest.raises(InsufficientStockError):
        borrowing.borrow_book(store, "Dave", book.id, 3, clock=clock)
    assert_stock_invariant(store, book.id)

    borrowing.return_book(store, records[1].id, clock=clock)
    assert_stock_invariant(store, book.id)
    borrowing.borrow_book(store, "Dave", book.id, 4, clock=clock)
    assert_stock_invariant(store, book.id)
    assert catalog.get_book(store, book.id).available_stock == 0


def test_mark_overdue(store, make_book, clock):
    book = make_book(total=5)
    late = borrowing.borrow_book(store, "Alice", book.id, 1, due_date="2026-10-20T00:00:00Z", clock=clock)
    on_time = borrowing.borrow_book(store, "Bob", book.id, 1, clock=clock)
    returned = borrowing.borrow_book(store, "Carol", book.id, 1, due_date="2026-10-20T00:00:00Z", clock=clock)
    borrowing.return_book(store, returned.id, clock=clock)

    clock.advance(days=2)
    changed = borrowing.mark_overdue(store, clock=clock)

    assert [r.id for r in changed] == [late.id]
    assert changed[0].status == BorrowStatus.OVERDUE.value
    statuses = {r.id: r.status for r in borrowing.list_borrows(store)}
    assert statuses == {late.id: "overdue", on_time.id: "borrowed", returned.id: "returned"}
    assert catalog.get_book(store, book.id).available_stock == 3
    assert_stock_invariant(store, book.id)

    assert borrowing.mark_overdue(store, clock=clock) == []


def test_overdue_record_can_be_returned(store, make_book, clock):
    book = make_book(total=2)
    record = borrowing.borrow_book(store, "Alice", book.id, 2, due_date="2026-10-20", clock=clock)
    clock.advance(days=5)
    borrowing.mark_overdue(store, clock=clock)

    borrowing.return_book(store, record.id, clock=clock)

    assert catalog.get_book(store, book.id).available_stock == 2
    assert borrowing.list_borrows(store)[0].status == "returned"
