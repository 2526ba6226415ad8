import json
import os
from typing import Any, Dict, List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from circulation.book import Book
from circulation.borrow import BorrowRecord
from circulation.category import Category

# Environment variable that controls CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()

STATUS_STYLES = {"borrowed": "yellow", "returned": "green", "overdue": "bold red"}


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False))


def print_books(books: List[Book]) -> None:
    """Print books in the current output mode.
    - plain: 'id - Title by Author [available/total]' lines, or 'No books in library.'
    - json: JSON array of book objects
    - rich: Rich table
    """
    mode = get_output_mode()
    if mode == "json":
        print_json([b.to_dict() for b in books])
        return
    if not books:
        print("No books in library.")
        return
    if mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Category", style="white")
        table.add_column("Available", justify="right")
        table.add_column("Total", justify="right")
        table.add_column("Damaged", justify="right")
        for b in books:
            table.add_row(b.id, b.title, b.author, b.category, str(b.available_stock),
                          str(b.total_stock), str(b.damaged_stock))
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id} - {b.title} by {b.author} [{b.available_stock}/{b.total_stock}]")


def print_book(book: Book) -> None:
    mode = get_output_mode()
    if mode == "json":
        print_json(book.to_dict())
    elif mode == "rich":
        content = (
            f"[bold]Title:[/] {book.title}\n"
            f"[bold]Author:[/] {book.author}\n"
            f"[bold]ISBN:[/] {book.isbn}\n"
            f"[bold]Category:[/] {book.category}\n"
            f"[bold]Stock:[/] {book.available_stock} available / {book.total_stock} total / "
            f"{book.damaged_stock} damaged"
        )
        _console.print(Panel.fit(content, title=f"📖 {book.id}", border_style="green"))
    else:
        print(f"ID: {book.id}")
        print(f"Title: {book.title}")
        print(f"Author: {book.author}")
        print(f"ISBN: {book.isbn}")
        print(f"Category: {book.category}")
        print(f"Available: {book.available_stock}/{book.total_stock} (damaged: {book.damaged_stock})")


def print_borrows(records: List[BorrowRecord]) -> None:
    mode = get_output_mode()
    if mode == "json":
        print_json([r.to_dict() for r in records])
        return
    if not records:
        print("No borrow records.")
        return
    if mode == "rich":
        table = Table(title="🔁 Borrows", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Borrower")
        table.add_column("Book")
        table.add_column("Qty", justify="right")
        table.add_column("Borrowed")
        table.add_column("Due")
        table.add_column("Status")
        for r in records:
            style = STATUS_STYLES.get(r.status, "white")
            table.add_row(r.id, r.borrower_name, r.book_title, str(r.qty), r.borrow_date[:10],
                          r.due_date[:10], f"[{style}]{r.status}[/]")
        _console.print(table)
    else:
        for r in records:
            print(f"{r.id} - {r.borrower_name}: {r.qty} x {r.book_title} "
                  f"(borrowed {r.borrow_date[:10]}, due {r.due_date[:10]}) [{r.status}]")


def print_categories(categories: List[Category]) -> None:
    mode = get_output_mode()
    if mode == "json":
        print_json([c.to_dict() for c in categories])
    elif not categories:
        print("No categories.")
    else:
        for c in categories:
            print(f"{c.id} - {c.name}")


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print dashboard statistics in the current output mode."""
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    labels = [
        ("total_books", "Total Books"),
        ("total_stock", "Copies Available"),
        ("low_stock", "Low Stock Titles"),
        ("total_damaged", "Damaged Copies"),
        ("active_borrows", "Active Borrows"),
    ]
    if mode == "json":
        print_json({key: stats.get(key, 0) for key, _ in labels})
    elif mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {stats.get(key, 0)}" for key, label in labels)
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, label in labels:
            print(f"{label}: {stats.get(key, 0)}")
