import logging
import subprocess
import sys
import webbrowser
from functools import wraps
from typing import Optional

import typer
from rich.prompt import Confirm

from circulation.book import Book
from circulation.config import settings
from circulation.exceptions import CirculationError
from circulation.library import Library
from circulation.utils.ui_helpers import (
    get_output_mode,
    print_book,
    print_books,
    print_borrows,
    print_categories,
    print_json,
    print_stats_result,
    set_output_mode,
)

APP_NAME = "Library Circulation CLI"

logger = logging.getLogger(__name__)


class LibraryManager:
    """Lazily created Library shared by every command of one CLI run."""

    _instance: Optional[Library] = None

    @classmethod
    def get_instance(cls) -> Library:
        if cls._instance is None:
            cls._instance = Library()
        return cls._instance

    @classmethod
    def set_instance(cls, library: Optional[Library]) -> None:
        cls._instance = library


def handle_errors(func):
    """Turn domain errors into an 'Error: ...' line and exit code 1."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except CirculationError as e:
            print(f"Error: {e}")
            raise typer.Exit(code=1)
    return wrapper


# --- Typer CLI application ---
app = typer.Typer(help=APP_NAME, no_args_is_help=True)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options (output mode)."""
    logging.basicConfig(level=settings.log_level, format="%(levelname)s %(name)s: %(message)s")
    if output:
        set_output_mode(output)


# ------------------------- Catalog ------------------------- #
@app.command("books")
def cli_books(query: Optional[str] = typer.Option(None, "--query", "-q", help="Filter by title, author, ISBN or category")):
    """List all books, newest first."""
    lib = LibraryManager.get_instance()
    books = lib.search_books(query) if query else lib.list_books()
    print_books(books)


@app.command("search")
def cli_search(query: str = typer.Argument(..., help="Search text")):
    """Search books by title, author, ISBN or category."""
    books = LibraryManager.get_instance().search_books(query)
    if not books and get_output_mode() != "json":
        print(f"No books match '{query}'.")
        return
    print_books(books)


@app.command("show-book")
@handle_errors
def cli_show_book(book_id: str):
    """Show one book with its stock counters."""
    print_book(LibraryManager.get_instance().get_book(book_id))


@app.command("add-book")
@handle_errors
def cli_add_book(
    title: str = typer.Option(..., "--title", "-t"),
    author: str = typer.Option(..., "--author", "-a"),
    isbn: str = typer.Option("", "--isbn"),
    category: str = typer.Option("", "--category", "-c"),
    total: int = typer.Option(0, "--total", help="Copies owned"),
    damaged: int = typer.Option(0, "--damaged", help="Damaged copies"),
    image_url: Optional[str] = typer.Option(None, "--image-url"),
    arrival_date: Optional[str] = typer.Option(None, "--arrival-date"),
):
    """Add a book to the catalog."""
    book = Book(title=title, author=author, isbn=isbn, category=category, total_stock=total,
                damaged_stock=damaged, image_url=image_url,
                arrival_date=arrival_date)
    book = LibraryManager.get_instance().add_book(book)
    if get_output_mode() == "json":
        print_json(book.to_dict())
    else:
        print(f"Successfully added: {book.title} by {book.author} (id {book.id})")


@app.command("update-book")
@handle_errors
def cli_update_book(
    book_id: str,
    title: Optional[str] = typer.Option(None, "--title", "-t"),
    author: Optional[str] = typer.Option(None, "--author", "-a"),
    isbn: Optional[str] = typer.Option(None, "--isbn"),
    category: Optional[str] = typer.Option(None, "--category", "-c"),
    total: Optional[int] = typer.Option(None, "--total"),
    available: Optional[int] = typer.Option(None, "--available"),
    damaged: Optional[int] = typer.Option(None, "--damaged"),
    image_url: Optional[str] = typer.Option(None, "--image-url"),
    arrival_date: Optional[str] = typer.Option(None, "--arrival-date"),
):
    """Edit a book. Only the options given are changed."""
    fields = {
        "title": title, "author": author, "isbn": isbn, "category": category,
        "total_stock": total, "available_stock": available, "damaged_stock": damaged,
        "image_url": image_url, "arrival_date": arrival_date,
    }
    fields = {name: value for name, value in fields.items() if value is not None}
    book = LibraryManager.get_instance().update_book(book_id, **fields)
    print_book(book)


@app.command("remove-book")
@handle_errors
def cli_remove_book(book_id: str, yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation")):
    """Delete a book from the catalog."""
    lib = LibraryManager.get_instance()
    book = lib.get_book(book_id)
    if not yes and not Confirm.ask(f"Delete '{book.title}'?", default=False):
        print("Cancelled.")
        return
    lib.remove_book(book_id)
    print(f"Book {book_id} has been removed.")


@app.command("categories")
def cli_categories():
    """List categories alphabetically."""
    print_categories(LibraryManager.get_instance().list_categories())


@app.command("add-category")
@handle_errors
def cli_add_category(name: str):
    """Create a category."""
    category = LibraryManager.get_instance().add_category(name)
    if get_output_mode() == "json":
        print_json(category.to_dict())
    else:
        print(f"Added category: {category.name} (id {category.id})")


@app.command("remove-category")
@handle_errors
def cli_remove_category(category_id: str):
    """Delete a category."""
    LibraryManager.get_instance().remove_category(category_id)
    print(f"Category {category_id} has been removed.")


# ------------------------- Circulation ------------------------- #
@app.command("borrow")
@handle_errors
def cli_borrow(
    borrower: str = typer.Argument(..., help="Borrower name"),
    book_id: str = typer.Argument(..., help="Book id"),
    qty: int = typer.Option(1, "--qty", "-n", help="Number of copies"),
    due: Optional[str] = typer.Option(None, "--due", help="Due date (ISO 8601); defaults to the loan period"),
):
    """Lend copies of a book."""
    record = LibraryManager.get_instance().borrow(borrower, book_id, qty, due)
    if get_output_mode() == "json":
        print_json(record.to_dict())
    else:
        print(f"Borrowed: {record.qty} x {record.book_title} for {record.borrower_name} "
              f"(record {record.id}, due {record.due_date[:10]})")


@app.command("return")
@handle_errors
def cli_return(
    borrow_id: str = typer.Argument(..., help="Borrow record id"),
    book_id: Optional[str] = typer.Option(None, "--book-id", help="Book id; defaults to the record's book"),
):
    """Take back the copies of a borrow record."""
    record = LibraryManager.get_instance().return_book(borrow_id, book_id)
    if get_output_mode() == "json":
        print_json(record.to_dict())
    else:
        print(f"Returned: {record.qty} x {record.book_title} from {record.borrower_name}")


@app.command("history")
def cli_history(borrower: Optional[str] = typer.Option(None, "--borrower", "-b", help="Only this borrower (exact name)")):
    """Borrow history, newest first."""
    print_borrows(LibraryManager.get_instance().list_borrows(borrower))


@app.command("sweep-overdue")
@handle_errors
def cli_sweep_overdue():
    """Mark borrowed records past their due date as overdue."""
    changed = LibraryManager.get_instance().sweep_overdue()
    if get_output_mode() == "json":
        print_json([r.to_dict() for r in changed])
    else:
        print(f"Marked {len(changed)} borrow(s) overdue.")


@app.command("stats")
def cli_stats():
    """Dashboard statistics."""
    print_stats_result(LibraryManager.get_instance().get_statistics())


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
    open_browser: bool = typer.Option(True, "--open/--no-open", help="Open the API docs in a browser"),
):
    """Start the HTTP API with Uvicorn."""
    host = host or settings.api_host
    port = int(port or settings.api_port)
    url = f"http://{host}:{port}/docs"
    print(f"Starting API on {url}")
    if open_browser:
        try:
            webbrowser.open(url)
        except webbrowser.Error:
            logger.warning("Could not open a web browser")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "circulation.api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    try:
        subprocess.run(args)
    except FileNotFoundError:
        print("Error: uvicorn could not be started. Make sure it is installed.")
        raise typer.Exit(code=1)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
