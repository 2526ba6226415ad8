import threading
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from circulation.book import Book
from circulation.config import settings
from circulation.exceptions import (
    AlreadyReturnedError,
    CirculationError,
    InsufficientStockError,
    NotFoundError,
    TransactionConflictError,
    ValidationError,
)
from circulation.library import Library

_library: Optional[Library] = None
_library_lock = threading.Lock()


def get_library() -> Library:
    """Dependency returning the process-wide Library, created on first use."""
    global _library
    if _library is None:
        # Sync endpoints run in a threadpool; only one of them may build it
        with _library_lock:
            if _library is None:
                _library = Library()
    return _library


app = FastAPI(title=settings.app_name, version=settings.app_version)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_api_key(api_key: Optional[str] = Security(api_key_header)):
    """Dependency that checks the API key on mutating endpoints."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


# --- Error mapping ---
@app.exception_handler(CirculationError)
async def circulation_error_handler(request: Request, exc: CirculationError):
    body = {"detail": str(exc), "code": "error"}
    status_code = 400
    if isinstance(exc, ValidationError):
        body["code"] = "invalid"
    elif isinstance(exc, NotFoundError):
        status_code = 404
        body["code"] = "not_found"
        body["kind"] = exc.kind
    elif isinstance(exc, InsufficientStockError):
        status_code = 409
        body.update(code="insufficient_stock", available=exc.available, requested=exc.requested)
    elif isinstance(exc, AlreadyReturnedError):
        status_code = 409
        body["code"] = "already_returned"
    elif isinstance(exc, TransactionConflictError):
        status_code = 409
        body.update(code="transaction_conflict", retryable=True)
    return JSONResponse(status_code=status_code, content=body)


# --- Models ---
class BookModel(BaseModel):
    id: str
    title: str
    author: str
    isbn: str = ""
    category: str = ""
    total_stock: int
    available_stock: int
    damaged_stock: int
    image_url: Optional[str] = None
    arrival_date: Optional[str] = None
    created_at: Optional[str] = None


class BookCreateModel(BaseModel):
    title: str
    author: str
    isbn: str = ""
    category: str = ""
    total_stock: int = Field(default=0, ge=0)
    damaged_stock: int = Field(default=0, ge=0)
    image_url: Optional[str] = None
    arrival_date: Optional[str] = None


class BookUpdateModel(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    isbn: Optional[str] = None
    category: Optional[str] = None
    total_stock: Optional[int] = None
    available_stock: Optional[int] = None
    damaged_stock: Optional[int] = None
    image_url: Optional[str] = None
    arrival_date: Optional[str] = None


class CategoryModel(BaseModel):
    id: str
    name: str
    created_at: Optional[str] = None


class CategoryCreateModel(BaseModel):
    name: str


class BorrowModel(BaseModel):
    id: str
    book_id: str
    book_title: str
    book_isbn: str = ""
    borrower_name: str
    qty: int
    borrow_date: str
    due_date: str
    return_date: Optional[str] = None
    status: str


class BorrowCreateModel(BaseModel):
    borrower_name: str
    book_id: str
    qty: int = 1
    due_date: Optional[str] = Field(default=None, description="ISO 8601; defaults to the loan period")


class ReturnModel(BaseModel):
    book_id: Optional[str] = None


class StatsModel(BaseModel):
    total_books: int
    total_stock: int
    low_stock: int
    total_damaged: int
    active_borrows: int


# --- Health ---
@app.get("/health")
def health(library: Library = Depends(get_library)):
    """Lightweight health check with a quick store round-trip."""
    store_ok = True
    try:
        library.store.find("categories")
    except Exception:
        store_ok = False
    return {
        "status": "healthy" if store_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "store": settings.store_backend,
        "store_ok": store_ok,
    }


# --- Books ---
@app.get("/books", response_model=List[BookModel])
def get_books(q: Optional[str] = Query(default=None, description="Search text"),
              library: Library = Depends(get_library)):
    books = library.search_books(q) if q else library.list_books()
    return [BookModel(**b.to_dict()) for b in books]


@app.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: str, library: Library = Depends(get_library)):
    return BookModel(**library.get_book(book_id).to_dict())


@app.post("/books", response_model=BookModel, status_code=201, dependencies=[Depends(get_api_key)])
def add_book(payload: BookCreateModel, library: Library = Depends(get_library)):
    book = library.add_book(Book(**payload.model_dump()))
    return BookModel(**book.to_dict())


@app.put("/books/{book_id}", response_model=BookModel, dependencies=[Depends(get_api_key)])
def update_book(book_id: str, update: BookUpdateModel, library: Library = Depends(get_library)):
    fields = update.model_dump(exclude_none=True)
    if not fields:
        raise HTTPException(status_code=400, detail="Provide at least one field to update.")
    return BookModel(**library.update_book(book_id, **fields).to_dict())


@app.delete("/books/{book_id}", dependencies=[Depends(get_api_key)])
def delete_book(book_id: str, library: Library = Depends(get_library)):
    library.remove_book(book_id)
    return {"message": "Book removed."}


# --- Categories ---
@app.get("/categories", response_model=List[CategoryModel])
def get_categories(library: Library = Depends(get_library)):
    return [CategoryModel(**c.to_dict()) for c in library.list_categories()]


@app.post("/categories", response_model=CategoryModel, status_code=201, dependencies=[Depends(get_api_key)])
def create_category(payload: CategoryCreateModel, library: Library = Depends(get_library)):
    return CategoryModel(**library.add_category(payload.name).to_dict())


@app.delete("/categories/{category_id}", dependencies=[Depends(get_api_key)])
def delete_category(category_id: str, library: Library = Depends(get_library)):
    library.remove_category(category_id)
    return {"message": "Category removed."}


# --- Circulation ---
@app.get("/borrows", response_model=List[BorrowModel])
def get_borrows(borrower: Optional[str] = Query(default=None, description="Exact borrower name"),
                library: Library = Depends(get_library)):
    """Borrow history, newest first."""
    return [BorrowModel(**r.to_dict()) for r in library.list_borrows(borrower)]


@app.post("/borrows", response_model=BorrowModel, status_code=201, dependencies=[Depends(get_api_key)])
def create_borrow(payload: BorrowCreateModel, library: Library = Depends(get_library)):
    record = library.borrow(payload.borrower_name, payload.book_id, payload.qty, payload.due_date)
    return BorrowModel(**record.to_dict())


@app.post("/borrows/sweep-overdue", response_model=List[BorrowModel], dependencies=[Depends(get_api_key)])
def sweep_overdue(library: Library = Depends(get_library)):
    return [BorrowModel(**r.to_dict()) for r in library.sweep_overdue()]


@app.post("/borrows/{borrow_id}/return", response_model=BorrowModel, dependencies=[Depends(get_api_key)])
def return_borrow(borrow_id: str, payload: Optional[ReturnModel] = None, library: Library = Depends(get_library)):
    book_id = payload.book_id if payload else None
    return BorrowModel(**library.return_book(borrow_id, book_id).to_dict())


# --- Statistics ---
@app.get("/stats", response_model=StatsModel)
def get_stats(library: Library = Depends(get_library)):
    return StatsModel(**library.get_statistics())


@app.get("/")
def read_root():
    return {"name": settings.app_name, "version": settings.app_version, "docs": "/docs"}
