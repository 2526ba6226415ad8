from __future__ import annotations


class Book:
    """A catalog title together with its stock counters."""

    def __init__(self, title: str, author: str, isbn: str = "", category: str = "",
                 total_stock: int = 0, available_stock: int | None = None, damaged_stock: int = 0,
                 image_url: str | None = None, arrival_date: str | None = None,
                 created_at: str | None = None, id: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.isbn = (isbn or "").strip()
        self.category = (category or "").strip()
        self.total_stock = total_stock
        self.damaged_stock = damaged_stock
        # New books start with every undamaged copy on the shelf
        self.available_stock = total_stock - damaged_stock if available_stock is None else available_stock
        self.image_url = image_url
        self.arrival_date = arrival_date
        self.created_at = created_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.available_stock}/{self.total_stock} available)"

    def __repr__(self) -> str:  # pragma: no cover
        return f"Book(id={self.id!r}, title={self.title!r}, available_stock={self.available_stock})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "category": self.category,
            "total_stock": self.total_stock,
            "available_stock": self.available_stock,
            "damaged_stock": self.damaged_stock,
            "image_url": self.image_url,
            "arrival_date": self.arrival_date,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data.get("id"),
            title=data["title"],
            author=data["author"],
            isbn=data.get("isbn") or "",
            category=data.get("category") or "",
            total_stock=int(data.get("total_stock") or 0),
            available_stock=int(data.get("available_stock") or 0),
            damaged_stock=int(data.get("damaged_stock") or 0),
            image_url=data.get("image_url"),
            arrival_date=data.get("arrival_date"),
            created_at=data.get("created_at"),
        )
