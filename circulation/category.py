from __future__ import annotations


class Category:
    """A shelf category books can be filed under."""

    def __init__(self, name: str, created_at: str | None = None, id: str | None = None) -> None:
        self.id = id
        self.name = name.strip()
        self.created_at = created_at

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "created_at": self.created_at}

    @staticmethod
    def from_dict(data: dict) -> "Category":
        return Category(id=data.get("id"), name=data["name"], created_at=data.get("created_at"))
