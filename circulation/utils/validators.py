import re
from typing import Any, Optional

from circulation.exceptions import ValidationError


class ISBNValidator:
    """ISBN normalization. The catalog stores whatever the librarian typed,
    minus separators, so no checksum is enforced here.
    """

    @staticmethod
    def normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        s = re.sub(r"[\s-]", "", raw)
        return s.upper()


class TextValidator:

    @staticmethod
    def require_text(value: Optional[str], field: str) -> str:
        if value is None or not str(value).strip():
            raise ValidationError(f"{field} is required.")
        return str(value).strip()

    @staticmethod
    def optional_text(value: Optional[str]) -> str:
        if value is None:
            return ""
        return str(value).strip()


class StockValidator:
    """Checks on the three stock counters of a book."""

    @staticmethod
    def require_count(value: Any, field: str, minimum: int = 0) -> int:
        # bool is an int subclass; True is not a quantity
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{field} must be an integer.")
        if value < minimum:
            raise ValidationError(f"{field} must be at least {minimum}.")
        return value

    @staticmethod
    def validate_counts(total: int, available: int, damaged: int) -> None:
        StockValidator.require_count(total, "total_stock")
        StockValidator.require_count(available, "available_stock")
        StockValidator.require_count(damaged, "damaged_stock")
        if damaged > total:
            raise ValidationError("damaged_stock cannot exceed total_stock.")
        if available > total - damaged:
            raise ValidationError(
                f"available_stock cannot exceed total_stock - damaged_stock ({total - damaged})."
            )
