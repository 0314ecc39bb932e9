from dataclasses import dataclass
from typing import Any, Optional

from librarium.config import settings

DEFAULT_PAGE = 1


def _as_positive_int(value: Any) -> Optional[int]:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


@dataclass(frozen=True)
class Pagination:
    """Page/size pair; absent or non-positive values fall back to defaults."""

    page: int = DEFAULT_PAGE
    page_size: int = settings.default_page_size

    @classmethod
    def from_params(cls, page: Any = None, page_size: Any = None) -> "Pagination":
        size = _as_positive_int(page_size) or settings.default_page_size
        return cls(
            page=_as_positive_int(page) or DEFAULT_PAGE,
            page_size=min(size, settings.max_page_size),
        )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size
