from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")

MAX_PAGE_SIZE = 100


@dataclass
class Page(Generic[T]):
    items: list[T] = field(default_factory=list)
    total: int = 0
    page_index: int = 1
    page_size: int = 10

    @property
    def total_pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size if self.page_size else 0

    @property
    def has_next(self) -> bool:
        return self.page_index < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page_index > 1


def normalize(page_index: int, page_size: int) -> tuple[int, int, int]:
    """Clamp paging input; returns (page_index, page_size, offset)."""
    page_index = max(1, page_index)
    page_size = min(max(1, page_size), MAX_PAGE_SIZE)
    return page_index, page_size, (page_index - 1) * page_size
