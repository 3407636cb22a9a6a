"""User-defined channel category (bouquet)."""
import uuid
from dataclasses import dataclass, field
from typing import List


@dataclass
class Category:
    """A user-created category; ``id`` stays fixed for its whole lifetime."""

    name: str
    order: int = 0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "order": self.order}

    @classmethod
    def from_dict(cls, data: dict) -> "Category":
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            order=int(data.get("order") or 0),
        )


def renumber(categories: List[Category]) -> List[Category]:
    """Rewrite ``order`` so it matches list position."""
    for index, category in enumerate(categories):
        category.order = index
    return categories
