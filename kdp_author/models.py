from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple


class BookSpecValidationError(ValueError):
    """Raised when a book specification is missing required information."""


@dataclass(frozen=True)
class BookSpec:
    title: str
    description: str
    details: str

    def to_payload(self) -> Dict[str, str]:
        return {
            "title": self.title,
            "description": self.description,
            "details": self.details,
        }


def validate_book_spec(book: BookSpec) -> BookSpec:
    """Return ``book`` with stripped fields or raise if any field is blank."""

    cleaned = BookSpec(
        title=(book.title or "").strip(),
        description=(book.description or "").strip(),
        details=(book.details or "").strip(),
    )
    missing = [name for name, value in cleaned.to_payload().items() if not value]
    if missing:
        raise BookSpecValidationError(
            "Please fill out all fields to generate the outline (missing: "
            + ", ".join(missing)
            + ")."
        )
    return cleaned


@dataclass(frozen=True)
class ChapterStub:
    id: int
    title: str
    description: str

    def to_payload(self) -> Dict[str, str]:
        return {"title": self.title, "description": self.description}

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "description": self.description}


@dataclass(frozen=True)
class Outline:
    chapters: Tuple[ChapterStub, ...]

    @classmethod
    def from_entries(cls, entries: Sequence[Mapping[str, str]]) -> "Outline":
        """Build an outline, numbering stubs from 1 in the order given."""

        stubs = tuple(
            ChapterStub(id=index, title=entry["title"], description=entry["description"])
            for index, entry in enumerate(entries, start=1)
        )
        return cls(chapters=stubs)

    def __len__(self) -> int:
        return len(self.chapters)

    def __iter__(self):
        return iter(self.chapters)

    @property
    def titles(self) -> List[str]:
        return [stub.title for stub in self.chapters]

    def index_of(self, title: str) -> int:
        """Position of ``title`` in the outline, or -1 when it is not a stub title."""

        for index, stub in enumerate(self.chapters):
            if stub.title == title:
                return index
        return -1

    def get(self, stub_id: int) -> Optional[ChapterStub]:
        return next((stub for stub in self.chapters if stub.id == stub_id), None)

    def to_payload(self) -> List[Dict[str, str]]:
        return [stub.to_payload() for stub in self.chapters]


@dataclass(frozen=True)
class WrittenChapter:
    title: str
    content: str

    def to_payload(self) -> Dict[str, str]:
        return {"title": self.title, "content": self.content}


@dataclass(frozen=True)
class Progress:
    written: int
    total: int

    @property
    def complete(self) -> bool:
        return self.total > 0 and self.written >= self.total

    def label(self) -> str:
        return f"{self.written} / {self.total} chapters"

    def to_dict(self) -> Dict[str, Any]:
        return {"written": self.written, "total": self.total, "complete": self.complete}


@dataclass
class ManuscriptState:
    """Everything one browser session has produced so far."""

    book: Optional[BookSpec] = None
    outline: Optional[Outline] = None
    chapters: Tuple[WrittenChapter, ...] = ()
    pending: Set[int] = field(default_factory=set)
    outline_pending: bool = False
    # Identifies the outline request in flight; a reply carrying another token is stale.
    outline_request: Optional[str] = None

    @property
    def is_locked(self) -> bool:
        """The book form is locked once outline generation has begun."""

        return self.outline_pending or self.outline is not None

    def find_chapter(self, title: str) -> Optional[WrittenChapter]:
        return next((chapter for chapter in self.chapters if chapter.title == title), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "book": self.book.to_payload() if self.book else None,
            "outline": [stub.to_dict() for stub in self.outline] if self.outline else None,
            "chapters": [chapter.to_payload() for chapter in self.chapters],
            "pending": sorted(self.pending),
            "outline_pending": self.outline_pending,
        }
