"""
Change-set and batch models.

A batch request carries, per collection, the net create/update/delete
operations the browser accumulated. Items created in the browser have no
real id yet; the server assigns one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field

from ..auth.accounts import USERS_PATH
from ..auth.models import AccountChanges

PLACEHOLDER_PREFIX = "temp_"

Scalar = Union[str, int, float]


@dataclass(frozen=True)
class Pending:
    """An item that exists only in the browser's change buffer."""

    draft_id: str

    @property
    def wire_id(self) -> str:
        return f"{PLACEHOLDER_PREFIX}{self.draft_id}"


@dataclass(frozen=True)
class Persisted:
    """An item stored in the repository under a server-assigned id."""

    id: str

    @property
    def wire_id(self) -> str:
        return self.id


ItemRef = Union[Pending, Persisted]


def parse_ref(raw: Any) -> Optional[ItemRef]:
    """Classify a wire id. The placeholder prefix is only ever read here."""
    if raw is None or raw == "":
        return None
    raw = str(raw)
    if raw.startswith(PLACEHOLDER_PREFIX):
        return Pending(raw[len(PLACEHOLDER_PREFIX):])
    return Persisted(raw)


class ProductFields(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    category: Optional[str] = None
    price: Optional[Scalar] = None
    image: Optional[str] = None
    alt: Optional[str] = None


class GalleryFields(BaseModel):
    model_config = ConfigDict(extra="allow")

    image: Optional[str] = None
    alt: Optional[str] = None


class HeroFields(BaseModel):
    model_config = ConfigDict(extra="allow")

    image: Optional[str] = None


@dataclass(frozen=True)
class CollectionSpec:
    name: str
    path: str
    fields: Type[BaseModel]


ITEM_COLLECTIONS: Dict[str, CollectionSpec] = {
    "products": CollectionSpec("products", "data/products.json", ProductFields),
    "gallery": CollectionSpec("gallery", "data/gallery.json", GalleryFields),
    "hero": CollectionSpec("hero", "data/hero.json", HeroFields),
}
CONTENT_PATH = "data/content.json"
SECTION_ORDER = ("products", "gallery", "hero", "content", "users")
SECTION_PATHS = {
    **{name: spec.path for name, spec in ITEM_COLLECTIONS.items()},
    "content": CONTENT_PATH,
    "users": USERS_PATH,
}


class ItemChanges(BaseModel):
    """Change-set for one id-keyed collection."""

    create: List[Dict[str, Any]] = Field(default_factory=list)
    update: List[Dict[str, Any]] = Field(default_factory=list)
    delete: List[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.create or self.update or self.delete)


class ContentChange(BaseModel):
    """The content document has no ids: ``update`` is the whole new document."""

    update: Optional[Dict[str, Any]] = None

    def is_empty(self) -> bool:
        return self.update is None


class BatchRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    products: Optional[ItemChanges] = None
    gallery: Optional[ItemChanges] = None
    hero: Optional[ItemChanges] = None
    content: Optional[ContentChange] = None
    users: Optional[AccountChanges] = None

    def pending_sections(self) -> List[str]:
        """Sections with at least one queued operation, in commit order."""
        return [
            name
            for name in SECTION_ORDER
            if getattr(self, name) is not None and not getattr(self, name).is_empty()
        ]

    def touches_accounts(self) -> bool:
        return self.users is not None and not self.users.is_empty()


class CollectionResult(BaseModel):
    success: bool = True
    changed: bool = False
    count: Optional[int] = None
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0


class BatchResult(BaseModel):
    success: bool = True
    committed: bool = False
    message: str
    commit_sha: Optional[str] = Field(default=None, serialization_alias="commitSha")
    results: Dict[str, CollectionResult] = Field(default_factory=dict)
