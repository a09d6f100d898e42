"""
Account and session models.

Accounts are persisted in data/users.json with the field names the admin
panel has always used (encryptedPassword, createdAt, isDefault, ...), so
the models carry camelCase aliases and accept either spelling.
"""

from __future__ import annotations

from typing import List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..utils.exceptions import ValidationError

Role = Literal["admin", "editor", "viewer"]
ROLES = ("admin", "editor", "viewer")

USERNAME_PATTERN = r"^[a-zA-Z0-9_]{3,20}$"
MIN_PASSWORD_LENGTH = 6

DEFAULT_USERNAME = "Admin"

M = TypeVar("M", bound=BaseModel)


class Account(BaseModel):
    """Stored operator account."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    username: str
    credential: str = Field(alias="encryptedPassword")
    # Records written before roles existed were all administrators
    role: Role = "admin"
    email: Optional[str] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    is_default: bool = Field(default=False, alias="isDefault")
    is_plain_text: bool = Field(default=False, alias="isPlainText")

    def matches(self, username: str) -> bool:
        return self.username.lower() == (username or "").lower()

    def to_record(self) -> dict:
        record = self.model_dump(by_alias=True, exclude_none=True)
        if not self.is_plain_text:
            record.pop("isPlainText", None)
        return record


class SessionUser(BaseModel):
    """Identity carried inside a session token."""

    model_config = ConfigDict(frozen=True)

    username: str
    role: Role


class AccountPublic(BaseModel):
    """Account as shown to the browser. Never carries credentials."""

    model_config = ConfigDict(populate_by_name=True)

    username: str
    role: Role
    email: Optional[str] = None
    created_at: Optional[str] = Field(default=None, serialization_alias="createdAt")
    is_default: bool = Field(default=False, serialization_alias="isDefault")

    @classmethod
    def from_account(cls, account: Account) -> "AccountPublic":
        return cls(
            username=account.username,
            role=account.role,
            email=account.email,
            created_at=account.created_at,
            is_default=account.is_default,
        )


class NewAccount(BaseModel):
    """Registration request."""

    username: str = Field(pattern=USERNAME_PATTERN)
    password: str = Field(min_length=MIN_PASSWORD_LENGTH)
    role: Role = "editor"
    email: Optional[str] = None


class AccountPatch(BaseModel):
    """Partial update of an account.

    Only fields that are set take part in the update; ``username`` renames
    the account.
    """

    username: Optional[str] = Field(default=None, pattern=USERNAME_PATTERN)
    password: Optional[str] = Field(default=None, min_length=MIN_PASSWORD_LENGTH)
    role: Optional[Role] = None
    email: Optional[str] = None


def parse_model(model: Type[M], data: object) -> M:
    """Validate ``data`` into ``model``, raising the domain ValidationError."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ())) or "body"
        raise ValidationError(f"Invalid {field}: {first.get('msg', 'invalid value')}")


class AccountUpdate(BaseModel):
    """One queued account update inside a batch, keyed by username."""

    username: str
    password: Optional[str] = Field(default=None, min_length=MIN_PASSWORD_LENGTH)
    role: Optional[Role] = None
    email: Optional[str] = None

    def to_patch(self) -> AccountPatch:
        return AccountPatch(password=self.password, role=self.role, email=self.email)


class AccountChanges(BaseModel):
    """The ``users`` section of a batch request."""

    create: List[NewAccount] = Field(default_factory=list)
    update: List[AccountUpdate] = Field(default_factory=list)
    delete: List[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.create or self.update or self.delete)
