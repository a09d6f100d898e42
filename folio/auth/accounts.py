"""
Account storage backed by data/users.json in the site repository.

Handles login, registration, updates and deletion, and guarantees the
protected default administrator exists. The default account is
re-asserted on every load, so a hand-edited or half-written users file
heals itself the next time anyone touches it.
"""

from __future__ import annotations

import hmac
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from ..core.config import Config
from ..github.provider import ContentProvider, to_json_text
from ..utils.exceptions import (
    AuthError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from ..utils.logger import get_logger
from ..utils.timestamps import to_iso, utc_now
from .crypto import CredentialVault
from .models import (
    DEFAULT_USERNAME,
    ROLES,
    Account,
    AccountChanges,
    AccountPatch,
    AccountPublic,
    NewAccount,
    SessionUser,
)

logger = get_logger(__name__)

USERS_PATH = "data/users.json"


def find_account(accounts: List[Account], username: str) -> Optional[Account]:
    return next((a for a in accounts if a.matches(username)), None)


def _index_of(accounts: List[Account], username: str) -> int:
    for i, account in enumerate(accounts):
        if account.matches(username):
            return i
    return -1


def _same_secret(given: str, expected: str) -> bool:
    return hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


class AccountStore:
    """Operator accounts, loaded fresh from the provider on every call."""

    def __init__(
        self,
        provider: ContentProvider,
        vault: CredentialVault,
        config: Config,
        now: Callable[[], datetime] = utc_now,
    ):
        self.provider = provider
        self.vault = vault
        self.config = config
        self.now = now
        # Decrypted when the username is unknown so both failure paths cost the same
        self._decoy_record = vault.encrypt("decoy-credential")

    def default_email(self, username: str) -> str:
        return f"{username}@{self.config.email_domain}"

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _parse_records(self, raw: object) -> List[Account]:
        if not isinstance(raw, list):
            logger.warning("users.json is not a JSON array; ignoring it")
            return []
        accounts = []
        for i, record in enumerate(raw):
            try:
                accounts.append(Account.model_validate(record))
            except PydanticValidationError as e:
                name = record.get("username") if isinstance(record, dict) else None
                logger.warning("Skipping invalid account record", username=name or f"index_{i}", error=str(e))
        return accounts

    def load_persisted(self, strict: bool = False) -> List[Account]:
        """Accounts as stored, without the default-account reconciliation.

        Falls back to the ADMIN_USERS seed list, then to an empty list. With
        ``strict`` a failed read raises instead, so callers that write the
        file back never replace it with the fallback.
        """
        try:
            raw = self.provider.read_json(USERS_PATH, None)
            if raw is not None:
                return self._parse_records(raw)
        except UpstreamError as e:
            if strict:
                raise
            logger.error("Failed to load users from provider", error=str(e))

        if self.config.seed_accounts:
            return [
                Account(
                    username=seed.username,
                    credential=seed.encrypted_password,
                    role=seed.role if seed.role in ROLES else "admin",
                )
                for seed in self.config.seed_accounts
            ]
        return []

    def reconcile(self, accounts: List[Account]) -> List[Account]:
        """Return ``accounts`` with exactly one protected default admin.

        An account named like the default wins; otherwise the first one
        flagged ``isDefault`` is re-pinned. If neither exists a fresh default
        is inserted at the head, its password being the master secret.
        """
        accounts = list(accounts)
        idx = _index_of(accounts, DEFAULT_USERNAME)
        if idx == -1:
            idx = next((i for i, a in enumerate(accounts) if a.is_default), -1)

        if idx == -1:
            accounts.insert(
                0,
                Account(
                    username=DEFAULT_USERNAME,
                    credential=self.vault.encrypt(self.config.master_secret),
                    role="admin",
                    email=self.default_email(DEFAULT_USERNAME.lower()),
                    created_at=to_iso(self.now()),
                    is_default=True,
                ),
            )
            idx = 0
            logger.info("Default admin account restored")
        else:
            current = accounts[idx]
            username = current.username if current.matches(DEFAULT_USERNAME) else DEFAULT_USERNAME
            if current.role != "admin" or not current.is_default or username != current.username:
                logger.warning("Default admin account drifted; re-pinning", username=current.username)
            accounts[idx] = current.model_copy(
                update={"username": username, "role": "admin", "is_default": True}
            )

        for i, account in enumerate(accounts):
            if i != idx and account.is_default:
                accounts[i] = account.model_copy(update={"is_default": False})
        return accounts

    def load_accounts(self, strict: bool = False) -> List[Account]:
        return self.reconcile(self.load_persisted(strict=strict))

    def list_public(self) -> List[AccountPublic]:
        return [AccountPublic.from_account(a) for a in self.load_accounts()]

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def check_password(self, account: Account, password: str) -> bool:
        if account.is_plain_text:
            return _same_secret(password, account.credential)
        stored = self.vault.decrypt(account.credential)
        if stored is None:
            logger.error("Failed to decrypt password for user", username=account.username)
            return False
        return _same_secret(password, stored)

    def authenticate(self, username: str, password: str) -> Optional[SessionUser]:
        """Session identity for valid credentials, else None.

        Unknown usernames and wrong passwords are indistinguishable.
        """
        account = find_account(self.load_accounts(), username)
        if account is None:
            decoy = self.vault.decrypt(self._decoy_record) or ""
            _same_secret(password, decoy)
            return None
        if not self.check_password(account, password):
            return None
        return SessionUser(username=account.username, role=account.role)

    def authenticate_master(self, password: str) -> Optional[SessionUser]:
        """Single-operator login: the master secret alone, no username."""
        if self.config.master_secret and _same_secret(password, self.config.master_secret):
            return SessionUser(username=DEFAULT_USERNAME, role="admin")
        return None

    # ------------------------------------------------------------------
    # Pure mutations over a loaded account list
    # ------------------------------------------------------------------

    def apply_create(self, accounts: List[Account], new: NewAccount, role: Optional[str] = None) -> Tuple[List[Account], Account]:
        if find_account(accounts, new.username):
            raise ConflictError("Username already exists", reason="username_taken")
        account = Account(
            username=new.username.strip(),
            credential=self.vault.encrypt(new.password),
            role=role or new.role,
            email=new.email or self.default_email(new.username),
            created_at=to_iso(self.now()),
        )
        return accounts + [account], account

    def apply_update(
        self,
        accounts: List[Account],
        username: str,
        patch: AccountPatch,
        acting: SessionUser,
    ) -> Tuple[List[Account], Account]:
        idx = _index_of(accounts, username)
        if idx == -1:
            raise NotFoundError("User not found", reason="user_not_found")
        target = accounts[idx]
        is_self = target.matches(acting.username)
        renaming = patch.username is not None and not target.matches(patch.username)

        if target.is_default:
            if patch.role is not None and patch.role != "admin":
                raise ValidationError("Cannot change default admin user role", reason="default_account_protected")
            if renaming:
                raise ValidationError("Cannot change default admin username", reason="default_account_protected")

        if acting.role != "admin":
            if not is_self or patch.role is not None or patch.username is not None:
                raise ForbiddenError("Admin access required", reason="admin_required")
        if is_self:
            if patch.role is not None and patch.role != target.role:
                raise ValidationError("Cannot change your own role", reason="self_modification")
            if renaming:
                raise ValidationError("Cannot rename your own account", reason="self_modification")

        changes = {}
        if patch.password:
            changes["credential"] = self.vault.encrypt(patch.password)
            changes["is_plain_text"] = False
        if patch.role is not None:
            changes["role"] = patch.role
        if patch.email is not None:
            changes["email"] = patch.email or self.default_email(target.username)
        if renaming:
            if find_account(accounts, patch.username):
                raise ConflictError("Username already exists", reason="username_taken")
            changes["username"] = patch.username

        updated = target.model_copy(update=changes)
        accounts = list(accounts)
        accounts[idx] = updated
        return accounts, updated

    def apply_delete(self, accounts: List[Account], username: str, acting: SessionUser) -> List[Account]:
        if acting.role != "admin":
            raise ForbiddenError("Admin access required", reason="admin_required")
        idx = _index_of(accounts, username)
        if idx == -1:
            raise NotFoundError("User not found", reason="user_not_found")
        target = accounts[idx]
        if target.is_default:
            raise ValidationError("Cannot delete default admin user", reason="default_account_protected")
        if target.matches(acting.username):
            raise ValidationError("Cannot delete your own account", reason="self_deletion")
        return accounts[:idx] + accounts[idx + 1:]

    def apply_changes(
        self, accounts: List[Account], changes: AccountChanges, acting: SessionUser
    ) -> Tuple[List[Account], int]:
        """Batch ``users`` section: updates, then creates, then deletes.

        Updates and deletes naming an account that no longer exists are
        skipped, so replaying a batch is a no-op for them. Returns the new
        list and the number of skipped entries.
        """
        accounts = self.reconcile(accounts)
        skipped = 0
        for update in changes.update:
            if find_account(accounts, update.username) is None:
                logger.warning("Skipping update of missing user", username=update.username)
                skipped += 1
                continue
            accounts, _ = self.apply_update(accounts, update.username, update.to_patch(), acting)
        for new in changes.create:
            accounts, _ = self.apply_create(accounts, new)
        for username in changes.delete:
            if find_account(accounts, username) is None:
                logger.info("User already deleted", username=username)
                skipped += 1
                continue
            accounts = self.apply_delete(accounts, username, acting)
        return self.reconcile(accounts), skipped

    # ------------------------------------------------------------------
    # Persisted operations (single-file commits)
    # ------------------------------------------------------------------

    def _persist(self, accounts: List[Account], message: str) -> str:
        content = to_json_text([a.to_record() for a in self.reconcile(accounts)])
        return self.provider.write_file(USERS_PATH, content, message)

    def register(self, new: NewAccount, acting: Optional[SessionUser]) -> Account:
        """Create an account.

        While no account has ever been stored anyone may register, and that
        first account is always an admin. Afterwards an admin session is
        required.
        """
        persisted = self.load_persisted(strict=True)
        bootstrap = not persisted
        if not bootstrap:
            if acting is None:
                raise AuthError("Authentication required. Please login as admin to register new users.", reason="missing_token")
            if acting.role != "admin":
                raise ForbiddenError("Admin access required for user registration", reason="admin_required")

        accounts, account = self.apply_create(
            self.reconcile(persisted), new, role="admin" if bootstrap else None
        )
        self._persist(accounts, f"Add new user: {account.username} - {to_iso(self.now())}")
        logger.info("User registered", username=account.username, role=account.role, bootstrap=bootstrap)
        return account

    def update_account(self, username: str, patch: AccountPatch, acting: SessionUser) -> Account:
        accounts, updated = self.apply_update(self.load_accounts(strict=True), username, patch, acting)
        self._persist(accounts, f"Update user: {username} - {to_iso(self.now())}")
        logger.info("User updated", username=updated.username, by=acting.username)
        return updated

    def delete_account(self, username: str, acting: SessionUser) -> None:
        accounts = self.apply_delete(self.load_accounts(strict=True), username, acting)
        self._persist(accounts, f"Delete user: {username} - {to_iso(self.now())}")
        logger.info("User deleted", username=username, by=acting.username)
