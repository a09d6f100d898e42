"""
Folio configuration.

All values are loaded from environment variables (typically via .env):

- ADMIN_PASSWORD     master secret; derives the credential key and token secret
- GITHUB_TOKEN       provider API token
- GITHUB_OWNER       repository owner (falls back to VERCEL_GIT_REPO_OWNER)
- GITHUB_REPO        repository name  (falls back to VERCEL_GIT_REPO_SLUG)
- GITHUB_API_URL     optional; defaults to https://api.github.com
- GITHUB_BRANCH      optional; skips default-branch discovery
- ADMIN_USERS        optional seed list "user:encryptedPassword:role,..."
- ALLOWED_ORIGIN     CORS origin of the public site
- EMAIL_DOMAIN       domain for accounts created without an e-mail

The resulting Config is passed explicitly into every service; business
logic never reads the process environment itself.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional


@dataclass(frozen=True)
class ProviderCredentials:
    token: str
    owner: str
    repo: str
    api_base_url: str = "https://api.github.com"
    branch: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.token and self.owner and self.repo)


@dataclass(frozen=True)
class SeedAccount:
    username: str
    encrypted_password: str
    role: str = "admin"


@dataclass(frozen=True)
class Config:
    master_secret: str
    provider: ProviderCredentials
    seed_accounts: List[SeedAccount] = field(default_factory=list)
    allowed_origin: str = "http://localhost:8000"
    email_domain: str = "example.com"
    environment: str = "development"
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def parse_seed_accounts(raw: str) -> List[SeedAccount]:
    """Parse ADMIN_USERS ("name:encrypted:role,...").

    The encrypted value itself contains colons (iv:tag:ciphertext), so the
    role is only taken from a trailing segment that is not part of it.
    """
    seeds: List[SeedAccount] = []
    for entry in (raw or "").split(","):
        entry = entry.strip()
        if not entry:
            continue
        username, _, rest = entry.partition(":")
        parts = rest.split(":")
        role = "admin"
        if len(parts) in (2, 4):
            role = parts.pop()
        seeds.append(
            SeedAccount(
                username=username.strip(),
                encrypted_password=":".join(parts),
                role=role.strip() or "admin",
            )
        )
    return seeds


def load_config(env: Optional[Mapping[str, str]] = None) -> Config:
    """Build a Config from ``env`` (defaults to os.environ)."""
    env = os.environ if env is None else env

    def get(name: str, default: str = "") -> str:
        return (env.get(name) or default).strip()

    provider = ProviderCredentials(
        token=get("GITHUB_TOKEN"),
        owner=get("GITHUB_OWNER") or get("VERCEL_GIT_REPO_OWNER"),
        repo=get("GITHUB_REPO") or get("VERCEL_GIT_REPO_SLUG"),
        api_base_url=get("GITHUB_API_URL", "https://api.github.com").rstrip("/"),
        branch=get("GITHUB_BRANCH") or None,
    )
    return Config(
        master_secret=env.get("ADMIN_PASSWORD") or "",
        provider=provider,
        seed_accounts=parse_seed_accounts(get("ADMIN_USERS")),
        allowed_origin=get("ALLOWED_ORIGIN", "http://localhost:8000"),
        email_domain=get("EMAIL_DOMAIN", "example.com"),
        environment=get("ENVIRONMENT", "development").lower(),
        log_level=get("LOG_LEVEL", "INFO"),
        log_format=get("LOG_FORMAT", "json"),
        log_file=get("LOG_FILE") or None,
    )
