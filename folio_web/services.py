"""
Service wiring.

Services are built on first use rather than at app creation, so a
deployment missing ADMIN_PASSWORD or GitHub credentials still starts and
answers every request with a 500 configuration_error.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from folio.auth.accounts import AccountStore
from folio.auth.crypto import CredentialVault
from folio.auth.tokens import TokenService
from folio.batch.documents import DocumentService
from folio.batch.orchestrator import BatchOrchestrator
from folio.core.config import Config
from folio.github.provider import ContentProvider, GitHubProvider


@dataclass
class Services:
    config: Config
    provider: ContentProvider
    vault: CredentialVault
    tokens: TokenService
    accounts: AccountStore
    documents: DocumentService
    batches: BatchOrchestrator


def build_services(config: Config, provider: Optional[ContentProvider] = None) -> Services:
    vault = CredentialVault(config.master_secret)
    provider = provider or GitHubProvider(config.provider)
    accounts = AccountStore(provider, vault, config)
    return Services(
        config=config,
        provider=provider,
        vault=vault,
        tokens=TokenService(vault.signing_secret),
        accounts=accounts,
        documents=DocumentService(provider),
        batches=BatchOrchestrator(provider, accounts),
    )


def get_services(request: Request) -> Services:
    state = request.app.state
    if state.services is None:
        state.services = build_services(state.config, state.provider)
    return state.services
