"""
Channel Services Module
Connects restaurants to WhatsApp numbers and Facebook Pages and routes their webhooks
"""

from .connection_orchestrator import ConnectionOrchestrator, build_webhook_url, connection_state
from .credential_store import CredentialStore, CredentialValues, credential_store
from .identity_resolver import IdentityResolver, LookupState, ResolvedField, ResolvedIdentity
from .meta_graph_client import MetaGraphClient
from .token_exchanger import ExchangedToken, TokenExchanger
from .token_verifier import TokenVerifier, VerificationResult
from .webhook_router import RoutedChannel, WebhookRouter, webhook_router

__all__ = [
    "ConnectionOrchestrator",
    "build_webhook_url",
    "connection_state",
    "CredentialStore",
    "CredentialValues",
    "credential_store",
    "IdentityResolver",
    "LookupState",
    "ResolvedField",
    "ResolvedIdentity",
    "MetaGraphClient",
    "ExchangedToken",
    "TokenExchanger",
    "TokenVerifier",
    "VerificationResult",
    "RoutedChannel",
    "WebhookRouter",
    "webhook_router",
]
