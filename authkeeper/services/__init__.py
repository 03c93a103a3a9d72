"""Service layer exports."""

from .authorization_flow import AuthorizationFlowRunner
from .credential_handle import CredentialHandle
from .credential_manager import CredentialManager
from .legacy_import import MigrationResult, migrate_legacy_tokens
from .token_cipher import TokenCipherService

__all__ = [
    "AuthorizationFlowRunner",
    "CredentialHandle",
    "CredentialManager",
    "MigrationResult",
    "TokenCipherService",
    "migrate_legacy_tokens",
]
