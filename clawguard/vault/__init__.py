"""clawguard.vault

Vault session management, secret fetching and the per-task credential cache.
"""

from clawguard.vault.cache import CredentialCache, LoadResult, env_name
from clawguard.vault.fetcher import SecretFetcher, validate_name
from clawguard.vault.models import AppRoleCredential, Role, SecretEntry, SecretValue, SessionToken
from clawguard.vault.session import VaultSession, VaultSessionManager

__all__ = [
    "AppRoleCredential",
    "CredentialCache",
    "LoadResult",
    "Role",
    "SecretEntry",
    "SecretFetcher",
    "SecretValue",
    "SessionToken",
    "VaultSession",
    "VaultSessionManager",
    "env_name",
    "validate_name",
]
