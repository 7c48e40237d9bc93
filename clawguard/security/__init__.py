"""clawguard.security

Credential store, redaction and audit primitives.
"""

from clawguard.security.audit import AuditLogger, NullAuditLogger
from clawguard.security.keystore import CredentialStore, Keystore, KeystoreTier, MemoryStore
from clawguard.security.redaction import redact_secrets, sanitize_for_log

__all__ = [
    "AuditLogger",
    "CredentialStore",
    "Keystore",
    "KeystoreTier",
    "MemoryStore",
    "NullAuditLogger",
    "redact_secrets",
    "sanitize_for_log",
]
