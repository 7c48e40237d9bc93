"""clawguard.vault.credentials

AppRole pairs come from the credential store and are held only long enough to
log in.
"""

from __future__ import annotations

from clawguard.core.exceptions import ConfigError
from clawguard.security import keystore as ks
from clawguard.vault.models import AppRoleCredential, Role

_SLOTS: dict[Role, tuple[str, str]] = {
    Role.AGENT: (ks.AGENT_ROLE_ID, ks.AGENT_SECRET_ID),
    Role.ADMIN: (ks.ADMIN_ROLE_ID, ks.ADMIN_SECRET_ID),
}


def find_credential(store: ks.CredentialStore, role: Role) -> AppRoleCredential | None:
    role_slot, secret_slot = _SLOTS[role]
    role_id = ks.get_optional(store, role_slot)
    secret_id = ks.get_optional(store, secret_slot)
    if not role_id or not secret_id:
        return None
    return AppRoleCredential(role=role, role_id=role_id, secret_id=secret_id)


def require_credential(store: ks.CredentialStore, role: Role) -> AppRoleCredential:
    cred = find_credential(store, role)
    if cred is None:
        role_slot, secret_slot = _SLOTS[role]
        raise ConfigError(f"{role} AppRole not found in credential store (slots: {role_slot}, {secret_slot})")
    return cred
