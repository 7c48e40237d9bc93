"""clawguard.oauth

OAuth proxy client and bulk revocation.
"""

from clawguard.oauth.proxy import Connection, OAuthProxyClient, RevocationItem, RevocationReport, vault_key_provider

__all__ = ["Connection", "OAuthProxyClient", "RevocationItem", "RevocationReport", "vault_key_provider"]
