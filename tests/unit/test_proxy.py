from __future__ import annotations

import pytest

from clawguard.core.config import Config
from clawguard.core.exceptions import ConnectionNotFound, ProxyError
from clawguard.oauth.proxy import Connection, OAuthProxyClient, vault_key_provider
from clawguard.security import keystore as ks
from clawguard.security.keystore import MemoryStore
from clawguard.vault.session import VaultSessionManager
from tests import fakes


def test_list_connections(proxy_client: OAuthProxyClient) -> None:
    conns = proxy_client.list_connections()
    assert [c.provider_key for c in conns] == ["google-mail", "github", "slack"]


def test_revoke_all_is_per_item_independent(proxy_client: OAuthProxyClient, proxy: fakes.FakeProxy) -> None:
    proxy.fail_ids = {"conn-github"}
    report = proxy_client.revoke()

    assert [i.connection_id for i in report.items] == ["conn-gmail", "conn-github", "conn-slack"]
    assert report.revoked_count == 2
    assert report.failed_count == 1
    assert report.failed[0].status == 500
    assert proxy.deleted == ["conn-gmail", "conn-slack"]
    assert report.summary() == "revoked 2, failed 1"


def test_revoke_single_provider(proxy_client: OAuthProxyClient, proxy: fakes.FakeProxy) -> None:
    report = proxy_client.revoke("github")
    assert report.revoked_count == 1
    assert proxy.deleted == ["conn-github"]
    assert ("DELETE", "http://localhost:3003/connection/conn-github?provider_config_key=github") in proxy.requests


def test_revoke_unmatched_target(proxy_client: OAuthProxyClient, proxy: fakes.FakeProxy) -> None:
    report = proxy_client.revoke("dropbox")
    assert report.items == []
    assert report.matched == 0
    assert "no connections matched" in report.summary()
    assert proxy.deleted == []


def test_dry_run_deletes_nothing(proxy_client: OAuthProxyClient, proxy: fakes.FakeProxy) -> None:
    report = proxy_client.revoke(dry_run=True)
    assert report.matched == 3
    assert report.summary() == "dry run: 3 connection(s) would be revoked"
    assert proxy.deleted == []


def test_get_connection(proxy_client: OAuthProxyClient) -> None:
    assert proxy_client.get_connection("slack") == Connection("conn-slack", "slack")
    assert proxy_client.get_connection("conn-gmail").provider_key == "google-mail"

    proxy_client.revoke("slack")
    with pytest.raises(ConnectionNotFound):
        proxy_client.get_connection("slack")
    with pytest.raises(ValueError):
        proxy_client.get_connection("all")


def test_listing_failure_propagates(proxy_client: OAuthProxyClient, proxy: fakes.FakeProxy) -> None:
    proxy.list_status = 500
    with pytest.raises(ProxyError) as ei:
        proxy_client.revoke()
    assert ei.value.status == 500


def test_key_fetched_from_vault_under_short_admin_session(
    proxy_client: OAuthProxyClient, vault: fakes.FakeVault
) -> None:
    proxy_client.list_connections()
    proxy_client.list_connections()

    logins = [p for p in vault.paths() if p == "/v1/auth/approle/login"]
    assert len(logins) == 1
    assert vault.live_tokens() == []


def test_key_from_store_skips_vault(
    test_config: Config, proxy: fakes.FakeProxy, manager: VaultSessionManager, vault: fakes.FakeVault
) -> None:
    store = MemoryStore({ks.PROXY_KEY: fakes.PROXY_KEY})
    client = OAuthProxyClient(
        test_config.oauth,
        vault_key_provider(store, manager, test_config.oauth.secret_key_name),
        transport=proxy.transport(),
    )
    assert len(client.list_connections()) == 3
    assert vault.requests == []
    client.close()


def test_wrong_key_is_rejected(
    test_config: Config, proxy: fakes.FakeProxy, manager: VaultSessionManager
) -> None:
    client = OAuthProxyClient(test_config.oauth, lambda: "wrong", transport=proxy.transport())
    with pytest.raises(ProxyError) as ei:
        client.list_connections()
    assert ei.value.status == 401
    client.close()


def test_prime_then_seal_keeps_key_usable(
    proxy_client: OAuthProxyClient, vault: fakes.FakeVault, manager: VaultSessionManager
) -> None:
    assert proxy_client.prime() is True
    manager.seal(fakes.SEAL_TOKEN)
    assert proxy_client.revoke().revoked_count == 3

    proxy_client.forget_key()
    assert proxy_client.prime() is False


@pytest.mark.parametrize("error", [RuntimeError("keyring locked"), ValueError("wrong master password")])
def test_prime_reports_any_key_provider_failure(
    test_config: Config, proxy: fakes.FakeProxy, error: Exception
) -> None:
    def provider() -> str:
        raise error

    client = OAuthProxyClient(test_config.oauth, provider, transport=proxy.transport(), sleep=lambda s: None)
    assert client.prime() is False
    client.close()
