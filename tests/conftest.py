from __future__ import annotations

import shutil
import sys
from pathlib import Path

import pytest

# pytest may run without installing the project; ensure repo root is importable.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from clawguard.core.config import Config  # noqa: E402
from clawguard.incident.actuators import HostActuator  # noqa: E402
from clawguard.incident.controller import RevocationController  # noqa: E402
from clawguard.oauth.proxy import OAuthProxyClient, vault_key_provider  # noqa: E402
from clawguard.security import keystore as ks  # noqa: E402
from clawguard.security.keystore import MemoryStore  # noqa: E402
from clawguard.vault.models import AppRoleCredential, Role  # noqa: E402
from clawguard.vault.session import VaultSessionManager  # noqa: E402
from tests import fakes  # noqa: E402


@pytest.fixture()
def temp_dir(tmp_path: Path) -> Path:
    return tmp_path


@pytest.fixture()
def test_config(temp_dir: Path) -> Config:
    """Config fixture that points data_dir and the gateway files at a temp directory."""

    cfg_src = REPO_ROOT / "config" / "default.yaml"
    cfg_dst_dir = temp_dir / "config"
    cfg_dst_dir.mkdir(parents=True, exist_ok=True)
    shutil.copy2(cfg_src, cfg_dst_dir / "default.yaml")

    c = Config.from_yaml(cfg_dst_dir / "default.yaml")
    vault = c.vault.model_copy(update={"wait_attempts": 2, "wait_interval_s": 0.0})
    lockdown = c.lockdown.model_copy(
        update={
            "gateway_log": temp_dir / "openclaw" / "logs" / "gateway.log",
            "gateway_config": temp_dir / "openclaw" / "openclaw.json",
        }
    )
    return c.model_copy(
        update={"data_dir": temp_dir / "data", "config_dir": cfg_dst_dir, "vault": vault, "lockdown": lockdown}
    )


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def vault() -> fakes.FakeVault:
    v = fakes.FakeVault()
    v.put("anthropic-api-key", "sk-ant-test-0000000000")
    v.put("nango-encryption-key", fakes.PROXY_KEY)
    return v


@pytest.fixture()
def proxy() -> fakes.FakeProxy:
    p = fakes.FakeProxy()
    p.add("conn-gmail", "google-mail")
    p.add("conn-github", "github")
    p.add("conn-slack", "slack")
    return p


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore(
        {
            ks.AGENT_ROLE_ID: fakes.AGENT_ROLE_ID,
            ks.AGENT_SECRET_ID: fakes.AGENT_SECRET_ID,
            ks.ADMIN_ROLE_ID: fakes.ADMIN_ROLE_ID,
            ks.ADMIN_SECRET_ID: fakes.ADMIN_SECRET_ID,
            ks.UNSEAL_KEY: fakes.UNSEAL_KEY,
        }
    )


@pytest.fixture()
def agent_credential() -> AppRoleCredential:
    return AppRoleCredential(role=Role.AGENT, role_id=fakes.AGENT_ROLE_ID, secret_id=fakes.AGENT_SECRET_ID)


@pytest.fixture()
def admin_credential() -> AppRoleCredential:
    return AppRoleCredential(role=Role.ADMIN, role_id=fakes.ADMIN_ROLE_ID, secret_id=fakes.ADMIN_SECRET_ID)


@pytest.fixture()
def manager(test_config: Config, vault: fakes.FakeVault, sleeps: list[float]) -> VaultSessionManager:
    m = VaultSessionManager(test_config.vault, transport=vault.transport(), sleep=sleeps.append)
    yield m
    m.close()


@pytest.fixture()
def proxy_client(
    test_config: Config,
    proxy: fakes.FakeProxy,
    store: MemoryStore,
    manager: VaultSessionManager,
    sleeps: list[float],
) -> OAuthProxyClient:
    client = OAuthProxyClient(
        test_config.oauth,
        vault_key_provider(store, manager, test_config.oauth.secret_key_name),
        transport=proxy.transport(),
        sleep=sleeps.append,
    )
    yield client
    client.close()


@pytest.fixture()
def command_runner() -> fakes.FakeCommandRunner:
    return fakes.FakeCommandRunner()


@pytest.fixture()
def controller(
    test_config: Config,
    manager: VaultSessionManager,
    store: MemoryStore,
    proxy_client: OAuthProxyClient,
    command_runner: fakes.FakeCommandRunner,
) -> RevocationController:
    actuator = HostActuator(test_config.lockdown, runner=command_runner)
    return RevocationController(manager, store, actuator, proxy=proxy_client)
