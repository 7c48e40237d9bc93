from __future__ import annotations

from clawguard.security.redaction import redact_secrets, sanitize_for_log


def test_redacts_provider_keys_and_vault_tokens() -> None:
    text = "key sk-ant-REDACTED and token hvs.CAESIJabcdefghijklmnopqrstuv"
    out = redact_secrets(text)
    assert "sk-ant-api03" not in out
    assert "hvs.CAESIJ" not in out
    assert out.count("[REDACTED]") == 2


def test_redacts_key_value_pairs_and_bearer_headers() -> None:
    assert redact_secrets("secret_id=abc123") == "secret_id=[REDACTED]"
    assert "nango-key" not in redact_secrets("Authorization: Bearer nango-key-123456")


def test_leaves_ordinary_text_alone() -> None:
    assert redact_secrets("secret anthropic-api-key not found") == "secret anthropic-api-key not found"


def test_sanitize_for_log_redacts_sensitive_fields_deeply() -> None:
    data = {"secret_id": "x", "nested": {"client_token": "y", "keep": "z"}, "items": [{"value": "v"}]}
    out = sanitize_for_log(data)
    assert out["secret_id"] == "[REDACTED]"
    assert out["nested"]["client_token"] == "[REDACTED]"
    assert out["nested"]["keep"] == "z"
    assert out["items"][0]["value"] == "[REDACTED]"
    assert data["secret_id"] == "x"


def test_secret_names_survive_sanitizing() -> None:
    assert sanitize_for_log({"secret_name": "anthropic-api-key"}) == {"secret_name": "anthropic-api-key"}
