# FILE: test_unit_app_config.py

import pytest

from toolloom.core.app_config import AppConfig, MCPServerConfig, config_snapshot, expand_env, load_app_config
from toolloom.core.exceptions import ConfigFileError
from toolloom.models.provider_model import ProviderType
from toolloom.providers.openai_provider import OpenAIProvider


def test_load_nested_yaml_with_env_expansion(tmp_path, monkeypatch):
    monkeypatch.setenv("TEST_OPENAI_KEY", "sk-from-env")
    path = tmp_path / "toolloom.yml"
    path.write_text(
        """
toolloom:
  default_provider: openai
  providers:
    openai:
      type: openai
      api_key: ${TEST_OPENAI_KEY}
      model: gpt-4o
    github-copilot:
      type: github_copilot
  mcp_servers:
    - name: files
      url: http://localhost:8000/mcp
      allow_tools: [read_file, " list_dir "]
""",
        encoding="utf-8",
    )

    cfg = load_app_config(str(path))

    assert cfg.default_provider == "openai"
    assert cfg.providers["openai"].api_key == "sk-from-env"
    assert cfg.providers["openai"].id == "openai"
    assert cfg.providers["github-copilot"].type == ProviderType.GITHUB_COPILOT
    assert cfg.mcp_servers[0].allow_tools == ["read_file", "list_dir"]
    assert cfg.mcp_servers[0].tool_name_prefix == "files__"


def test_missing_file_is_optional_when_requested(tmp_path):
    cfg = load_app_config(str(tmp_path / "absent.yml"), missing_ok=True)
    assert cfg == AppConfig()

    with pytest.raises(ConfigFileError):
        load_app_config(str(tmp_path / "absent.yml"))


def test_invalid_yaml_raises_config_error(tmp_path):
    path = tmp_path / "bad.yml"
    path.write_text("providers: [unclosed", encoding="utf-8")

    with pytest.raises(ConfigFileError):
        load_app_config(str(path))


def test_unknown_default_provider_is_rejected(tmp_path):
    path = tmp_path / "cfg.yml"
    path.write_text("default_provider: missing\nproviders: {}\n", encoding="utf-8")

    with pytest.raises(ConfigFileError):
        load_app_config(str(path))


def test_server_names_may_not_contain_separator():
    with pytest.raises(ValueError):
        MCPServerConfig(name="bad__name", url="http://x")


def test_overlapping_allow_and_deny_lists_are_rejected():
    with pytest.raises(ValueError):
        MCPServerConfig(name="files", url="http://x", allow_tools=["a"], deny_tools=["a"])


def test_duplicate_enabled_servers_are_rejected():
    with pytest.raises(ValueError):
        AppConfig.model_validate({
            "mcp_servers": [{"name": "files", "url": "http://a"}, {"name": "files", "url": "http://b"}],
        })


def test_snapshot_never_contains_secrets():
    cfg = AppConfig.model_validate({
        "providers": {"openai": {"type": "openai", "api_key": "sk-secret"}},
        "mcp_servers": [{"name": "files", "url": "http://a", "headers": {"Authorization": "Bearer t0k"}}],
    })

    snap = config_snapshot(cfg)

    assert "sk-secret" not in repr(snap)
    assert "t0k" not in repr(snap)
    assert snap["providers"][0]["has_api_key"] is True
    assert snap["mcp_servers"][0]["header_keys"] == ["Authorization"]


def test_absolute_path_to_missing_file_raises_config_error(tmp_path):
    missing = tmp_path / "nested" / "toolloom.yml"
    assert missing.is_absolute()

    with pytest.raises(ConfigFileError, match="not found"):
        load_app_config(str(missing))


def test_unreadable_path_raises_config_error(tmp_path):
    # A directory resolves but cannot be read as a file.
    with pytest.raises(ConfigFileError):
        load_app_config(str(tmp_path))


def test_unset_env_reference_leaves_provider_unconfigured(tmp_path, monkeypatch):
    monkeypatch.delenv("TOOLLOOM_TEST_UNSET_KEY", raising=False)
    path = tmp_path / "toolloom.yml"
    path.write_text(
        """
providers:
  openai:
    type: openai
    api_key: ${TOOLLOOM_TEST_UNSET_KEY}
    model: gpt-4o
""",
        encoding="utf-8",
    )

    cfg = load_app_config(str(path))

    assert cfg.providers["openai"].api_key == ""
    provider = OpenAIProvider("openai")
    provider.configure(cfg.providers["openai"])
    assert provider.is_configured is False


def test_expand_env_handles_both_reference_forms(monkeypatch):
    monkeypatch.setenv("TOOLLOOM_TEST_HOST", "example.com")
    monkeypatch.delenv("TOOLLOOM_TEST_UNSET_KEY", raising=False)

    text = expand_env("http://$TOOLLOOM_TEST_HOST/${TOOLLOOM_TEST_HOST}?k=${TOOLLOOM_TEST_UNSET_KEY}")

    assert text == "http://example.com/example.com?k="
