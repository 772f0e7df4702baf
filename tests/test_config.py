"""Tests for ferry.config: TOML config loading, CLI merging and provider settings."""

import argparse

import pytest

from ferry.config import (
    _UNSET,
    ConfigError,
    ProviderSettings,
    apply_config_to_args,
    global_config_dir,
    load_config,
    normalize_provider,
    resolve_provider_settings,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_toml(path, content):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _make_args(**overrides):
    """Build a namespace mimicking build_parser() with _UNSET sentinels."""
    defaults = {
        "provider": _UNSET,
        "model": _UNSET,
        "max_tokens": _UNSET,
        "temperature": _UNSET,
        "timeout": _UNSET,
        "enable_tools": _UNSET,
        "system_prompt": _UNSET,
        "no_system_prompt": _UNSET,
        "quiet": _UNSET,
        "color": _UNSET,
        "no_color": _UNSET,
    }
    defaults.update(overrides)
    return argparse.Namespace(**defaults)


@pytest.fixture
def xdg(tmp_path, monkeypatch):
    global_dir = tmp_path / "global_cfg"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(global_dir))
    return global_dir / "ferry"


# ===========================================================================
# Config loading
# ===========================================================================


class TestLoadConfig:
    def test_missing_files_returns_empty(self, tmp_path, xdg):
        assert load_config(tmp_path) == {}

    def test_global_dir_respects_xdg(self, xdg):
        assert global_config_dir() == xdg

    def test_global_dir_fallback(self, monkeypatch, tmp_path):
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        assert global_config_dir() == tmp_path / ".config" / "ferry"

    def test_global_only(self, tmp_path, xdg):
        _write_toml(xdg / "config.toml", 'provider = "openai"\n')
        assert load_config(tmp_path / "project") == {"provider": "openai"}

    def test_project_overrides_global(self, tmp_path, xdg):
        _write_toml(xdg / "config.toml", 'provider = "openai"\nmax_tokens = 10\n')
        project = tmp_path / "project"
        _write_toml(project / "ferry.toml", 'provider = "google"\n')
        result = load_config(project)
        assert result == {"provider": "google", "max_tokens": 10}

    def test_provider_alias_normalized(self, tmp_path, xdg):
        _write_toml(tmp_path / "ferry.toml", 'provider = "Claude"\n')
        assert load_config(tmp_path)["provider"] == "anthropic"

    def test_unknown_provider(self, tmp_path, xdg):
        _write_toml(tmp_path / "ferry.toml", 'provider = "llama"\n')
        with pytest.raises(ConfigError, match="unknown provider"):
            load_config(tmp_path)

    def test_invalid_toml(self, tmp_path, xdg):
        _write_toml(tmp_path / "ferry.toml", "provider = \n")
        with pytest.raises(ConfigError, match="invalid TOML"):
            load_config(tmp_path)

    def test_type_mismatch(self, tmp_path, xdg):
        _write_toml(tmp_path / "ferry.toml", 'max_tokens = "lots"\n')
        with pytest.raises(ConfigError, match="'max_tokens' expected int, got str"):
            load_config(tmp_path)

    def test_bool_rejected_for_numbers(self, tmp_path, xdg):
        _write_toml(tmp_path / "ferry.toml", "temperature = true\n")
        with pytest.raises(ConfigError, match="got bool"):
            load_config(tmp_path)

    def test_int_temperature_accepted(self, tmp_path, xdg):
        _write_toml(tmp_path / "ferry.toml", "temperature = 1\n")
        assert load_config(tmp_path)["temperature"] == 1

    def test_non_positive_max_tokens(self, tmp_path, xdg):
        _write_toml(tmp_path / "ferry.toml", "max_tokens = 0\n")
        with pytest.raises(ConfigError, match="must be positive"):
            load_config(tmp_path)

    def test_unknown_key_warned_and_dropped(self, tmp_path, xdg, capsys):
        _write_toml(tmp_path / "ferry.toml", 'api_key = "sk-123"\nquiet = true\n')
        result = load_config(tmp_path)
        assert result == {"quiet": True}
        assert "unknown config key 'api_key'" in capsys.readouterr().err

    def test_system_prompt_exclusion_in_one_file(self, tmp_path, xdg):
        _write_toml(
            tmp_path / "ferry.toml", 'system_prompt = "x"\nno_system_prompt = true\n'
        )
        with pytest.raises(ConfigError, match="mutually exclusive"):
            load_config(tmp_path)

    def test_system_prompt_exclusion_across_files(self, tmp_path, xdg):
        _write_toml(xdg / "config.toml", 'system_prompt = "x"\n')
        _write_toml(tmp_path / "ferry.toml", "no_system_prompt = true\n")
        with pytest.raises(ConfigError, match="across global and project"):
            load_config(tmp_path)


# ===========================================================================
# CLI merge
# ===========================================================================


class TestApplyConfigToArgs:
    def test_cli_wins(self):
        args = _make_args(model="cli-model")
        apply_config_to_args(args, {"model": "file-model"})
        assert args.model == "cli-model"

    def test_config_fills_unset(self):
        args = _make_args()
        apply_config_to_args(args, {"provider": "google", "quiet": True})
        assert args.provider == "google"
        assert args.quiet is True

    def test_defaults_swept(self):
        args = _make_args()
        apply_config_to_args(args, {})
        assert args.provider == "anthropic"
        assert args.model is None
        assert args.quiet is False
        assert args.no_system_prompt is False
        assert args.color is False and args.no_color is False

    def test_color_key_drives_both_flags(self):
        args = _make_args()
        apply_config_to_args(args, {"color": False})
        assert args.color is False
        assert args.no_color is True

    def test_cli_color_flag_beats_config(self):
        args = _make_args(color=True)
        apply_config_to_args(args, {"color": False})
        assert args.color is True
        assert args.no_color is False

    def test_cli_no_system_prompt_shadows_config_prompt(self):
        args = _make_args(no_system_prompt=True)
        apply_config_to_args(args, {"system_prompt": "from file"})
        assert args.no_system_prompt is True
        assert args.system_prompt is None


# ===========================================================================
# Provider settings
# ===========================================================================


class TestResolveProviderSettings:
    def test_missing_key(self):
        with pytest.raises(ConfigError, match="Please set DEEPSEEK_API_KEY environment variable"):
            resolve_provider_settings("deepseek", {}, environ={})

    def test_blank_key_counts_as_missing(self):
        with pytest.raises(ConfigError, match="OPENAI_API_KEY"):
            resolve_provider_settings("openai", {}, environ={"OPENAI_API_KEY": "  "})

    @pytest.mark.parametrize(
        "provider, model, max_tokens, temperature",
        [
            ("anthropic", "claude-3-7-sonnet-20250219", 4096, None),
            ("openai", "gpt-4.1", 1000, 0.7),
            ("google", "gemini-2.5-pro", 1000, None),
            ("deepseek", "deepseek-chat", 1000, 0.7),
        ],
    )
    def test_defaults(self, provider, model, max_tokens, temperature):
        env = {f"{provider.upper()}_API_KEY": "k"}
        settings = resolve_provider_settings(provider, {}, environ=env)
        assert settings == ProviderSettings(
            provider=provider,
            api_key="k",
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            timeout=300,
            enable_tools=True,
        )

    def test_alias(self):
        settings = resolve_provider_settings("claude", {}, environ={"ANTHROPIC_API_KEY": "k"})
        assert settings.provider == "anthropic"

    def test_config_values(self):
        settings = resolve_provider_settings(
            "openai",
            {"model": "gpt-x", "max_tokens": 77, "temperature": 0, "timeout": 5, "enable_tools": False},
            environ={"OPENAI_API_KEY": "k"},
        )
        assert (settings.model, settings.max_tokens, settings.temperature) == ("gpt-x", 77, 0)
        assert settings.timeout == 5
        assert settings.enable_tools is False

    def test_env_model_beats_config(self):
        env = {"OPENAI_API_KEY": "k", "OPENAI_MODEL_NAME": "from-env"}
        settings = resolve_provider_settings("openai", {"model": "from-file"}, environ=env)
        assert settings.model == "from-env"

    def test_cli_beats_env(self):
        env = {"OPENAI_API_KEY": "k", "OPENAI_MODEL_NAME": "from-env"}
        settings = resolve_provider_settings(
            "openai", {"model": "from-file"}, environ=env, cli={"model": "from-cli"}
        )
        assert settings.model == "from-cli"

    @pytest.mark.parametrize(
        "value, expected",
        [("true", True), ("1", True), ("TRUE", True), ("false", False), ("0", False), ("yes", False)],
    )
    def test_google_enable_tools_env(self, value, expected):
        env = {"GOOGLE_API_KEY": "k", "GOOGLE_ENABLE_TOOLS": value}
        assert resolve_provider_settings("google", {}, environ=env).enable_tools is expected

    def test_deepseek_enable_tools_env_beats_config(self):
        env = {"DEEPSEEK_API_KEY": "k", "DEEPSEEK_ENABLE_TOOLS": "false"}
        settings = resolve_provider_settings("deepseek", {"enable_tools": True}, environ=env)
        assert settings.enable_tools is False

    def test_no_tools_flag_beats_env(self):
        env = {"GOOGLE_API_KEY": "k", "GOOGLE_ENABLE_TOOLS": "true"}
        settings = resolve_provider_settings("google", {}, environ=env, cli={"enable_tools": False})
        assert settings.enable_tools is False

    def test_enable_tools_env_is_provider_specific(self):
        env = {"ANTHROPIC_API_KEY": "k", "GOOGLE_ENABLE_TOOLS": "false"}
        assert resolve_provider_settings("anthropic", {}, environ=env).enable_tools is True

    def test_unknown_provider(self):
        with pytest.raises(ConfigError, match="unknown provider"):
            normalize_provider("bard")
