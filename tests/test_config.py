"""Tests for engine configuration models and the YAML loader."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from flowexpr.engine import EngineConfig, ExpressionEngine
from flowexpr.engine.config import (
    DEFAULT_ALLOWED_GLOBALS,
    VALIDATION_LAYERS,
    get_config_path,
    load_engine_config,
)


class TestEngineConfig:
    """Defaults, aliases and field validation."""

    def test_defaults(self):
        config = EngineConfig()

        assert config.security.timeout == 5000
        assert config.security.max_memory == 10 * 1024 * 1024
        assert config.security.allowed_globals == DEFAULT_ALLOWED_GLOBALS
        assert config.cache.max_size == 1000
        assert config.cache.ttl == 300000
        assert config.output.format == "string"
        assert config.validation.layers == VALIDATION_LAYERS
        assert config.libraries == {"datetime": True, "jmespath": True}

    def test_camel_and_snake_case_keys(self):
        camel = EngineConfig.model_validate({"security": {"maxCallStackSize": 7}})
        snake = EngineConfig.model_validate({"security": {"max_call_stack_size": 7}})

        assert camel.security.max_call_stack_size == snake.security.max_call_stack_size == 7

    def test_unknown_key_rejected(self):
        with pytest.raises(ValidationError):
            EngineConfig.model_validate({"security": {"timeOut": 10}})

    def test_config_is_frozen(self):
        config = EngineConfig()

        with pytest.raises(ValidationError):
            config.security.timeout = 1

    def test_non_positive_timeout_rejected(self):
        with pytest.raises(ValidationError):
            EngineConfig.model_validate({"security": {"timeout": 0}})

    def test_blocked_patterns_accept_strings(self):
        config = EngineConfig.model_validate({"security": {"blockedPatterns": [r"\bfetch\b"]}})

        assert config.security.blocked_patterns[0].name == r"\bfetch\b"

    def test_invalid_blocked_pattern(self):
        with pytest.raises(ValidationError, match="Invalid blocked pattern regex"):
            EngineConfig.model_validate({"security": {"blockedPatterns": ["(unclosed"]}})

    def test_unknown_validation_layer(self):
        with pytest.raises(ValidationError, match="Unknown validation layers"):
            EngineConfig.model_validate({"validation": {"layers": ["syntax", "style"]}})

    def test_layer_order_is_normalized(self):
        config = EngineConfig.model_validate({"validation": {"layers": ["security", "syntax"]}})

        assert config.validation.layers == ("syntax", "security")

    def test_library_defaults_are_merged(self):
        config = EngineConfig.model_validate({"libraries": {"jmespath": False}})

        assert config.libraries == {"datetime": True, "jmespath": False}
        assert not config.library_enabled("jmespath")
        assert not config.library_enabled("lodash")

    def test_luxon_alias(self):
        config = EngineConfig.model_validate({"libraries": {"luxon": False}})

        assert config.library_enabled("datetime") is False


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------


class TestLoader:
    """Config file discovery and parsing."""

    @pytest.fixture(autouse=True)
    def isolated_home(self, tmp_path, monkeypatch):
        monkeypatch.delenv("FLOWEXPR_CONFIG", raising=False)
        monkeypatch.setattr(Path, "home", lambda: tmp_path / "home")
        return tmp_path

    def test_defaults_without_file(self):
        assert get_config_path() is None
        assert load_engine_config() == EngineConfig()

    def test_explicit_path(self, tmp_path):
        path = tmp_path / "engine.yml"
        path.write_text("security:\n  timeout: 250\ncache:\n  enabled: false\n")

        config = load_engine_config(path)

        assert config.security.timeout == 250
        assert config.cache.enabled is False

    def test_env_var(self, tmp_path, monkeypatch):
        path = tmp_path / "from-env.yml"
        path.write_text("output:\n  format: ast\n")
        monkeypatch.setenv("FLOWEXPR_CONFIG", str(path))

        assert load_engine_config().output.format == "ast"

    def test_standard_location(self, tmp_path):
        standard = tmp_path / "home" / ".flowexpr" / "config.yml"
        standard.parent.mkdir(parents=True)
        standard.write_text("validation:\n  maxErrors: 3\n")

        assert get_config_path() == standard
        assert load_engine_config().validation.max_errors == 3

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_engine_config(tmp_path / "missing.yml")

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("")

        assert load_engine_config(path) == EngineConfig()

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "list.yml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ValueError, match="must be a mapping"):
            load_engine_config(path)

    def test_invalid_content(self, tmp_path):
        path = tmp_path / "bad.yml"
        path.write_text("cache:\n  maxSize: 0\n")

        with pytest.raises(ValidationError):
            load_engine_config(path)

    def test_engine_from_config_file(self, tmp_path):
        path = tmp_path / "engine.yml"
        path.write_text("libraries:\n  datetime: false\n")

        engine = ExpressionEngine.from_config_file(path)

        assert not engine.evaluate("{{ DateTime.now() }}").success
        assert engine.evaluate("{{ 1 + 1 }}").value == 2
