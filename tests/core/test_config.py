"""
Tests for engine configuration: defaults, YAML loading and flag overrides.
"""

from dataclasses import FrozenInstanceError

import pytest

from orbcast.core.config import (
    Config,
    EngineConfig,
    FeatureFlags,
    RAGConfig,
    SafetyConfig,
    engine_config_from_dict,
    load_engine_config,
)


class TestDefaults:
    def test_rag_defaults(self):
        config = RAGConfig()
        assert config.default_k == 20
        assert config.min_neighbors == 5
        assert config.vector_weight + config.structured_weight == pytest.approx(1.0)
        assert config.recency_decay_days == 30

    def test_risky_features_default_off(self):
        flags = FeatureFlags()
        assert flags.enable_rag is False
        assert flags.enable_contrastive is False
        assert flags.enable_suggested_orbs is False
        assert flags.enable_marketplace_hints is False

    def test_configs_are_immutable(self):
        config = EngineConfig()
        with pytest.raises(FrozenInstanceError):
            config.rag.default_k = 5

    def test_with_flags_returns_copy(self):
        config = EngineConfig()
        enabled = config.with_flags(enable_rag=True)
        assert enabled.flags.enable_rag is True
        assert config.flags.enable_rag is False
        assert enabled.rag == config.rag


class TestEngineConfigFromDict:
    def test_empty_gives_defaults(self):
        assert engine_config_from_dict(None) == EngineConfig()

    def test_partial_section_overrides(self):
        config = engine_config_from_dict({"rag": {"min_neighbors": 8}, "flags": {"enable_rag": True}})
        assert config.rag.min_neighbors == 8
        assert config.rag.default_k == 20
        assert config.flags.enable_rag is True

    def test_unknown_section_rejected(self):
        with pytest.raises(ValueError, match="Unknown config section"):
            engine_config_from_dict({"retrieval": {}})

    def test_unknown_key_rejected(self):
        with pytest.raises(ValueError, match="min_neighbours"):
            engine_config_from_dict({"rag": {"min_neighbours": 3}})

    def test_neighbor_minimum_lives_in_rag_section(self):
        with pytest.raises(ValueError, match="min_neighbors_for_rag"):
            engine_config_from_dict({"safety": {"min_neighbors_for_rag": 10}})
        assert not hasattr(SafetyConfig(), "default_k")

    def test_non_mapping_section_rejected(self):
        with pytest.raises(ValueError, match="must be a mapping"):
            engine_config_from_dict({"rag": [1, 2]})


class TestLoadEngineConfig:
    def test_no_path_returns_defaults(self, monkeypatch):
        monkeypatch.setattr(Config, "CONFIG_PATH", "")
        assert load_engine_config() == EngineConfig()

    def test_loads_yaml(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text(
            "safety:\n"
            "  rag_timeout_ms: 1500\n"
            "pipeline:\n"
            "  confidence_threshold: 70\n"
        )
        config = load_engine_config(str(path))
        assert config.safety.rag_timeout_ms == 1500
        assert config.pipeline.confidence_threshold == 70

    def test_empty_yaml_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_engine_config(str(path)) == EngineConfig()

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_engine_config(str(tmp_path / "nope.yaml"))

    def test_non_mapping_file_raises(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError):
            load_engine_config(str(path))


class TestConfigValidate:
    def test_valid_without_embeddings(self, monkeypatch):
        monkeypatch.setattr(Config, "GEMINI_API_KEY", "")
        assert Config.validate() is True

    def test_requires_key_when_asked(self, monkeypatch):
        monkeypatch.setattr(Config, "GEMINI_API_KEY", "")
        with pytest.raises(ValueError, match="GEMINI_API_KEY"):
            Config.validate(require_embeddings=True)

    def test_rejects_bad_dimension(self, monkeypatch):
        monkeypatch.setattr(Config, "EMBED_DIM", 0)
        with pytest.raises(ValueError):
            Config.validate()

    def test_get_with_default(self):
        assert Config.get("DOES_NOT_EXIST", "fallback") == "fallback"
