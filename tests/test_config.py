"""Tests for configuration loading."""

import pytest

from questionnaire_analysis.config import Settings


class TestSettings:
    def test_defaults(self):
        settings = Settings(
            openai_api_key="test",
            anthropic_api_key="",
            jina_api_key="",
            openai_base_url="",
        )
        assert settings.fast_provider == "openai"
        assert settings.premium_provider == "anthropic"
        assert settings.openai_fast_model == "gpt-4o-mini"
        assert settings.anthropic_premium_model == "claude-3-5-sonnet-20241022"
        assert settings.client_max_retries == 3
        assert settings.k_anonymity == 2
        assert settings.min_cluster_size == 3
        assert settings.max_responses_per_prompt == 50
        assert settings.anonymization_level == "full"
        assert settings.consent_type == "research_analysis"
        assert "region" in settings.quasi_identifier_fields
        assert settings.resolved_openai_base_url() == ""
        assert settings.output_dir.as_posix() == "runs"

    def test_from_yaml_missing_file(self, tmp_path):
        settings = Settings.from_yaml(tmp_path / "nonexistent.yaml", openai_api_key="test")
        assert settings.openai_fast_model == "gpt-4o-mini"

    def test_from_yaml_with_overrides(self, tmp_path):
        config_file = tmp_path / "test.yaml"
        config_file.write_text("min_cluster_size: 6\nworker_count: 2\n")
        settings = Settings.from_yaml(config_file, worker_count=5)
        assert settings.min_cluster_size == 6
        assert settings.worker_count == 5

    def test_k_anonymity_below_two_is_rejected(self):
        with pytest.raises(ValueError):
            Settings(k_anonymity=1)

    def test_negative_retry_count_is_rejected(self):
        with pytest.raises(ValueError):
            Settings(client_max_retries=-1)

    def test_api_keys_and_sources(self):
        settings = Settings(openai_api_key="  sk-test  ", anthropic_api_key="", jina_api_key="")
        assert settings.api_key_for("openai") == "sk-test"
        assert settings.api_key_for("unknown") == ""
        assert settings.key_source_for("openai") == "OPENAI_API_KEY"
        assert settings.key_source_for("anthropic") == "ANTHROPIC_API_KEY (missing)"

    def test_model_for_tier(self):
        settings = Settings()
        assert settings.model_for("anthropic", "fast") == "claude-3-5-haiku-20241022"
        with pytest.raises(KeyError):
            settings.model_for("mistral", "fast")

    def test_openai_base_url_gets_trailing_slash(self):
        settings = Settings(openai_base_url=" https://proxy.example/v1 ")
        assert settings.resolved_openai_base_url() == "https://proxy.example/v1/"
