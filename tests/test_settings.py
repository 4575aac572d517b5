import pytest
from pydantic import ValidationError

from petlog_rag.config.settings import RetrievalConfig, Settings


class TestRetrievalConfig:
    def test_defaults(self):
        config = RetrievalConfig()
        assert config.dimension == 1024
        assert config.top_k == 3
        assert config.min_score == 0.0
        assert config.overfetch_multiplier == 2
        assert (config.vector_weight, config.keyword_weight) == (0.7, 0.3)
        assert config.context_char_budget == 400

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValidationError, match="must equal 1.0"):
            RetrievalConfig(vector_weight=0.8, keyword_weight=0.3)
        assert RetrievalConfig(vector_weight=0.5, keyword_weight=0.5).vector_weight == 0.5

    @pytest.mark.parametrize("field, value", [("top_k", 0), ("dimension", 0), ("min_score", 1.5), ("overfetch_multiplier", 0), ("embed_timeout_seconds", 0)])
    def test_out_of_range_rejected(self, field, value):
        with pytest.raises(ValidationError):
            RetrievalConfig(**{field: value})

    def test_frozen(self):
        config = RetrievalConfig()
        with pytest.raises(ValidationError):
            config.top_k = 10


class TestSettings:
    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("SEARCH_TOP_K", "5")
        monkeypatch.setenv("VECTOR_WEIGHT", "0.6")
        monkeypatch.setenv("KEYWORD_WEIGHT", "0.4")
        monkeypatch.setenv("EMBEDDING_DIMENSION", "256")

        config = RetrievalConfig.from_settings(Settings())

        assert config.top_k == 5
        assert config.dimension == 256
        assert (config.vector_weight, config.keyword_weight) == (0.6, 0.4)

    def test_secrets_hidden_in_repr(self, monkeypatch):
        monkeypatch.setenv("MONGO_URI", "mongodb://user:hunter2@db:27017")
        assert "hunter2" not in repr(Settings())

    def test_invalid_timeout_rejected(self, monkeypatch):
        monkeypatch.setenv("EMBED_TIMEOUT_SECONDS", "0")
        with pytest.raises(ValidationError):
            Settings()
