"""Tests for pipeline configuration."""

import pytest

from pipeline_config import DEFAULT_CONTEXT, DEFAULT_LABELS, PipelineConfig
from qa_errors import ConfigurationError


class TestPipelineConfig:
    """Test suite for PipelineConfig."""

    def test_defaults(self):
        """Test the default decoding settings."""
        config = PipelineConfig()

        assert config.task == "question-answering"
        assert config.max_answer_length == 30
        assert config.topk == 1
        assert config.mask_value == -10000.0
        assert config.context == DEFAULT_CONTEXT
        assert config.labels == DEFAULT_LABELS
        assert config.validate() is config

    def test_labels_not_shared_between_instances(self):
        """Test that each config gets its own label mapping."""
        first = PipelineConfig()
        first.labels[5] = "other"
        assert 5 not in PipelineConfig().labels

    @pytest.mark.parametrize(
        "overrides",
        [
            {"task": "summarization"},
            {"max_length": 2},
            {"topk": 0},
            {"max_answer_length": 0},
            {"task": "classification", "labels": {}},
        ],
    )
    def test_validate_rejects_bad_settings(self, overrides):
        """Test that inconsistent settings raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            PipelineConfig(**overrides).validate()

    def test_tokenizer_path(self, temp_dir):
        """Test where the tokenizer is loaded from."""
        assert PipelineConfig(model="bert-base").tokenizer_path == "bert-base"
        assert PipelineConfig(model="m", tokenizer="tok").tokenizer_path == "tok"

        onnx_path = temp_dir / "distil-squad" / "model.onnx"
        config = PipelineConfig(model=str(onnx_path))
        assert config.is_onnx
        assert config.tokenizer_path == str(onnx_path.parent)

    def test_save_and_load(self, temp_dir):
        """Test that a saved config loads back identical, including int label keys."""
        config = PipelineConfig(
            task="classification",
            model="my-model",
            max_length=128,
            padding=True,
            labels={0: "negative", 1: "positive"},
        )
        config_file = temp_dir / "configs" / "pipeline.json"

        config.save(str(config_file))
        loaded = PipelineConfig.load(str(config_file))

        assert loaded == config
        assert loaded.labels[1] == "positive"

    def test_load_missing_file(self, temp_dir):
        """Test that a missing config file is a configuration error."""
        with pytest.raises(ConfigurationError, match="Could not load"):
            PipelineConfig.load(str(temp_dir / "missing.json"))

    def test_load_rejects_bad_contents(self, temp_dir):
        """Test that malformed JSON and unknown fields are configuration errors."""
        bad_json = temp_dir / "bad.json"
        bad_json.write_text("{not json")
        unknown_key = temp_dir / "unknown.json"
        unknown_key.write_text('{"model": "m", "learning_rate": 0.1}')

        with pytest.raises(ConfigurationError):
            PipelineConfig.load(str(bad_json))
        with pytest.raises(ConfigurationError):
            PipelineConfig.load(str(unknown_key))


class TestFromEnv:
    """Test suite for PipelineConfig.from_env."""

    def test_reads_environment(self, monkeypatch):
        """Test that QA_* variables override defaults."""
        monkeypatch.setenv("QA_MODEL", "models/model.onnx")
        monkeypatch.setenv("QA_MAX_LENGTH", "256")
        monkeypatch.setenv("QA_TOPK", "3")
        monkeypatch.setenv("QA_PADDING", "yes")
        monkeypatch.setenv("QA_RESTRICT_TO_CONTEXT", "1")
        monkeypatch.setenv("QA_CONTEXT", "Paris is the capital of France.")

        config = PipelineConfig.from_env(env_file="/nonexistent/.env")

        assert config.model == "models/model.onnx"
        assert config.max_length == 256
        assert config.topk == 3
        assert config.padding is True
        assert config.restrict_to_context is True
        assert config.context == "Paris is the capital of France."

    def test_reads_dotenv_file(self, monkeypatch, temp_dir):
        """Test that values come from a .env file when not in the environment."""
        monkeypatch.delenv("QA_TASK", raising=False)
        monkeypatch.delenv("QA_MAX_ANSWER_LENGTH", raising=False)
        env_file = temp_dir / ".env"
        env_file.write_text("QA_TASK=classification\nQA_MAX_ANSWER_LENGTH=15\n")

        config = PipelineConfig.from_env(env_file=str(env_file))

        assert config.task == "classification"
        assert config.max_answer_length == 15

    def test_invalid_integer(self, monkeypatch):
        """Test that malformed numbers are configuration errors."""
        monkeypatch.setenv("QA_MAX_LENGTH", "lots")
        with pytest.raises(ConfigurationError):
            PipelineConfig.from_env(env_file="/nonexistent/.env")
