"""
Pipeline Configuration

This module defines the settings shared by the input assembler, the span
decoder and the inference runner, plus helpers to load them from JSON files
or from environment variables.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv

from qa_errors import ConfigurationError

TASK_QUESTION_ANSWERING = "question-answering"
TASK_CLASSIFICATION = "classification"
TASKS = (TASK_QUESTION_ANSWERING, TASK_CLASSIFICATION)

DEFAULT_MODEL = "distilbert-base-cased-distilled-squad"
DEFAULT_CONTEXT = "Austin is the Capital of Texas"
DEFAULT_LABELS = {
    0: "travel",
    1: "career",
    2: "financial",
    3: "purchase",
    4: "sales",
}

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def str_to_bool(value) -> bool:
    """Convert CLI / environment strings such as 'yes' or '0' to booleans."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    lowered = str(value).strip().lower()
    if lowered in ("true", "t", "yes", "y", "1", "on"):
        return True
    if lowered in ("false", "f", "no", "n", "0", "off"):
        return False
    raise ValueError(f"Boolean value expected, got {value!r}")


def configure_logging(level: str = "INFO"):
    """Set up root logging for scripts and the CLI."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


@dataclass
class PipelineConfig:
    """Settings for one question answering or classification pipeline."""

    task: str = TASK_QUESTION_ANSWERING
    # Hub model id, local checkpoint directory or path to an exported .onnx file
    model: str = DEFAULT_MODEL
    # Defaults to `model` (or the directory holding the .onnx file)
    tokenizer: Optional[str] = None
    max_length: int = 384
    padding: bool = False
    truncation: bool = True

    # Span decoding
    max_answer_length: int = 30
    topk: int = 1
    mask_value: float = -10000.0
    restrict_to_context: bool = False

    # Context used when a question is asked without one
    context: str = DEFAULT_CONTEXT

    # Classification head output index -> label name
    labels: Dict[int, str] = field(default_factory=lambda: dict(DEFAULT_LABELS))

    device: str = "cpu"

    @property
    def is_onnx(self) -> bool:
        return self.model.endswith(".onnx")

    @property
    def tokenizer_path(self) -> str:
        """Where to load the tokenizer from."""
        if self.tokenizer:
            return self.tokenizer
        if self.is_onnx:
            return os.path.dirname(os.path.abspath(self.model))
        return self.model

    def validate(self) -> "PipelineConfig":
        """Raise ConfigurationError if the settings cannot work together."""
        if self.task not in TASKS:
            raise ConfigurationError(
                f"Unknown task '{self.task}'. Must be one of {', '.join(TASKS)}."
            )
        # [CLS] + [SEP] + [SEP] must fit
        if self.max_length < 3:
            raise ConfigurationError(
                f"max_length must be at least 3, got {self.max_length}"
            )
        if self.topk < 1:
            raise ConfigurationError(f"topk must be at least 1, got {self.topk}")
        if self.max_answer_length < 1:
            raise ConfigurationError(
                f"max_answer_length must be at least 1, got {self.max_answer_length}"
            )
        if self.task == TASK_CLASSIFICATION and not self.labels:
            raise ConfigurationError("Classification task requires a label mapping")
        return self

    def save(self, config_file: str):
        """Save the configuration as JSON."""
        directory = os.path.dirname(config_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(config_file, "w") as f:
            json.dump(asdict(self), f, indent=2)

    @classmethod
    def load(cls, config_file: str) -> "PipelineConfig":
        """
        Load a configuration written by `save`.

        Raises:
            ConfigurationError: if the file is missing, not valid JSON, or has
                keys that are not PipelineConfig fields
        """
        try:
            with open(config_file, "r") as f:
                config_dict = json.load(f)

            # JSON object keys are always strings
            if "labels" in config_dict:
                config_dict["labels"] = {
                    int(k): v for k, v in config_dict["labels"].items()
                }
            return cls(**config_dict)
        except (OSError, ValueError, TypeError, AttributeError) as e:
            raise ConfigurationError(
                f"Could not load pipeline config from {config_file}: {e}"
            ) from e

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "PipelineConfig":
        """
        Build a configuration from QA_* environment variables.

        Values found in `env_file` (or a .env in the working directory) are
        loaded first; variables already set in the environment win.
        """
        load_dotenv(env_file)

        config = cls()
        if os.getenv("QA_TASK"):
            config.task = os.getenv("QA_TASK")
        if os.getenv("QA_MODEL"):
            config.model = os.getenv("QA_MODEL")
        if os.getenv("QA_TOKENIZER"):
            config.tokenizer = os.getenv("QA_TOKENIZER")
        if os.getenv("QA_CONTEXT"):
            config.context = os.getenv("QA_CONTEXT")
        if os.getenv("QA_DEVICE"):
            config.device = os.getenv("QA_DEVICE")

        for name, attr in (
            ("QA_MAX_LENGTH", "max_length"),
            ("QA_MAX_ANSWER_LENGTH", "max_answer_length"),
            ("QA_TOPK", "topk"),
        ):
            raw = os.getenv(name)
            if raw is None:
                continue
            try:
                setattr(config, attr, int(raw))
            except ValueError:
                raise ConfigurationError(f"{name} must be an integer, got {raw!r}")

        for name, attr in (
            ("QA_PADDING", "padding"),
            ("QA_TRUNCATION", "truncation"),
            ("QA_RESTRICT_TO_CONTEXT", "restrict_to_context"),
        ):
            raw = os.getenv(name)
            if raw is not None:
                setattr(config, attr, str_to_bool(raw))

        return config.validate()
