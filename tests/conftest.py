"""Pytest configuration and shared fixtures."""

import tempfile
from pathlib import Path

import datasets
import numpy as np
import pytest
from tokenizers import Tokenizer, decoders, models, normalizers, pre_tokenizers
from transformers import (
    BertConfig,
    BertForQuestionAnswering,
    BertForSequenceClassification,
    PreTrainedTokenizerFast,
)

from inference_runner import InferenceRunner
from pipeline_config import PipelineConfig
from qa_pipeline import QAPipeline
from tokenization import HFTokenizer

SPECIAL_TOKENS = ["[PAD]", "[UNK]", "[CLS]", "[SEP]", "[MASK]"]
WORDS = [
    "what",
    "is",
    "the",
    "capital",
    "of",
    "texas",
    "?",
    ".",
    "austin",
    "who",
    "wrote",
    "hamlet",
    "william",
    "shakespeare",
    "paris",
    "france",
    "weather",
    "sunny",
    "today",
    "i",
    "need",
    "a",
    "loan",
    "from",
    "my",
    "bank",
    "##s",
]


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def build_hf_tokenizer() -> PreTrainedTokenizerFast:
    """Lowercasing WordPiece tokenizer over a fixed toy vocabulary."""
    vocab = {token: i for i, token in enumerate(SPECIAL_TOKENS + WORDS)}
    tokenizer = Tokenizer(models.WordPiece(vocab=vocab, unk_token="[UNK]"))
    tokenizer.normalizer = normalizers.Sequence(
        [normalizers.NFD(), normalizers.Lowercase(), normalizers.StripAccents()]
    )
    tokenizer.pre_tokenizer = pre_tokenizers.Whitespace()
    tokenizer.decoder = decoders.WordPiece(prefix="##")

    return PreTrainedTokenizerFast(
        tokenizer_object=tokenizer,
        unk_token="[UNK]",
        pad_token="[PAD]",
        cls_token="[CLS]",
        sep_token="[SEP]",
        mask_token="[MASK]",
    )


@pytest.fixture
def hf_tokenizer():
    return build_hf_tokenizer()


@pytest.fixture
def tokenizer(hf_tokenizer):
    """Pipeline tokenizer wrapping the toy WordPiece tokenizer."""
    return HFTokenizer(hf_tokenizer)


class KeywordSpanRunner(InferenceRunner):
    """
    Fake span model: puts a large start logit on the first occurrence of
    `start_token` and a large end logit on the first occurrence of `end_token`.
    """

    def __init__(self, start_token_id: int, end_token_id: int, peak: float = 10.0):
        self.start_token_id = start_token_id
        self.end_token_id = end_token_id
        self.peak = peak
        self.calls = []

    @property
    def input_names(self):
        return ["input_ids", "attention_mask"]

    def _peak_at(self, input_ids: np.ndarray, token_id: int) -> np.ndarray:
        logits = np.zeros(input_ids.shape, dtype=np.float32)
        hits = np.flatnonzero(input_ids[0] == token_id)
        if hits.size:
            logits[0, hits[0]] = self.peak
        return logits

    def run(self, inputs):
        feed = self.select_inputs(inputs)
        self.calls.append(feed)
        input_ids = feed["input_ids"]
        return {
            "start_logits": self._peak_at(input_ids, self.start_token_id),
            "end_logits": self._peak_at(input_ids, self.end_token_id),
        }


class FixedLogitsRunner(InferenceRunner):
    """Fake model returning the same outputs for every input."""

    def __init__(self, outputs):
        self.outputs = outputs

    @property
    def input_names(self):
        return ["input_ids"]

    def run(self, inputs):
        return {name: np.asarray(value) for name, value in self.outputs.items()}


class FailingRunner(InferenceRunner):
    """Fake model whose forward pass always fails."""

    @property
    def input_names(self):
        return ["input_ids"]

    def run(self, inputs):
        raise RuntimeError("inference backend crashed")


@pytest.fixture
def keyword_runner():
    """Factory for KeywordSpanRunner."""
    return KeywordSpanRunner


@pytest.fixture
def fixed_logits_runner():
    """Factory for FixedLogitsRunner."""
    return FixedLogitsRunner


@pytest.fixture
def failing_runner():
    return FailingRunner()


@pytest.fixture
def austin_runner(hf_tokenizer):
    austin_id = hf_tokenizer.convert_tokens_to_ids("austin")
    return KeywordSpanRunner(austin_id, austin_id)


@pytest.fixture
def qa_pipeline(tokenizer, austin_runner):
    """Pipeline whose model always answers with the token 'austin'."""
    return QAPipeline(tokenizer, austin_runner, PipelineConfig())


@pytest.fixture
def classification_pipeline(tokenizer):
    """Classification pipeline whose model always favours class 2."""
    runner = FixedLogitsRunner(
        {"logits": np.array([[0.1, 0.4, 3.2, 0.3, -1.0]], dtype=np.float32)}
    )
    return QAPipeline(
        tokenizer, runner, PipelineConfig(task="classification", max_length=32)
    )


def tiny_bert_config(**kwargs) -> BertConfig:
    return BertConfig(
        vocab_size=len(SPECIAL_TOKENS) + len(WORDS),
        hidden_size=16,
        num_hidden_layers=1,
        num_attention_heads=2,
        intermediate_size=32,
        max_position_embeddings=64,
        **kwargs,
    )


@pytest.fixture
def tiny_qa_model():
    """Randomly initialised single-layer BERT with a span head."""
    return BertForQuestionAnswering(tiny_bert_config())


@pytest.fixture
def tiny_classification_model():
    return BertForSequenceClassification(tiny_bert_config(num_labels=5))


@pytest.fixture(scope="session")
def saved_qa_checkpoint(tmp_path_factory):
    """Directory holding the toy tokenizer and a tiny QA model, loadable offline."""
    checkpoint_dir = tmp_path_factory.mktemp("tiny_qa_checkpoint")
    build_hf_tokenizer().save_pretrained(str(checkpoint_dir))
    BertForQuestionAnswering(tiny_bert_config()).save_pretrained(str(checkpoint_dir))
    return str(checkpoint_dir)


@pytest.fixture
def sample_qa_dataset():
    """Create a small sample QA dataset for testing."""
    data = {
        "id": ["q1", "q2", "q3"],
        "question": [
            "What is the capital of Texas?",
            "Who wrote Hamlet?",
            "What is the capital of France?",
        ],
        "context": [
            "Austin is the capital of Texas.",
            "William Shakespeare wrote Hamlet.",
            "Paris is the capital of France.",
        ],
        "answers": [
            {"text": ["Austin"], "answer_start": [0]},
            {"text": ["William Shakespeare"], "answer_start": [0]},
            {"text": ["Paris"], "answer_start": [0]},
        ],
    }
    return datasets.Dataset.from_dict(data)
