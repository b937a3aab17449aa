"""
Tokenizer boundary for the pipeline.

The pipeline only needs four things from a tokenizer: text -> ids without
special tokens, ids -> text, the reserved [CLS]/[SEP]/[PAD] ids, and the
vocabulary size. `HFTokenizer` adapts any Hugging Face tokenizer to that.
"""

import logging
from dataclasses import dataclass
from typing import List, Sequence

from transformers import AutoTokenizer, PreTrainedTokenizerBase

from qa_errors import InitializationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpecialTokenSet:
    """Reserved ids inserted by the input assembler."""

    cls_id: int
    sep_id: int
    pad_id: int

    @property
    def structural_ids(self) -> frozenset:
        """Markers that can never be part of an answer."""
        return frozenset((self.cls_id, self.sep_id))


class Tokenizer:
    """Base class for tokenizers used by the pipeline."""

    @property
    def special_tokens(self) -> SpecialTokenSet:
        raise NotImplementedError("Subclasses must implement special_tokens")

    @property
    def vocab_size(self) -> int:
        raise NotImplementedError("Subclasses must implement vocab_size")

    def tokenize(self, text: str) -> List[int]:
        """Map text to token ids, without any special tokens."""
        raise NotImplementedError("Subclasses must implement tokenize()")

    def decode(self, ids: Sequence[int]) -> str:
        """Map token ids back to text."""
        raise NotImplementedError("Subclasses must implement decode()")


class HFTokenizer(Tokenizer):
    """Adapter around a `transformers` tokenizer (fast or slow)."""

    def __init__(self, hf_tokenizer: PreTrainedTokenizerBase):
        self.hf_tokenizer = hf_tokenizer

        ids = (
            hf_tokenizer.cls_token_id,
            hf_tokenizer.sep_token_id,
            hf_tokenizer.pad_token_id,
        )
        if any(token_id is None for token_id in ids):
            raise InitializationError(
                "Tokenizer must define [CLS], [SEP] and [PAD] tokens, got "
                f"cls={ids[0]}, sep={ids[1]}, pad={ids[2]}"
            )
        self._special_tokens = SpecialTokenSet(*ids)

    @property
    def special_tokens(self) -> SpecialTokenSet:
        return self._special_tokens

    @property
    def vocab_size(self) -> int:
        return len(self.hf_tokenizer)

    def tokenize(self, text: str) -> List[int]:
        # Literal "[SEP]" etc. in user text must not map to reserved ids
        return self.hf_tokenizer.encode(
            text, add_special_tokens=False, split_special_tokens=True
        )

    def decode(self, ids: Sequence[int]) -> str:
        return self.hf_tokenizer.decode(list(ids), skip_special_tokens=False).strip()


def load_tokenizer(name_or_path: str) -> HFTokenizer:
    """
    Load a tokenizer from the Hub or a local directory.

    Raises:
        InitializationError: if the tokenizer cannot be loaded
    """
    logger.info(f"Loading tokenizer from {name_or_path}")
    try:
        hf_tokenizer = AutoTokenizer.from_pretrained(name_or_path, use_fast=True)
    except (OSError, ValueError) as e:
        raise InitializationError(
            f"Could not load tokenizer from {name_or_path}: {e}"
        ) from e
    return HFTokenizer(hf_tokenizer)
