"""
Input assembly for the transformer.

Builds the token id sequence sent to the model:

    question answering:  [CLS] question [SEP] context [SEP] [PAD]...
    classification:      [CLS] text [SEP] [PAD]...

and derives the masks the rest of the pipeline needs from that layout.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np

from qa_errors import ConfigurationError, InitializationError
from tokenization import SpecialTokenSet, Tokenizer

logger = logging.getLogger(__name__)

# [CLS] question [SEP] context [SEP]
QA_STRUCTURAL_TOKENS = 3
# [CLS] text [SEP]
CLASSIFICATION_STRUCTURAL_TOKENS = 2


@dataclass(frozen=True)
class AssembledInput:
    """
    One model input sequence and the layout it was built from.

    For classification inputs `is_pair` is False, `context_length` is 0 and
    `question_length` holds the length of the single text segment.
    """

    input_ids: List[int]
    question_length: int
    context_length: int
    special_tokens: SpecialTokenSet
    is_pair: bool = True

    def __len__(self) -> int:
        return len(self.input_ids)

    @property
    def num_real_tokens(self) -> int:
        """Length before padding."""
        if self.is_pair:
            return QA_STRUCTURAL_TOKENS + self.question_length + self.context_length
        return CLASSIFICATION_STRUCTURAL_TOKENS + self.question_length

    @property
    def separator_positions(self) -> List[int]:
        if self.is_pair:
            return [
                self.question_length + 1,
                self.question_length + self.context_length + 2,
            ]
        return [self.question_length + 1]

    @property
    def context_span(self) -> Tuple[int, int]:
        """Inclusive-exclusive position range of the context tokens."""
        start = self.question_length + 2
        return start, start + self.context_length

    def undesired_mask(self, restrict_to_context: bool = False) -> np.ndarray:
        """
        0/1 mask of positions that must never be an answer boundary.

        Marks [CLS], every [SEP] and all padding. With `restrict_to_context`
        the question tokens are marked as well.
        """
        mask = np.zeros(len(self.input_ids), dtype=np.uint8)
        mask[0] = 1
        mask[self.separator_positions] = 1
        mask[self.num_real_tokens :] = 1
        if restrict_to_context:
            mask[1 : self.question_length + 1] = 1
        return mask

    def attention_mask(self) -> np.ndarray:
        mask = np.zeros(len(self.input_ids), dtype=np.int64)
        mask[: self.num_real_tokens] = 1
        return mask

    def token_type_ids(self) -> np.ndarray:
        """Segment ids: 0 for [CLS] question [SEP], 1 for context [SEP]."""
        types = np.zeros(len(self.input_ids), dtype=np.int64)
        if self.is_pair:
            types[self.question_length + 2 : self.num_real_tokens] = 1
        return types


def _check_tokenizer(tokenizer: Optional[Tokenizer]):
    if tokenizer is None:
        raise InitializationError(
            "Tokenizer is not initialized; load the pipeline before assembling inputs"
        )


def _pad(input_ids: List[int], max_length: int, pad_id: int) -> List[int]:
    return input_ids + [pad_id] * (max_length - len(input_ids))


def truncate_pair(
    question_ids: List[int],
    context_ids: List[int],
    max_length: int,
) -> Tuple[List[int], List[int]]:
    """
    Fit a question/context pair into `max_length` with the structural tokens.

    Half of the available budget goes to the question and the rest to the
    context; each side is cut from its tail. Pairs that already fit are
    returned unchanged.
    """
    if QA_STRUCTURAL_TOKENS + len(question_ids) + len(context_ids) <= max_length:
        return question_ids, context_ids

    budget = max_length - QA_STRUCTURAL_TOKENS
    question_budget = budget // 2
    context_budget = budget - question_budget
    return question_ids[:question_budget], context_ids[:context_budget]


def assemble_qa_input(
    question: str,
    context: str,
    tokenizer: Optional[Tokenizer],
    max_length: int = 384,
    padding: bool = False,
    truncation: bool = True,
) -> AssembledInput:
    """
    Build `[CLS] question [SEP] context [SEP]` for a span prediction model.

    Args:
        question: Question text
        context: Passage the answer is extracted from
        tokenizer: Loaded tokenizer
        max_length: The model's maximum input length
        padding: Right-pad with [PAD] up to `max_length`
        truncation: Truncate over-long pairs (see `truncate_pair`)

    Returns:
        AssembledInput with the token ids and their layout

    Raises:
        InitializationError: if no tokenizer is available
        ConfigurationError: if the pair does not fit and truncation is off
    """
    _check_tokenizer(tokenizer)
    if max_length < QA_STRUCTURAL_TOKENS:
        raise ConfigurationError(
            f"max_length must be at least {QA_STRUCTURAL_TOKENS}, got {max_length}"
        )
    special = tokenizer.special_tokens

    question_ids = tokenizer.tokenize(question)
    context_ids = tokenizer.tokenize(context)
    logger.debug(f"Tokenized question: {question_ids}")
    logger.debug(f"Tokenized context: {context_ids}")

    total = QA_STRUCTURAL_TOKENS + len(question_ids) + len(context_ids)
    if total > max_length:
        if not truncation:
            raise ConfigurationError(
                f"Input of {total} tokens exceeds max_length={max_length} "
                "and truncation is disabled"
            )
        question_ids, context_ids = truncate_pair(question_ids, context_ids, max_length)
        logger.debug(
            f"Truncated input from {total} to "
            f"{QA_STRUCTURAL_TOKENS + len(question_ids) + len(context_ids)} tokens"
        )

    input_ids = (
        [special.cls_id]
        + question_ids
        + [special.sep_id]
        + context_ids
        + [special.sep_id]
    )
    if padding:
        input_ids = _pad(input_ids, max_length, special.pad_id)

    return AssembledInput(
        input_ids=input_ids,
        question_length=len(question_ids),
        context_length=len(context_ids),
        special_tokens=special,
    )


def assemble_classification_input(
    text: str,
    tokenizer: Optional[Tokenizer],
    max_length: int = 384,
    padding: bool = False,
    truncation: bool = True,
) -> AssembledInput:
    """Build `[CLS] text [SEP]` for a sequence classification model."""
    _check_tokenizer(tokenizer)
    if max_length < CLASSIFICATION_STRUCTURAL_TOKENS:
        raise ConfigurationError(
            f"max_length must be at least {CLASSIFICATION_STRUCTURAL_TOKENS}, "
            f"got {max_length}"
        )
    special = tokenizer.special_tokens

    text_ids = tokenizer.tokenize(text)
    budget = max_length - CLASSIFICATION_STRUCTURAL_TOKENS
    if len(text_ids) > budget:
        if not truncation:
            raise ConfigurationError(
                f"Input of {len(text_ids) + CLASSIFICATION_STRUCTURAL_TOKENS} tokens "
                f"exceeds max_length={max_length} and truncation is disabled"
            )
        text_ids = text_ids[:budget]

    input_ids = [special.cls_id] + text_ids + [special.sep_id]
    if padding:
        input_ids = _pad(input_ids, max_length, special.pad_id)

    return AssembledInput(
        input_ids=input_ids,
        question_length=len(text_ids),
        context_length=0,
        special_tokens=special,
        is_pair=False,
    )


def build_model_inputs(assembled: AssembledInput) -> Dict[str, np.ndarray]:
    """Named int64 tensors of shape [1, sequence_length]."""
    return {
        "input_ids": np.asarray([assembled.input_ids], dtype=np.int64),
        "attention_mask": assembled.attention_mask()[np.newaxis, :],
        "token_type_ids": assembled.token_type_ids()[np.newaxis, :],
    }
