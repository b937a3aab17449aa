"""
Probability normalization and answer span decoding.

Raw start/end logits are turned into probabilities with a masked, numerically
stable softmax. Every (start, end) pair is then scored as
start_prob[start] * end_prob[end], invalid pairs are pushed to -inf, and the
best `topk` pairs are returned.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from qa_errors import ConfigurationError

logger = logging.getLogger(__name__)

# Large negative logit used for masked positions; exp() of it underflows to 0
MASK_VALUE = -10000.0


@dataclass(frozen=True)
class SpanCandidate:
    """Inclusive token span and its joint start/end probability."""

    start: int
    end: int
    score: float

    @property
    def length(self) -> int:
        return self.end - self.start + 1


def mask_undesired_tokens(
    logits: np.ndarray,
    undesired_mask: np.ndarray,
    mask_value: float = MASK_VALUE,
) -> np.ndarray:
    """
    Replace the logits of undesired positions with `mask_value`.

    The vector keeps its length so positions stay addressable.
    """
    logits = np.asarray(logits, dtype=np.float32)
    undesired_mask = np.asarray(undesired_mask).astype(bool)
    if undesired_mask.shape != logits.shape:
        raise ConfigurationError(
            f"Mask shape {undesired_mask.shape} does not match logits shape {logits.shape}"
        )
    return np.where(undesired_mask, np.float32(mask_value), logits).astype(np.float32)


def softmax(
    logits: np.ndarray,
    undesired_mask: Optional[np.ndarray] = None,
    mask_value: float = MASK_VALUE,
) -> np.ndarray:
    """
    Convert a logit vector into a probability distribution.

    Args:
        logits: 1-D vector of raw scores
        undesired_mask: Optional 0/1 vector; masked positions get ~0 probability
        mask_value: Logit assigned to masked positions before normalizing

    Returns:
        float32 vector of the same length, non-negative and summing to 1
    """
    logits = np.asarray(logits, dtype=np.float32)
    if logits.size == 0:
        raise ValueError("Cannot normalize an empty logit vector")
    if undesired_mask is not None:
        logits = mask_undesired_tokens(logits, undesired_mask, mask_value)

    # Shift by the max so the largest exponent is exp(0)
    exps = np.exp(logits - np.max(logits))
    return (exps / np.sum(exps)).astype(np.float32)


def decode_spans(
    start_probs: np.ndarray,
    end_probs: np.ndarray,
    topk: int = 1,
    max_answer_length: int = 30,
    undesired_mask: Optional[np.ndarray] = None,
) -> List[SpanCandidate]:
    """
    Select the best answer spans from start/end probabilities.

    A pair (i, j) is valid when j >= i, j - i < max_answer_length, and neither
    i nor j is undesired. Ties are broken by position: lower start first,
    then lower end.

    Args:
        start_probs: Probability of each position being the answer start
        end_probs: Probability of each position being the answer end
        topk: Number of spans to return
        max_answer_length: Maximum span length in tokens
        undesired_mask: 0/1 vector of positions that cannot be boundaries

    Returns:
        Up to `topk` candidates, best first. An empty list means no valid span.
    """
    start_probs = np.asarray(start_probs, dtype=np.float32)
    end_probs = np.asarray(end_probs, dtype=np.float32)

    if topk < 1:
        raise ConfigurationError(f"topk must be at least 1, got {topk}")
    if max_answer_length < 1:
        raise ConfigurationError(
            f"max_answer_length must be at least 1, got {max_answer_length}"
        )
    if start_probs.ndim != 1 or start_probs.shape != end_probs.shape:
        raise ConfigurationError(
            f"Start/end vectors must be 1-D and equal length, got "
            f"{start_probs.shape} and {end_probs.shape}"
        )

    seq_len = start_probs.shape[0]
    if undesired_mask is None:
        undesired = np.zeros(seq_len, dtype=bool)
    else:
        undesired = np.asarray(undesired_mask).astype(bool)
        if undesired.shape != start_probs.shape:
            raise ConfigurationError(
                f"Mask shape {undesired.shape} does not match sequence length {seq_len}"
            )
    if seq_len == 0:
        return []

    # score[i, j] = P(start = i) * P(end = j)
    outer = np.outer(start_probs, end_probs)

    positions = np.arange(seq_len)
    starts = positions[:, np.newaxis]
    ends = positions[np.newaxis, :]
    valid = (
        (ends >= starts)
        & (ends - starts < max_answer_length)
        & ~undesired[:, np.newaxis]
        & ~undesired[np.newaxis, :]
    )
    candidates = np.where(valid, outer, -np.inf)

    scores_flat = candidates.ravel()
    if topk == 1:
        idx_sort = np.array([np.argmax(scores_flat)])
    else:
        idx_sort = np.argsort(-scores_flat, kind="stable")[:topk]

    span_starts, span_ends = np.unravel_index(idx_sort, candidates.shape)

    spans = []
    for flat_idx, start, end in zip(idx_sort, span_starts, span_ends):
        score = scores_flat[flat_idx]
        if score == -np.inf:
            continue
        spans.append(SpanCandidate(start=int(start), end=int(end), score=float(score)))

    logger.debug(f"Decoded {len(spans)} span(s) out of {int(valid.sum())} valid pairs")
    return spans
