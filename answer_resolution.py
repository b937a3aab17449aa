"""Turn decoder output back into answer text or a class label."""

from typing import Mapping, Sequence

from qa_errors import ConfigurationError
from span_decoding import SpanCandidate
from tokenization import Tokenizer


def resolve_answer(
    input_ids: Sequence[int],
    span: SpanCandidate,
    tokenizer: Tokenizer,
) -> str:
    """
    Decode the tokens covered by `span` (inclusive on both ends).

    [CLS] and [SEP] markers inside the slice are dropped before decoding.
    """
    answer_ids = list(input_ids[span.start : span.end + 1])
    structural = tokenizer.special_tokens.structural_ids
    answer_ids = [token_id for token_id in answer_ids if token_id not in structural]
    return tokenizer.decode(answer_ids)


def resolve_label(index: int, labels: Mapping[int, str]) -> str:
    """Look up the label for a class index produced by the model."""
    if index not in labels:
        raise ConfigurationError(
            f"Class index {index} has no label; known indices: {sorted(labels)}"
        )
    return labels[index]
