"""
Batch evaluation of a question answering pipeline on SQuAD-style data.

Each example needs `question`, `context` and `answers`; predictions are
produced one example at a time through `QAPipeline.answer_question` and scored
with the SQuAD exact match / F1 metric.
"""

import hashlib
from typing import Dict, List, Optional, Tuple

import datasets
import evaluate
from tqdm.auto import tqdm

from qa_pipeline import QAPipeline


def generate_hash_ids(example):
    """Generates a deterministic ID based on hash value if the dataset is missing ID column."""
    content = f"{example['question']} | {example['context']}"
    hash_obj = hashlib.md5(content.encode("utf-8"))
    return {"id": hash_obj.hexdigest()[:16]}


def normalize_answers_for_metrics(example):
    """
    Normalize answers for metric computation based on dataset format.
    Returns: dict with "text" and "answer_start" lists
    """
    if "answers" not in example:
        raise ValueError("Example must have an 'answers' field")

    ans = example["answers"]
    # Case 1: dict with lists: {"text": [...], "answer_start": [...]}
    if isinstance(ans, dict):
        return {
            "text": ans.get("text", []),
            "answer_start": ans.get("answer_start", []),
        }
    # Case 2: list of dicts: [{"text": ..., "answer_start": ...}, ...]
    texts = []
    starts = []
    for a in ans:
        texts.append(a.get("text", ""))
        starts.append(a.get("answer_start", 0))
    return {"text": texts, "answer_start": starts}


def load_eval_examples(
    dataset: str,
    split: str = "validation",
    max_eval_samples: Optional[int] = None,
) -> datasets.Dataset:
    """
    Load evaluation examples from the Hub or a local .json/.jsonl file.

    Hub datasets may be given as "name" or "name:config".
    """
    if dataset.endswith(".json") or dataset.endswith(".jsonl"):
        # The json loader puts everything in the train split
        eval_dataset = datasets.load_dataset("json", data_files=dataset)["train"]
    else:
        dataset_id = tuple(dataset.split(":"))
        eval_dataset = datasets.load_dataset(*dataset_id, split=split)

    if "id" not in eval_dataset.column_names:
        eval_dataset = eval_dataset.map(generate_hash_ids)

    if max_eval_samples:
        eval_dataset = eval_dataset.select(
            range(min(max_eval_samples, len(eval_dataset)))
        )
    return eval_dataset


def collect_predictions(
    pipeline: QAPipeline,
    examples,
) -> Tuple[List[Dict], List[Dict]]:
    """
    Answer every example with `pipeline`.

    Returns:
        (predictions, references) in the format expected by the squad metric.
        Examples without an answer get an empty prediction_text.
    """
    predictions = []
    references = []
    for example in tqdm(examples, desc="Answering"):
        answer = pipeline.answer_question(example["question"], example["context"])
        predictions.append(
            {"id": example["id"], "prediction_text": answer if answer else ""}
        )
        references.append(
            {"id": example["id"], "answers": normalize_answers_for_metrics(example)}
        )
    return predictions, references


def compute_metrics(predictions: List[Dict], references: List[Dict]) -> Dict:
    metric = evaluate.load("squad")
    return metric.compute(predictions=predictions, references=references)


def evaluate_pipeline(pipeline: QAPipeline, examples) -> Dict:
    """Answer all `examples` and return exact match / F1 plus the answer rate."""
    predictions, references = collect_predictions(pipeline, examples)
    metrics = compute_metrics(predictions, references)

    answered = sum(1 for p in predictions if p["prediction_text"])
    metrics["answered_fraction"] = answered / len(predictions) if predictions else 0.0
    metrics["num_examples"] = len(predictions)
    return metrics
