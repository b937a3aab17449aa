import os
import sys
from dataclasses import dataclass, field
from typing import Optional

from transformers import HfArgumentParser

from evaluation import evaluate_pipeline, load_eval_examples
from pipeline_config import (
    DEFAULT_CONTEXT,
    DEFAULT_MODEL,
    TASK_CLASSIFICATION,
    TASK_QUESTION_ANSWERING,
    PipelineConfig,
    configure_logging,
)
from qa_errors import ConfigurationError, InitializationError
from qa_pipeline import load_pipeline


@dataclass
class PipelineArguments:
    """
    Arguments describing the model and how inputs are built and decoded.
    """

    task: str = field(
        default=TASK_QUESTION_ANSWERING,
        metadata={
            "help": "Pipeline to run.",
            "choices": [TASK_QUESTION_ANSWERING, TASK_CLASSIFICATION],
        },
    )
    model: str = field(
        default=DEFAULT_MODEL,
        metadata={
            "help": (
                "HuggingFace model ID, a local checkpoint directory, "
                "or the path to an exported model.onnx file."
            )
        },
    )
    tokenizer: Optional[str] = field(
        default=None,
        metadata={
            "help": "Tokenizer ID or directory. Defaults to the model (or the .onnx file's directory)."
        },
    )
    max_length: int = field(
        default=384,
        metadata={"help": "Maximum model input length in tokens."},
    )
    padding: bool = field(
        default=False,
        metadata={"help": "Right-pad every input to max_length."},
    )
    truncation: bool = field(
        default=True,
        metadata={"help": "Truncate inputs longer than max_length."},
    )
    max_answer_length: int = field(
        default=30,
        metadata={"help": "Maximum answer span length in tokens."},
    )
    topk: int = field(
        default=1,
        metadata={"help": "Number of answer spans to print."},
    )
    restrict_to_context: bool = field(
        default=False,
        metadata={"help": "Never start or end an answer inside the question."},
    )
    context: str = field(
        default=DEFAULT_CONTEXT,
        metadata={"help": "Passage the answer is extracted from."},
    )
    labels: Optional[str] = field(
        default=None,
        metadata={
            "help": "Comma-separated class labels in index order, e.g. 'travel,career,financial'."
        },
    )
    device: str = field(default="cpu", metadata={"help": "PyTorch device."})
    config_file: Optional[str] = field(
        default=None,
        metadata={
            "help": "Load a saved PipelineConfig JSON; other pipeline arguments are ignored."
        },
    )


@dataclass
class RunArguments:
    """
    Arguments about what to run.
    """

    question: Optional[str] = field(
        default=None, metadata={"help": "Question to answer."}
    )
    text: Optional[str] = field(
        default=None, metadata={"help": "Text to classify (--task classification)."}
    )
    do_eval: bool = field(
        default=False,
        metadata={"help": "Evaluate the pipeline on a SQuAD-format dataset."},
    )
    dataset: str = field(
        default="squad",
        metadata={"help": "Hub dataset (name or name:config) or a .json/.jsonl file."},
    )
    eval_split: str = field(default="validation")
    max_eval_samples: Optional[int] = field(
        default=None, metadata={"help": "Limit the number of examples to evaluate on."}
    )
    log_level: str = field(
        default=os.getenv("QA_LOG_LEVEL", "INFO"),
        metadata={"help": "Logging level (DEBUG shows every pipeline stage)."},
    )


def parse_args(argv=None):
    parser = HfArgumentParser((PipelineArguments, RunArguments))
    return parser.parse_args_into_dataclasses(args=argv)


def build_config(pipeline_args: PipelineArguments) -> PipelineConfig:
    """Turn CLI arguments into a validated PipelineConfig."""
    if pipeline_args.config_file:
        return PipelineConfig.load(pipeline_args.config_file).validate()

    config = PipelineConfig(
        task=pipeline_args.task,
        model=pipeline_args.model,
        tokenizer=pipeline_args.tokenizer,
        max_length=pipeline_args.max_length,
        padding=pipeline_args.padding,
        truncation=pipeline_args.truncation,
        max_answer_length=pipeline_args.max_answer_length,
        topk=pipeline_args.topk,
        restrict_to_context=pipeline_args.restrict_to_context,
        context=pipeline_args.context,
        device=pipeline_args.device,
    )
    if pipeline_args.labels:
        config.labels = {
            i: label.strip()
            for i, label in enumerate(pipeline_args.labels.split(","))
            if label.strip()
        }
    return config.validate()


def main(argv=None):
    pipeline_args, run_args = parse_args(argv)
    configure_logging(run_args.log_level)

    try:
        config = build_config(pipeline_args)
        pipeline = load_pipeline(config)
    except (InitializationError, ConfigurationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if run_args.question is not None:
        if config.topk > 1:
            try:
                answers = pipeline.predict_spans(run_args.question, topk=config.topk)
            except Exception as e:
                print(f"Error: {e}", file=sys.stderr)
                print("No answer found")
                return 1
            if not answers:
                print("No answer found")
            for rank, answer in enumerate(answers, start=1):
                print(
                    f"{rank}. {answer.text!r} (tokens {answer.start}-{answer.end}, "
                    f"score={answer.score:.4f})"
                )
        else:
            answer = pipeline.answer_question(run_args.question)
            print(answer if answer is not None else "No answer found")

    if run_args.text is not None:
        label = pipeline.classify(run_args.text)
        print(label if label is not None else "No label")

    if run_args.do_eval:
        print(f"Loading evaluation data from {run_args.dataset}...")
        examples = load_eval_examples(
            run_args.dataset,
            split=run_args.eval_split,
            max_eval_samples=run_args.max_eval_samples,
        )
        results = evaluate_pipeline(pipeline, examples)
        print("Evaluation results:")
        print(results)

    return 0


if __name__ == "__main__":
    sys.exit(main())
