"""
Question answering and text classification pipelines.

`load_pipeline` loads the tokenizer and model once and returns a `QAPipeline`
handle that can be shared by any number of callers. Each call runs

    tokenize -> assemble -> infer -> normalize -> decode -> resolve

on call-local data only. `answer_question` and `classify` return None
instead of raising when no answer exists or a stage fails.

`PipelineLoader` wraps `load_pipeline` for callers that want lazy
initialization: concurrent first calls share a single load.
"""

import asyncio
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import numpy as np

from answer_resolution import resolve_answer, resolve_label
from inference_runner import InferenceRunner, load_inference_runner
from input_assembly import (
    AssembledInput,
    assemble_classification_input,
    assemble_qa_input,
    build_model_inputs,
)
from pipeline_config import PipelineConfig
from qa_errors import ConfigurationError, InitializationError
from span_decoding import SpanCandidate, decode_spans, softmax
from tokenization import Tokenizer, load_tokenizer

logger = logging.getLogger(__name__)

START_LOGITS = "start_logits"
END_LOGITS = "end_logits"
CLASSIFICATION_LOGITS = "logits"


@dataclass(frozen=True)
class ScoredAnswer:
    """Decoded answer text with the token span it came from."""

    text: str
    start: int
    end: int
    score: float


def _output_vector(
    outputs: Dict[str, np.ndarray],
    name: str,
    expected_length: Optional[int] = None,
) -> np.ndarray:
    """Fetch a [1, n] or [n] output tensor as a flat float32 vector."""
    if name not in outputs:
        raise ConfigurationError(
            f"Model output '{name}' missing; got {sorted(outputs)}"
        )
    vector = np.asarray(outputs[name], dtype=np.float32)
    if vector.ndim == 2 and vector.shape[0] == 1:
        vector = vector[0]
    if vector.ndim != 1:
        raise ConfigurationError(
            f"Model output '{name}' has shape {vector.shape}, expected [1, n]"
        )
    if expected_length is not None and vector.shape[0] != expected_length:
        raise ConfigurationError(
            f"Model output '{name}' has {vector.shape[0]} positions "
            f"but the input has {expected_length} tokens"
        )
    return vector


class QAPipeline:
    """
    Loaded tokenizer + model, ready to answer questions or classify text.

    `answer_question` and `classify` report every failure as None except
    InitializationError, which is raised on each call made while the
    tokenizer or model is missing.
    """

    def __init__(
        self,
        tokenizer: Optional[Tokenizer],
        runner: InferenceRunner,
        config: Optional[PipelineConfig] = None,
    ):
        self.tokenizer = tokenizer
        self.runner = runner
        self.config = config if config is not None else PipelineConfig()

    # ------------------------------------------------------------------
    # Span prediction
    # ------------------------------------------------------------------

    def assemble(self, question: str, context: Optional[str] = None) -> AssembledInput:
        if context is None:
            context = self.config.context
        return assemble_qa_input(
            question,
            context,
            self.tokenizer,
            max_length=self.config.max_length,
            padding=self.config.padding,
            truncation=self.config.truncation,
        )

    def decode(
        self,
        assembled: AssembledInput,
        outputs: Dict[str, np.ndarray],
        topk: int = 1,
    ) -> List[SpanCandidate]:
        """Masked softmax over start/end logits followed by span search."""
        start_logits = _output_vector(outputs, START_LOGITS, len(assembled))
        end_logits = _output_vector(outputs, END_LOGITS, len(assembled))
        logger.debug(f"Start logits (raw): {start_logits}")
        logger.debug(f"End logits (raw): {end_logits}")

        undesired = assembled.undesired_mask(self.config.restrict_to_context)
        start_probs = softmax(start_logits, undesired, self.config.mask_value)
        end_probs = softmax(end_logits, undesired, self.config.mask_value)

        return decode_spans(
            start_probs,
            end_probs,
            topk=topk,
            max_answer_length=self.config.max_answer_length,
            undesired_mask=undesired,
        )

    def predict_spans(
        self,
        question: str,
        context: Optional[str] = None,
        topk: Optional[int] = None,
    ) -> List[ScoredAnswer]:
        """
        Return the `topk` best answers, best first.

        Unlike `answer_question` this raises on failure. An empty list means
        the context holds no valid answer span.
        """
        topk = topk if topk is not None else self.config.topk
        assembled = self.assemble(question, context)
        outputs = self.runner.run(build_model_inputs(assembled))
        spans = self.decode(assembled, outputs, topk=topk)
        return [
            ScoredAnswer(
                text=resolve_answer(assembled.input_ids, span, self.tokenizer),
                start=span.start,
                end=span.end,
                score=span.score,
            )
            for span in spans
        ]

    def answer_question(
        self, question: str, context: Optional[str] = None
    ) -> Optional[str]:
        """
        Answer `question` from `context` (the configured context by default).

        Returns None when no valid span exists or any stage fails; failures are
        logged. InitializationError is not swallowed.
        """
        stage = "assembly"
        try:
            assembled = self.assemble(question, context)

            stage = "inference"
            outputs = self.runner.run(build_model_inputs(assembled))

            stage = "decoding"
            spans = self.decode(assembled, outputs, topk=1)
            if not spans:
                logger.warning(f"No valid answer found for question {question!r}")
                return None
            best = spans[0]
            logger.debug(f"Best span: {best.start}-{best.end} (score={best.score:.4f})")

            stage = "resolution"
            answer = resolve_answer(assembled.input_ids, best, self.tokenizer)
        except InitializationError:
            raise
        except Exception:
            logger.exception(
                f"Failed to process question during {stage} (question={question!r})"
            )
            return None

        logger.debug(f"Final answer: {answer!r}")
        return answer

    async def answer_question_async(
        self, question: str, context: Optional[str] = None
    ) -> Optional[str]:
        """`answer_question` on a worker thread."""
        return await asyncio.to_thread(self.answer_question, question, context)

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def label_probabilities(self, text: str) -> np.ndarray:
        """Softmax over the classification head for `text`."""
        assembled = assemble_classification_input(
            text,
            self.tokenizer,
            max_length=self.config.max_length,
            padding=self.config.padding,
            truncation=self.config.truncation,
        )
        outputs = self.runner.run(build_model_inputs(assembled))
        return softmax(_output_vector(outputs, CLASSIFICATION_LOGITS))

    def classify(self, text: str) -> Optional[str]:
        """
        Return the most probable label for `text`, or None on failure.

        A class index missing from the label mapping is logged as a
        configuration error.
        """
        try:
            probs = self.label_probabilities(text)
            index = int(np.argmax(probs))
            label = resolve_label(index, self.config.labels)
        except InitializationError:
            raise
        except ConfigurationError:
            logger.exception(f"Model and label mapping disagree (text={text!r})")
            return None
        except Exception:
            logger.exception(f"Failed to classify text={text!r}")
            return None

        logger.debug(f"Predicted label {label!r} (p={probs[index]:.4f})")
        return label

    async def classify_async(self, text: str) -> Optional[str]:
        """`classify` on a worker thread."""
        return await asyncio.to_thread(self.classify, text)


def load_pipeline(config: PipelineConfig) -> QAPipeline:
    """
    Load the tokenizer and model described by `config`.

    Raises:
        InitializationError: if either resource fails to load
        ConfigurationError: if `config` is invalid
    """
    config.validate()
    tokenizer = load_tokenizer(config.tokenizer_path)
    runner = load_inference_runner(config)
    logger.info(f"Pipeline ready (task={config.task}, model={config.model})")
    return QAPipeline(tokenizer, runner, config)


class PipelineLoader:
    """
    Lazily builds one `QAPipeline` and hands the same instance to every caller.

    Concurrent first calls wait on the same in-flight load. A failed load is
    kept: every later `get()` raises the same InitializationError until
    `reset()` is called.
    """

    def __init__(
        self,
        config: PipelineConfig,
        factory: Callable[[PipelineConfig], QAPipeline] = load_pipeline,
    ):
        self.config = config
        self._factory = factory
        self._lock = threading.Lock()
        self._future: Optional[Future] = None

    @property
    def is_initialized(self) -> bool:
        future = self._future
        return (
            future is not None and future.done() and future.exception() is None
        )

    def get(self) -> QAPipeline:
        with self._lock:
            future = self._future
            is_owner = future is None
            if is_owner:
                future = self._future = Future()

        if is_owner:
            try:
                future.set_result(self._factory(self.config))
            except InitializationError as e:
                future.set_exception(e)
            except Exception as e:
                error = InitializationError(f"Pipeline initialization failed: {e}")
                error.__cause__ = e
                future.set_exception(error)
            except BaseException as e:
                # Interrupted, not failed: release waiters and let the next call load again
                with self._lock:
                    self._future = None
                future.set_exception(e)
                raise

        return future.result()

    async def aget(self) -> QAPipeline:
        return await asyncio.to_thread(self.get)

    def reset(self):
        """Forget a finished load (successful or not) so the next call reloads."""
        with self._lock:
            if self._future is not None and self._future.done():
                self._future = None

    def answer_question(
        self, question: str, context: Optional[str] = None
    ) -> Optional[str]:
        return self.get().answer_question(question, context)

    async def answer_question_async(
        self, question: str, context: Optional[str] = None
    ) -> Optional[str]:
        pipeline = await self.aget()
        return await pipeline.answer_question_async(question, context)

    def classify(self, text: str) -> Optional[str]:
        return self.get().classify(text)

    async def classify_async(self, text: str) -> Optional[str]:
        pipeline = await self.aget()
        return await pipeline.classify_async(text)
