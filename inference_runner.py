"""
Inference runners: the boundary to the transformer forward pass.

A runner takes named int64 input tensors of shape [1, sequence_length] and
returns named float32 output tensors (`start_logits` / `end_logits` for span
prediction, `logits` for classification). Two backends are provided:

- OnnxInferenceRunner: an exported model executed with ONNX Runtime
- TorchInferenceRunner: a `transformers` checkpoint executed with PyTorch
"""

import inspect
import logging
import os
from typing import Dict, List

import numpy as np
import onnxruntime as ort
import torch
from transformers import (
    AutoModelForQuestionAnswering,
    AutoModelForSequenceClassification,
)

from pipeline_config import TASK_CLASSIFICATION, PipelineConfig
from qa_errors import ConfigurationError, InitializationError

logger = logging.getLogger(__name__)


class InferenceRunner:
    """Base class for model backends."""

    @property
    def input_names(self) -> List[str]:
        raise NotImplementedError("Subclasses must implement input_names")

    def run(self, inputs: Dict[str, np.ndarray]) -> Dict[str, np.ndarray]:
        """
        Run one forward pass.

        Args:
            inputs: Named int64 tensors, e.g. input_ids and attention_mask

        Returns:
            Mapping from output name to a float32 array
        """
        raise NotImplementedError("Subclasses must implement run()")

    def select_inputs(self, inputs: Dict[str, np.ndarray]) -> Dict[str, np.ndarray]:
        """Keep only the tensors the model accepts."""
        missing = [name for name in self.input_names if name not in inputs]
        if missing:
            raise ConfigurationError(
                f"Model expects inputs {missing} that the pipeline does not provide"
            )
        return {name: inputs[name] for name in self.input_names}


class OnnxInferenceRunner(InferenceRunner):
    """Runs an exported ONNX model through an `onnxruntime.InferenceSession`."""

    def __init__(self, session):
        self.session = session
        self._input_names = [node.name for node in session.get_inputs()]
        self.output_names = [node.name for node in session.get_outputs()]

    @classmethod
    def from_path(cls, model_path: str) -> "OnnxInferenceRunner":
        if not os.path.isfile(model_path):
            raise InitializationError(f"ONNX model not found: {model_path}")
        logger.info(f"Loading ONNX model from {model_path}")
        try:
            session = ort.InferenceSession(
                model_path, providers=["CPUExecutionProvider"]
            )
        except Exception as e:
            raise InitializationError(
                f"Could not create an inference session for {model_path}: {e}"
            ) from e
        return cls(session)

    @property
    def input_names(self) -> List[str]:
        return self._input_names

    def run(self, inputs: Dict[str, np.ndarray]) -> Dict[str, np.ndarray]:
        feed = self.select_inputs(inputs)
        outputs = self.session.run(self.output_names, feed)
        return {
            name: np.asarray(value, dtype=np.float32)
            for name, value in zip(self.output_names, outputs)
        }


class TorchInferenceRunner(InferenceRunner):
    """Runs a `transformers` model in eval mode without gradients."""

    def __init__(self, model, device: str = "cpu"):
        self.device = torch.device(device)
        self.model = model.to(self.device)
        self.model.eval()

        accepted = inspect.signature(self.model.forward).parameters
        # Not every architecture takes token_type_ids (e.g. DistilBERT)
        self._input_names = [
            name
            for name in ("input_ids", "attention_mask", "token_type_ids")
            if name in accepted
        ]

    @property
    def input_names(self) -> List[str]:
        return self._input_names

    def run(self, inputs: Dict[str, np.ndarray]) -> Dict[str, np.ndarray]:
        feed = {
            name: torch.from_numpy(np.asarray(array, dtype=np.int64)).to(self.device)
            for name, array in self.select_inputs(inputs).items()
        }
        with torch.no_grad():
            outputs = self.model(**feed)

        return {
            name: value.detach().cpu().numpy().astype(np.float32)
            for name, value in outputs.items()
            if isinstance(value, torch.Tensor) and name != "loss"
        }


def load_inference_runner(config: PipelineConfig) -> InferenceRunner:
    """
    Create the runner for `config.model`.

    `.onnx` files run on ONNX Runtime; anything else is loaded as a
    `transformers` checkpoint with the head matching `config.task`.

    Raises:
        InitializationError: if the model cannot be loaded
    """
    if config.is_onnx:
        return OnnxInferenceRunner.from_path(config.model)

    model_cls = (
        AutoModelForSequenceClassification
        if config.task == TASK_CLASSIFICATION
        else AutoModelForQuestionAnswering
    )
    logger.info(f"Loading {model_cls.__name__} from {config.model}")
    try:
        model = model_cls.from_pretrained(config.model)
    except (OSError, ValueError) as e:
        raise InitializationError(
            f"Could not load model from {config.model}: {e}"
        ) from e
    return TorchInferenceRunner(model, device=config.device)
