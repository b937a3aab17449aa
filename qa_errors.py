"""
Error types shared by the question answering pipeline.

- InitializationError: the model or tokenizer could not be loaded
- ConfigurationError: an internal invariant does not hold (label index with no
  label, tensor shape mismatch, invalid decoder arguments)

"No answer found" is not an error: the pipeline reports it as ``None``.
"""


class InitializationError(RuntimeError):
    """Model or tokenizer failed to load."""


class ConfigurationError(ValueError):
    """Model, label mapping or pipeline settings are inconsistent."""
