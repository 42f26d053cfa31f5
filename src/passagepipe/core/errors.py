"""Exception types raised by passagepipe.

Only startup errors (tokenizer, model, configuration) are meant to stop a
run. Everything that goes wrong while a batch is in flight is recorded in
the results instead of being raised.
"""


class PassagePipeError(Exception):
    """Base class for all passagepipe errors."""


class ConfigError(PassagePipeError, ValueError):
    """Invalid configuration value."""


class TokenizerLoadError(PassagePipeError):
    """The tokenizer file is missing or cannot be parsed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Can't load tokenizer from {path}: {reason}")


class ModelLoadError(PassagePipeError):
    """Model weights are missing or incompatible with the backend."""

    def __init__(self, path: str, reason: str, device: str = None):
        self.path = path
        self.reason = reason
        self.device = device
        where = f" on {device}" if device else ""
        super().__init__(f"Can't load model {path}{where}: {reason}")
