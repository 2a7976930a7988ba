"""Exception types shared by the feature pipeline and the trainer."""


class DroneRFError(Exception):
    pass


class ConfigurationError(DroneRFError):
    """Fatal: invalid settings or a declared class with no examples."""


class RecordingError(DroneRFError):
    """A single recording could not be turned into a feature vector."""

    def __init__(self, identifier: str, reason: str):
        super().__init__(f"{identifier}: {reason}")
        self.identifier = identifier
        self.reason = reason


class RecordingTooShortError(RecordingError):
    pass


class FitError(DroneRFError):
    """A model fit that cannot be trusted (non-convergence, degenerate score)."""


class ModelSelectionError(DroneRFError):
    """No grid combination produced a usable cross-validated score."""
