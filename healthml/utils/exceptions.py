"""
Custom errors raised by the modeling pipeline.
"""

class HealthMLError(Exception):
    """Base class for every error raised by the pipeline."""
    pass

class InvalidProportionError(HealthMLError, ValueError):
    """Raised when a split proportion is outside (0, 1) or leaves one side empty."""
    pass

class EmptyStratumError(HealthMLError, ValueError):
    """Raised when a stratification class has no members (or too few to split)."""
    pass

class DegenerateColumnError(HealthMLError, ValueError):
    """Raised when a column selected for normalization has zero training variance."""
    pass

class PreprocessingConfigError(HealthMLError, ValueError):
    """Raised when a preprocessing step targets columns that do not exist or are not numeric"""
    pass

class TrainerConfigError(HealthMLError, ValueError):
    """Raised when a hyperparameter is outside its valid range."""
    pass

class NonConvergenceError(HealthMLError, RuntimeError):
    """Raised when a learner's fitting procedure does not produce a usable model."""
    pass

class PipelineStateError(HealthMLError):
    """Raised when an experiment step runs before the steps it depends on."""
    pass
