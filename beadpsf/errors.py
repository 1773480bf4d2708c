class InputError(ValueError):
    """Raised when the stack, calibration or settings are rejected before processing."""


class FittingError(RuntimeError):
    """Raised when a Gaussian fit does not converge or lands outside the stack."""
