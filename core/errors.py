"""
Error taxonomy for the gesture trainer.

Each error is terminal for the operation that raised it; callers decide how
to surface it. ``category`` identifies which of the three kinds occurred.
"""


class GestureTrainerError(Exception):
    """Base class for all gesture trainer failures."""

    category = "error"


class ValidationError(GestureTrainerError):
    """Malformed training-data upload or structurally invalid sample."""

    category = "validation"


class TrainingError(GestureTrainerError):
    """The numeric training routine failed."""

    category = "training"


class TrainingCancelled(TrainingError):
    """Training stopped because its cancellation token fired."""

    category = "training"


class ArtifactError(GestureTrainerError):
    """Missing, insufficient or inconsistent model artifact payloads."""

    category = "artifact"
