"""Error taxonomy for forecast generation."""
from __future__ import annotations


class ForgeError(Exception):
    """Base class for errors that cross the engine boundary."""

    kind = "forge_error"


class FeatureNotFoundError(ForgeError):
    kind = "feature_not_found"

    def __init__(self, feature_id: int):
        super().__init__(f"Feature {feature_id} not found")
        self.feature_id = feature_id


class InvalidFeatureStateError(ForgeError):
    """A feature reached the scorer with attributes that creation should have rejected."""

    kind = "invalid_feature_state"


class GenerationError(ForgeError):
    kind = "generation_error"


class GenerationSchemaError(GenerationError):
    """The model never produced output that passed validation."""

    kind = "generation_schema"

    def __init__(self, message: str, attempts: int, errors: list[str] | None = None):
        super().__init__(message)
        self.attempts = attempts
        self.errors = list(errors or [])


class GenerationUnavailableError(GenerationError):
    """The model could not be reached within the transport retry budget."""

    kind = "generation_unavailable"

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class VersionConflictError(ForgeError):
    """Concurrent writers kept taking the next version number for a feature."""

    kind = "version_conflict"

    def __init__(self, feature_id: int, attempts: int):
        super().__init__(f"Could not assign a forecast version for feature {feature_id} after {attempts} attempts")
        self.feature_id = feature_id
        self.attempts = attempts
