from typing import Dict, Optional


class WayfinderError(Exception):
    """Base class for all domain errors"""


class EmbeddingError(WayfinderError):
    """Raised when a text cannot be embedded"""


class ConfigurationError(EmbeddingError):
    """Missing or invalid provider credential; fatal for that provider only"""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderError(EmbeddingError):
    """Network, HTTP or payload failure from an embedding backend"""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class AllProvidersFailedError(EmbeddingError):
    """Every provider in the fallback chain failed"""

    def __init__(self, errors: Dict[str, Exception]):
        details = "; ".join(f"{name}: {error}" for name, error in errors.items())
        super().__init__(f"All embedding providers failed ({details})")
        self.errors = errors


class DimensionMismatchError(WayfinderError):
    """Two vectors of different length were compared"""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Embedding dimensions must match: {expected} != {actual}")
        self.expected = expected
        self.actual = actual


class PlanningError(WayfinderError):
    """A plan could not be produced or failed validation"""


class StepExecutionError(WayfinderError):
    """A step handler could not carry out its step"""

    def __init__(self, step_id: str, message: str):
        super().__init__(message)
        self.step_id = step_id


class PersistenceError(WayfinderError):
    """The durable snapshot could not be written or read"""


class StoreNotInitializedError(WayfinderError):
    """The memory store was used before init() or after teardown()"""


class NavigationTimeoutError(WayfinderError):
    """A navigation target did not become ready in time"""
