# file: weather_pipeline/errors.py

from weather_pipeline.result import Failure


class PipelineError(Exception):
    """Raised when no snapshot can be assembled for a city."""

    def __init__(self, message: str, failure: Failure | None = None):
        super().__init__(message)
        self.failure = failure


class BackendUnavailable(PipelineError):
    pass


class FallbackUnavailable(PipelineError):
    pass
