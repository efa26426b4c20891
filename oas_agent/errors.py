from typing import List, Optional


class PipelineError(Exception):
    """Base class for failures raised inside the spec pipeline."""


class CallerError(PipelineError):
    """The request itself cannot be served (bad payload, no identifiable operation)."""


class ConfigurationError(PipelineError):
    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__("Service is not configured.")


class ToolFailure(PipelineError):
    """A collaborator (search, page reader, validator, model) failed or returned unusable output."""


class LLMError(ToolFailure):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class EvaluationError(ToolFailure):
    pass


class StageError(PipelineError):
    """Stage-local failure value: the stage label plus a human-readable detail."""

    def __init__(self, label: str, detail: str):
        self.label = label
        self.detail = detail
        super().__init__(f"{label} Failed: {detail}")

    @property
    def reason(self) -> str:
        return str(self)
