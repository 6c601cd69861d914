"""Error taxonomy for the program generation pipeline."""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class ProgramGenerationError(Exception):
    """Base class for failures that abort a generation run."""

    error_type = "program_generation_error"

    def __init__(self, message: str, *, step: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.step = step

    def to_record(self) -> Dict[str, Any]:
        """Structured form stored on the run record for operators."""
        record: Dict[str, Any] = {"error_type": self.error_type, "message": self.message}
        if self.step:
            record["step"] = self.step
        return record


class ConfigurationMissing(ProgramGenerationError):
    """The owner's coach config or profile could not be resolved. Never retried."""

    error_type = "configuration_missing"


class GenerationUnparseable(ProgramGenerationError):
    """The generation service output could not be parsed even after repair."""

    error_type = "generation_unparseable"

    def __init__(self, message: str, *, step: Optional[str] = None, raw_excerpt: str = "") -> None:
        super().__init__(message, step=step)
        self.raw_excerpt = raw_excerpt[:500]

    def to_record(self) -> Dict[str, Any]:
        record = super().to_record()
        if self.raw_excerpt:
            record["raw_excerpt"] = self.raw_excerpt
        return record


class GenerationTimeout(ProgramGenerationError):
    error_type = "generation_timeout"


class GenerationServiceError(ProgramGenerationError):
    """The generation provider raised (API, transport or rate-limit error)."""

    error_type = "generation_service_error"

    def __init__(self, message: str, *, step: Optional[str] = None, cause: str = "") -> None:
        super().__init__(message, step=step)
        self.cause = cause

    def to_record(self) -> Dict[str, Any]:
        record = super().to_record()
        if self.cause:
            record["cause"] = self.cause
        return record


class PhaseStructureInvalid(ProgramGenerationError):
    error_type = "phase_structure_invalid"


class UnsupportedTemplateFormat(ProgramGenerationError):
    """Raised for the legacy structured-exercise template shape, which is not migrated."""

    error_type = "unsupported_template_format"


class CommitFailed(ProgramGenerationError):
    """The detail blob or metadata document could not be written."""

    error_type = "commit_failed"


class ValidationBlocked(ProgramGenerationError):
    """Validation still fails after pruning/normalization; persistence is forbidden."""

    error_type = "validation_blocked"

    def __init__(
        self,
        message: str,
        *,
        issues: Optional[List[Dict[str, Any]]] = None,
        blocking_flags: Optional[Dict[str, bool]] = None,
        step: Optional[str] = "validation",
    ) -> None:
        super().__init__(message, step=step)
        self.issues = list(issues or [])
        self.blocking_flags = dict(blocking_flags or {})

    def to_record(self) -> Dict[str, Any]:
        record = super().to_record()
        record["issues"] = self.issues
        record["blocking_flags"] = self.blocking_flags
        return record


class NonCriticalSideEffectFailure(ProgramGenerationError):
    """A best-effort side effect failed (vector index, debug snapshot). Logged, never fatal."""

    error_type = "non_critical_side_effect_failure"
