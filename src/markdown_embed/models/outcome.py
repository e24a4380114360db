"""Pipeline outcome models."""

from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, Field


class PipelineStatus(str, Enum):
    """Terminal classification of one pipeline run."""

    SUCCESS = "success"
    # Every item was invalid; retrying the same batch cannot help.
    HARDFAIL = "hardfail"
    # Transient infrastructure fault; retry the same batch.
    SOFTFAIL = "softfail"


class PipelineOutcome(BaseModel):
    """The single result of a pipeline run."""

    status: PipelineStatus
    message: str
    http_code: int
    billed_units: Dict[str, Any] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)

    @classmethod
    def success(cls, billed_units: Dict[str, Any], warnings: List[str]) -> "PipelineOutcome":
        return cls(
            status=PipelineStatus.SUCCESS,
            message="Successfully upserted vectors",
            http_code=200,
            billed_units=billed_units,
            warnings=warnings,
        )

    @classmethod
    def hardfail(cls, message: str = "No valid markdown found") -> "PipelineOutcome":
        return cls(status=PipelineStatus.HARDFAIL, message=message, http_code=404)

    @classmethod
    def softfail(cls, message: str) -> "PipelineOutcome":
        return cls(status=PipelineStatus.SOFTFAIL, message=message, http_code=500)

    @property
    def should_retry(self) -> bool:
        return self.status == PipelineStatus.SOFTFAIL

    def to_response_body(self) -> Dict[str, Any]:
        """Render the JSON body returned to HTTP callers."""
        body: Dict[str, Any] = {"message": self.message, "status": self.status.value}
        if self.status == PipelineStatus.SUCCESS:
            body["billedUnits"] = self.billed_units
            body["warnings"] = self.warnings
        return body
