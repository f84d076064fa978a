"""Export job models."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class JobState(str, Enum):
    """Stages of a single form's export job."""

    IDLE = "idle"
    ENCRYPTION_CHECK = "encryption_check"
    CREDENTIAL_RESOLUTION = "credential_resolution"
    RANGE_CHECK = "range_check"
    DELEGATED = "delegated"
    RECORDED = "recorded"


class EventKind(str, Enum):
    """Kind of notification emitted while a job runs."""

    PROGRESS = "progress"
    FAILURE = "failure"
    SUCCESS = "success"


class ExportEvent(BaseModel):
    """Notification published to export listeners."""

    form_id: str
    kind: EventKind
    message: str
    state: JobState
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SuccessfulExport(BaseModel):
    """Event published by the registry when a form export succeeds."""

    form_id: str
    exported_at: datetime


class ExportOutcome(BaseModel):
    """Terminal outcome of one form's export job."""

    form_id: str
    succeeded: bool
    message: str
    # Stage that failed, for unsuccessful outcomes
    failed_stage: JobState | None = None
    # Exception class name for failures, e.g. "CredentialError"
    error_type: str | None = None
    exported_at: datetime | None = None


class BatchResult(BaseModel):
    """Aggregated outcomes of a batch export, keyed by form identifier."""

    outcomes: dict[str, ExportOutcome] = Field(default_factory=dict)

    @property
    def success_count(self) -> int:
        return sum(1 for outcome in self.outcomes.values() if outcome.succeeded)

    @property
    def error_count(self) -> int:
        return sum(1 for outcome in self.outcomes.values() if not outcome.succeeded)

    @property
    def failed(self) -> list[ExportOutcome]:
        return [outcome for outcome in self.outcomes.values() if not outcome.succeeded]
