"""Form models."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class FormDefinition(BaseModel):
    """Identity and metadata of one collectible form."""

    model_config = ConfigDict(frozen=True)

    form_id: str
    form_name: str
    file_encrypted: bool = False
    field_encrypted: bool = False
    # Directory holding the form definition and its submissions, when known
    form_dir: str | None = None

    @property
    def is_encrypted(self) -> bool:
        """Whether submissions need a private key to be read."""
        return self.file_encrypted or self.field_encrypted


class StatusEntry(BaseModel):
    """One line of a form's status log."""

    message: str
    succeeded: bool
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class FormStatus(BaseModel):
    """Registry-owned record of a form's selection and status log."""

    form: FormDefinition
    selected: bool = False
    status_log: list[StatusEntry] = Field(default_factory=list)

    @property
    def form_id(self) -> str:
        return self.form.form_id

    @property
    def last_status(self) -> StatusEntry | None:
        """Most recent export outcome message, if any."""
        return self.status_log[-1] if self.status_log else None
