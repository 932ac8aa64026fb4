"""Reviewable topic schema."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class Topic(BaseModel):
    """A user-authored learning topic scheduled on the interval ladder.

    `stage` drives automatic due-date computation. `uses_manual_schedule` is
    an overlay: while set, `next_due_at` is user-controlled and mirrored in
    `manual_due_at`.
    """

    id: str = Field(description="Unique identifier (UUID)")
    title: str
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    stage: int = Field(default=0, ge=0, description="Position on the interval ladder")
    next_due_at: datetime = Field(description="Review is due when this is <= now")
    last_reviewed_at: Optional[datetime] = None
    review_count: int = Field(default=0, ge=0)
    uses_manual_schedule: bool = False
    manual_due_at: Optional[datetime] = None
    last_modified_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Updated on every mutation; used for change detection",
    )

    @model_validator(mode="after")
    def _check_manual_schedule(self) -> "Topic":
        if self.uses_manual_schedule and self.manual_due_at != self.next_due_at:
            raise ValueError("manual_due_at must mirror next_due_at on a manual schedule")
        if not self.uses_manual_schedule and self.manual_due_at is not None:
            raise ValueError("manual_due_at must be empty on an automatic schedule")
        return self

    def is_due(self, now: datetime) -> bool:
        return self.next_due_at <= now
