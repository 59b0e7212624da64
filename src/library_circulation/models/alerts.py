"""Member alert models."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from ..database.schema import AlertTypeEnum as AlertType


class MemberAlert(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    member_id: int
    alert_type: AlertType
    message: str
    alert_date: datetime
    resolved_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.resolved_at is None


class OverdueRunResult(BaseModel):
    """What one overdue-detection pass changed."""

    loans_marked_overdue: int
    alerts_created: int
    members_alerted: list[int]


__all__ = ["AlertType", "MemberAlert", "OverdueRunResult"]
