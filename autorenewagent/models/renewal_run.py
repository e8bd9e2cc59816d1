from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import String, Integer, DateTime, Enum as SQLEnum, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..db.database import Base


class RunStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RENEWED = "renewed"
    NOT_DUE = "not_due"
    UNCHANGED = "unchanged"
    FAILED = "failed"


class RenewalRun(Base):
    """一次续期执行记录，对应 renewal_runs 表。"""

    __tablename__ = "renewal_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    status: Mapped[RunStatus] = mapped_column(
        SQLEnum(RunStatus),
        default=RunStatus.PENDING,
        index=True,
        nullable=False,
    )
    phase: Mapped[str | None] = mapped_column(String(32), nullable=True)
    expiry_before: Mapped[str | None] = mapped_column(String(32), nullable=True)
    expiry_after: Mapped[str | None] = mapped_column(String(32), nullable=True)
    next_renew_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    info_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    debug_artifacts: Mapped[str | None] = mapped_column(Text, nullable=True)
    create_time: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(timezone.utc), nullable=False
    )
    finish_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status.value
            if isinstance(self.status, RunStatus)
            else self.status,
            "phase": self.phase,
            "expiry_before": self.expiry_before,
            "expiry_after": self.expiry_after,
            "next_renew_date": self.next_renew_date,
            "info_message": self.info_message,
            "error_message": self.error_message,
            "debug_artifacts": self.debug_artifacts.splitlines()
            if self.debug_artifacts
            else [],
            "create_time": self.create_time.isoformat() if self.create_time else None,
            "finish_time": self.finish_time.isoformat() if self.finish_time else None,
        }
