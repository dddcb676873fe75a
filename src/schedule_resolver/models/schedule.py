"""Staff, layer, and approval log models."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from schedule_resolver.models.base import Base, TimestampMixin, UTCDateTime, utcnow


# ===== Roster =====


class Staff(Base, TimestampMixin):
    """Roster entry. Owned by the roster component; read-only here."""

    __tablename__ = "staff"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    emp_no: Mapped[str | None] = mapped_column(String, unique=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    department: Mapped[str | None] = mapped_column(String)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    contract: Mapped[Contract | None] = relationship(back_populates="staff")


# ===== Layer 1: contract baseline =====


class Contract(Base, TimestampMixin):
    """Baseline weekly work hours, one row per staff member.

    Each weekday column holds an optional "HH:MM-HH:MM" string.
    """

    __tablename__ = "contract"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    staff_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("staff.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    monday_hours: Mapped[str | None] = mapped_column(String)
    tuesday_hours: Mapped[str | None] = mapped_column(String)
    wednesday_hours: Mapped[str | None] = mapped_column(String)
    thursday_hours: Mapped[str | None] = mapped_column(String)
    friday_hours: Mapped[str | None] = mapped_column(String)
    saturday_hours: Mapped[str | None] = mapped_column(String)
    sunday_hours: Mapped[str | None] = mapped_column(String)

    staff: Mapped[Staff] = relationship(back_populates="contract")

    def weekday_columns(self) -> tuple[str | None, ...]:
        """Hours strings in Weekday order (Monday first)."""
        return (
            self.monday_hours,
            self.tuesday_hours,
            self.wednesday_hours,
            self.thursday_hours,
            self.friday_hours,
            self.saturday_hours,
            self.sunday_hours,
        )


# ===== Layer 2: recurring monthly schedule =====


class MonthlySchedule(Base, TimestampMixin):
    """Pre-generated dated schedule entry."""

    __tablename__ = "monthly_schedule"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    staff_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("staff.id", ondelete="CASCADE"),
        nullable=False,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    start_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    source: Mapped[str | None] = mapped_column(String)
    memo: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("end_at > start_at", name="monthly_schedule_range_check"),
        Index("monthly_schedule_staff_date_idx", "staff_id", "work_date"),
    )


# ===== Layer 3: ad-hoc adjustment (and pending requests) =====


class Adjustment(Base, TimestampMixin):
    """Ad-hoc override entry, optionally carrying pending workflow state."""

    __tablename__ = "adjustment"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    staff_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("staff.id", ondelete="CASCADE"),
        nullable=False,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    start_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    memo: Mapped[str | None] = mapped_column(Text)
    reason: Mapped[str | None] = mapped_column(Text)

    # Workflow metadata
    is_pending: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pending_type: Mapped[str | None] = mapped_column(String)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    approved_by: Mapped[str | None] = mapped_column(String)
    rejected_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    rejected_by: Mapped[str | None] = mapped_column(String)
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    batch_id: Mapped[str | None] = mapped_column(String)
    submission_id: Mapped[str | None] = mapped_column(String)
    submission_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("end_at > start_at", name="adjustment_range_check"),
        CheckConstraint(
            "NOT (approved_at IS NOT NULL AND rejected_at IS NOT NULL)",
            name="adjustment_single_decision_check",
        ),
        Index("adjustment_staff_date_idx", "staff_id", "work_date"),
        Index("adjustment_submission_idx", "submission_id"),
        # At most one active pending request per (staff, date, type).
        # Bulk-imported rows (batch_id set) bypass it; reconciliation cleans up.
        Index(
            "adjustment_active_pending_unique",
            "staff_id",
            "work_date",
            "pending_type",
            unique=True,
            sqlite_where=text(
                "is_pending = 1 AND approved_at IS NULL AND rejected_at IS NULL "
                "AND batch_id IS NULL AND submission_seq = 0"
            ),
            postgresql_where=text(
                "is_pending AND approved_at IS NULL AND rejected_at IS NULL "
                "AND batch_id IS NULL AND submission_seq = 0"
            ),
        ),
    )

    approval_logs: Mapped[list[ApprovalLogEntry]] = relationship(
        back_populates="adjustment",
        order_by="ApprovalLogEntry.sequence",
    )


class ApprovalLogEntry(Base):
    """Append-only audit record of a workflow transition."""

    __tablename__ = "approval_log_entry"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    adjustment_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("adjustment.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    from_state: Mapped[str] = mapped_column(String, nullable=False)
    to_state: Mapped[str] = mapped_column(String, nullable=False)
    actor: Mapped[str] = mapped_column(String, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("adjustment_id", "sequence", name="approval_log_seq_unique"),
    )

    adjustment: Mapped[Adjustment] = relationship(back_populates="approval_logs")
