"""
PatternSnapshot model — realized per-month metrics for one pattern in one scenario run.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, Integer, DateTime, Float, Numeric, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from portalsim.database import Base


class PatternSnapshot(Base):
    __tablename__ = "pattern_snapshots"
    __table_args__ = (UniqueConstraint("scenario_id", "pattern_id", "month"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    scenario_id: Mapped[str] = mapped_column(String(64), index=True)
    pattern_id: Mapped[str] = mapped_column(String(50), index=True)
    month: Mapped[str] = mapped_column(String(7))  # YYYY-MM
    claim_count: Mapped[int] = mapped_column(Integer)
    denied_count: Mapped[int] = mapped_column(Integer)
    denial_rate: Mapped[float] = mapped_column(Float)
    target_rate: Mapped[float] = mapped_column(Float)
    dollars_denied: Mapped[Decimal] = mapped_column(Numeric(14, 2))
    dollars_at_risk: Mapped[Decimal] = mapped_column(Numeric(14, 2))
    appeal_count: Mapped[int] = mapped_column(Integer)
    appeal_rate: Mapped[float] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
