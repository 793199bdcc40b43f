from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import String, Date, DateTime, Numeric, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from portalsim.database import Base


class ClaimAppeal(Base):
    __tablename__ = "claim_appeals"

    id: Mapped[int] = mapped_column(primary_key=True)
    appeal_id: Mapped[str] = mapped_column(String(30), unique=True, index=True)
    claim_id: Mapped[str] = mapped_column(String(40), index=True)
    pattern_id: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    category: Mapped[str | None] = mapped_column(String(30), nullable=True)
    appeal_reason: Mapped[str] = mapped_column(Text)
    denial_date: Mapped[date] = mapped_column(Date)
    filed_date: Mapped[date] = mapped_column(Date)
    outcome_date: Mapped[date] = mapped_column(Date)
    outcome: Mapped[str] = mapped_column(String(20), index=True)  # overturned, upheld, pending
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
