from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import JSON, String, Date, DateTime, Integer, Numeric, ForeignKey, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portalsim.database import Base


class Claim(Base):
    __tablename__ = "claims"

    id: Mapped[int] = mapped_column(primary_key=True)
    claim_id: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    scenario_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    provider_id: Mapped[str] = mapped_column(String(30), index=True)
    provider_npi: Mapped[str] = mapped_column(String(10))
    specialty: Mapped[str] = mapped_column(String(50))
    tax_id: Mapped[str] = mapped_column(String(20))
    patient_name: Mapped[str] = mapped_column(String(100))
    patient_dob: Mapped[date] = mapped_column(Date)
    patient_sex: Mapped[str] = mapped_column(String(10))
    member_id: Mapped[str] = mapped_column(String(20), index=True)
    date_of_service: Mapped[date] = mapped_column(Date, index=True)
    submission_date: Mapped[date] = mapped_column(Date)
    processing_date: Mapped[date] = mapped_column(Date)
    place_of_service: Mapped[str] = mapped_column(String(5))
    value_tier: Mapped[str] = mapped_column(String(10))
    diagnosis_codes: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(20), index=True)  # approved, denied
    billed_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    denial_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    denial_category: Mapped[str | None] = mapped_column(String(30), nullable=True)
    pattern_id: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    policy_ids: Mapped[list] = mapped_column(JSON, default=list)
    edit_codes: Mapped[list] = mapped_column(JSON, default=list)
    fix_guidance: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    lines: Mapped[list["ClaimLineItem"]] = relationship(
        back_populates="claim", cascade="all, delete-orphan", order_by="ClaimLineItem.line_number",
    )


class ClaimLineItem(Base):
    __tablename__ = "claim_line_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    claim_pk: Mapped[int] = mapped_column(ForeignKey("claims.id", ondelete="CASCADE"), index=True)
    line_number: Mapped[int] = mapped_column(Integer)
    procedure_code: Mapped[str] = mapped_column(String(10), index=True)
    description: Mapped[str] = mapped_column(String(200))
    units: Mapped[int] = mapped_column(Integer, default=1)
    modifiers: Mapped[list] = mapped_column(JSON, default=list)
    diagnosis_codes: Mapped[list] = mapped_column(JSON, default=list)
    billed_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    status: Mapped[str] = mapped_column(String(20))
    pattern_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    policy_ids: Mapped[list] = mapped_column(JSON, default=list)
    edit_codes: Mapped[list] = mapped_column(JSON, default=list)

    claim: Mapped["Claim"] = relationship(back_populates="lines")
