"""SQLAlchemy ORM models for rules, plans, wallets, withdrawals and payouts"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Ordered surrogate key; SQLite only autoincrements INTEGER primary keys
SerialId = BigInteger().with_variant(Integer, "sqlite")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PlanRule(Base):
    """Versioned rate rule; at most one row has active = true"""

    __tablename__ = "plan_rule"
    __table_args__ = (UniqueConstraint("family", "version", name="uq_plan_rule_family_version"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    family = Column(Text, nullable=False, default="default")
    name = Column(Text, nullable=False)
    min_amount_paise = Column(BigInteger, nullable=False)
    special_min_paise = Column(BigInteger, nullable=False)
    special_rate = Column(Numeric(12, 6), nullable=False)
    admin_charge = Column(Numeric(12, 6), nullable=False)
    booster = Column(Numeric(12, 6), nullable=False)
    bands = Column(JSON, nullable=False)  # [{from_month, to_month, monthly_rate}]
    active = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False)
    effective_from = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_by = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ActivePlanRule(Base):
    """Singleton pointer (id = 1) to the active rule, row-locked on activation"""

    __tablename__ = "active_plan_rule"

    id = Column(Integer, primary_key=True)
    plan_rule_id = Column(Uuid, ForeignKey("plan_rule.id"), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class InvestmentPlan(Base):
    """Catalog entry shown to investors; soft-deleted via deleted_at"""

    __tablename__ = "investment_plan"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(Text, nullable=False)
    start_month = Column(Integer, nullable=False)
    end_month = Column(Integer, nullable=False)
    annual_return_percent = Column(Numeric(6, 2), nullable=False)
    min_investment_paise = Column(BigInteger, nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    sort_order = Column(Integer, nullable=False, default=0, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Wallet(Base):
    """Materialized balance/locked figures; available = balance - locked"""

    __tablename__ = "wallet"
    __table_args__ = (
        CheckConstraint("locked_paise >= 0", name="ck_wallet_locked_non_negative"),
        CheckConstraint("locked_paise <= balance_paise", name="ck_wallet_locked_within_balance"),
    )

    user_id = Column(Text, primary_key=True)
    balance_paise = Column(BigInteger, nullable=False, default=0)
    locked_paise = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class LedgerEntry(Base):
    """Append-only audit line for every wallet mutation"""

    __tablename__ = "ledger_entry"

    id = Column(SerialId, primary_key=True, autoincrement=True)
    user_id = Column(Text, nullable=False, index=True)
    kind = Column(Text, nullable=False)
    amount_paise = Column(BigInteger, nullable=False)  # positive; effect given by kind
    reference_id = Column(Text, nullable=True)
    note = Column(Text, nullable=True)
    balance_after_paise = Column(BigInteger, nullable=False)
    locked_after_paise = Column(BigInteger, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)


class Withdrawal(Base):
    """User withdrawal request; mutated only by the withdrawal state machine"""

    __tablename__ = "withdrawal"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    amount_paise = Column(BigInteger, nullable=False)
    source = Column(Text, nullable=False, default="earnings")
    charges_paise = Column(BigInteger, nullable=False, default=0)
    tds_paise = Column(BigInteger, nullable=False, default=0)
    net_amount_paise = Column(BigInteger, nullable=False)
    status = Column(Text, nullable=False, default="requested", index=True)
    reason = Column(Text, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    rrn = Column(Text, nullable=True)
    gateway = Column(Text, nullable=True)
    reprocess_key = Column(Text, nullable=True)
    # Set while a transfer is with the payment rail; cleared on a terminal status
    disbursing_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Investment(Base):
    """Principal placed by a user under the active rule"""

    __tablename__ = "investment"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    principal_paise = Column(BigInteger, nullable=False)
    month_duration = Column(Integer, nullable=False)
    booster_applied = Column(Boolean, nullable=False, default=False)
    plan_rule_id = Column(Uuid, ForeignKey("plan_rule.id"), nullable=False)
    plan_rule_version = Column(Integer, nullable=False)
    status = Column(Text, nullable=False, default="initiated")
    started_at = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Payout(Base):
    """One monthly payout of an investment; never deleted, only transitioned"""

    __tablename__ = "payout"
    __table_args__ = (UniqueConstraint("investment_id", "month_no", name="uq_payout_investment_month"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    investment_id = Column(Uuid, ForeignKey("investment.id", ondelete="CASCADE"), nullable=False)
    month_no = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    gross_payout_paise = Column(BigInteger, nullable=True)
    admin_charge_paise = Column(BigInteger, nullable=True)
    booster_paise = Column(BigInteger, nullable=True)
    amount_paise = Column(BigInteger, nullable=True)  # net, set when processed
    plan_rule_id = Column(Uuid, ForeignKey("plan_rule.id"), nullable=True)
    credited = Column(Boolean, nullable=False, default=False)
    status = Column(Text, nullable=False, default="scheduled", index=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    rrn = Column(Text, nullable=True)
    gateway = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class StateTransition(Base):
    """Audit trail of withdrawal and payout status changes"""

    __tablename__ = "state_transition"

    id = Column(SerialId, primary_key=True, autoincrement=True)
    entity_type = Column(Text, nullable=False)  # withdrawal | payout
    entity_id = Column(Uuid, nullable=False, index=True)
    from_status = Column(Text, nullable=True)
    to_status = Column(Text, nullable=False)
    event = Column(Text, nullable=False)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
