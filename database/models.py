"""
Database models for FieldLedger.
Farms, legal entities, cost entries, financing records, grain contracts
and their per-farm allocations, market prices, and the audit trail.
"""

from sqlalchemy import (
    Column, Integer, String, Float, Date, DateTime, ForeignKey,
    Boolean, Text, Enum, JSON, UniqueConstraint
)
from sqlalchemy.orm import relationship, DeclarativeBase
from datetime import datetime
import enum


class Base(DeclarativeBase):
    pass


# === Enums ===

class CommodityType(enum.Enum):
    CORN = "corn"
    SOYBEANS = "soybeans"
    WHEAT = "wheat"


class CostCategory(enum.Enum):
    FERTILIZER = "fertilizer"
    CHEMICAL = "chemical"
    SEED = "seed"
    LAND_RENT = "land_rent"
    INSURANCE = "insurance"
    OTHER = "other"


class FinancingType(enum.Enum):
    LOAN = "loan"
    LEASE = "lease"


class FinancingMode(enum.Enum):
    SIMPLE = "simple"
    AMORTIZED = "amortized"


class ContractType(enum.Enum):
    CASH = "cash"
    BASIS = "basis"
    HTA = "hta"
    ACCUMULATOR = "accumulator"


class CropYear(enum.Enum):
    NEW_CROP = "new_crop"
    OLD_CROP = "old_crop"


class OperatingTransactionType(enum.Enum):
    DRAW = "draw"
    PAYMENT = "payment"


class AllocationType(enum.Enum):
    PROPORTIONAL = "proportional"
    MANUAL = "manual"


class AuditSeverity(enum.Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


# === Models ===

class LegalEntity(Base):
    """Legal entity that owns farms (partnership, LLC, individual)."""
    __tablename__ = "legal_entities"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False, unique=True)
    slug = Column(String(50), nullable=False, unique=True)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    farms = relationship("Farm", back_populates="entity")
    contracts = relationship("GrainContract", back_populates="entity")
    operating_loans = relationship("OperatingLoan", back_populates="entity")

    def __repr__(self):
        return f"<LegalEntity(name='{self.name}')>"


class Farm(Base):
    """One field/farm planted to a single commodity for one crop year."""
    __tablename__ = "farms"

    id = Column(Integer, primary_key=True)
    entity_id = Column(Integer, ForeignKey("legal_entities.id"), nullable=False)
    name = Column(String(200), nullable=False)
    commodity = Column(Enum(CommodityType), nullable=False)
    year = Column(Integer, nullable=False)
    acres = Column(Float, nullable=False, default=0.0)
    aph = Column(Float, default=0.0)
    projected_yield = Column(Float, nullable=False, default=0.0)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    entity = relationship("LegalEntity", back_populates="farms")
    splits = relationship("EntitySplit", back_populates="farm", cascade="all, delete-orphan")
    cost_entries = relationship("FarmCostEntry", back_populates="farm", cascade="all, delete-orphan")
    allocations = relationship("FarmContractAllocation", back_populates="farm", cascade="all, delete-orphan")
    financing_records = relationship("FinancingRecord", back_populates="farm", cascade="all, delete-orphan")

    @property
    def expected_bushels(self):
        return (self.acres or 0.0) * (self.projected_yield or 0.0)

    def __repr__(self):
        return f"<Farm(name='{self.name}', commodity='{self.commodity.value}', year={self.year})>"


class EntitySplit(Base):
    """Fractional ownership of a farm by a legal entity. Percentages per farm sum to 100."""
    __tablename__ = "farm_entity_splits"
    __table_args__ = (UniqueConstraint("farm_id", "entity_id"),)

    id = Column(Integer, primary_key=True)
    farm_id = Column(Integer, ForeignKey("farms.id"), nullable=False)
    entity_id = Column(Integer, ForeignKey("legal_entities.id"), nullable=False)
    percentage = Column(Float, nullable=False)

    # Relationships
    farm = relationship("Farm", back_populates="splits")
    entity = relationship("LegalEntity")

    def __repr__(self):
        return f"<EntitySplit(farm={self.farm_id}, entity={self.entity_id}, pct={self.percentage})>"


class FarmCostEntry(Base):
    """A single direct cost posted against a farm (fertilizer pass, seed, rent, ...)."""
    __tablename__ = "farm_cost_entries"

    id = Column(Integer, primary_key=True)
    farm_id = Column(Integer, ForeignKey("farms.id"), nullable=False)
    category = Column(Enum(CostCategory), nullable=False)
    amount = Column(Float, nullable=False)
    description = Column(String(500))
    detail = Column(JSON)
    source = Column(String(50), default="manual")  # manual, scan, import
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    farm = relationship("Farm", back_populates="cost_entries")

    def __repr__(self):
        return f"<FarmCostEntry(farm={self.farm_id}, category='{self.category.value}', amount=${self.amount:,.2f})>"


class Equipment(Base):
    """Equipment asset that financing records attach to."""
    __tablename__ = "equipment"

    id = Column(Integer, primary_key=True)
    entity_id = Column(Integer, ForeignKey("legal_entities.id"))
    name = Column(String(200), nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    entity = relationship("LegalEntity")
    financing_records = relationship("FinancingRecord", back_populates="equipment")

    def __repr__(self):
        return f"<Equipment(name='{self.name}')>"


class FinancingRecord(Base):
    """Loan or lease. SIMPLE mode carries an annual payment; AMORTIZED carries loan terms."""
    __tablename__ = "financing_records"

    id = Column(Integer, primary_key=True)
    equipment_id = Column(Integer, ForeignKey("equipment.id"))
    farm_id = Column(Integer, ForeignKey("farms.id"))
    lender = Column(String(200))
    financing_type = Column(Enum(FinancingType), nullable=False, default=FinancingType.LOAN)
    mode = Column(Enum(FinancingMode), nullable=False, default=FinancingMode.SIMPLE)

    # SIMPLE
    annual_payment = Column(Float)

    # AMORTIZED
    principal = Column(Float)
    interest_rate = Column(Float)  # annual, as a fraction
    term_months = Column(Integer)
    start_date = Column(Date)
    remaining_balance = Column(Float)

    annual_interest_override = Column(Float)
    annual_principal_override = Column(Float)
    include_in_breakeven = Column(Boolean, default=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    equipment = relationship("Equipment", back_populates="financing_records")
    farm = relationship("Farm", back_populates="financing_records")
    payments = relationship("FinancingPayment", back_populates="record", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<FinancingRecord(lender='{self.lender}', type='{self.financing_type.value}', mode='{self.mode.value}')>"


class FinancingPayment(Base):
    """Payment recorded against a financing record."""
    __tablename__ = "financing_payments"

    id = Column(Integer, primary_key=True)
    record_id = Column(Integer, ForeignKey("financing_records.id"), nullable=False)
    payment_date = Column(Date, nullable=False)
    total_amount = Column(Float, nullable=False)
    principal_amount = Column(Float, nullable=False, default=0.0)
    interest_amount = Column(Float, nullable=False, default=0.0)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    record = relationship("FinancingRecord", back_populates="payments")

    def __repr__(self):
        return f"<FinancingPayment(record={self.record_id}, total=${self.total_amount:,.2f})>"


class OperatingLoan(Base):
    """Entity line of credit for one crop year. Interest accrues daily on the drawn balance."""
    __tablename__ = "operating_loans"

    id = Column(Integer, primary_key=True)
    entity_id = Column(Integer, ForeignKey("legal_entities.id"), nullable=False)
    lender = Column(String(200), nullable=False)
    loan_number = Column(String(100))
    credit_limit = Column(Float, nullable=False, default=0.0)
    interest_rate = Column(Float, nullable=False, default=0.0)  # annual, as a fraction
    current_balance = Column(Float, nullable=False, default=0.0)
    year = Column(Integer, nullable=False)
    notes = Column(Text)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    entity = relationship("LegalEntity", back_populates="operating_loans")
    transactions = relationship(
        "OperatingLoanTransaction", back_populates="loan", cascade="all, delete-orphan",
        order_by="OperatingLoanTransaction.transaction_date",
    )

    @property
    def available_credit(self):
        return (self.credit_limit or 0.0) - (self.current_balance or 0.0)

    def __repr__(self):
        return f"<OperatingLoan(lender='{self.lender}', year={self.year}, balance=${self.current_balance:,.2f})>"


class OperatingLoanTransaction(Base):
    """Draw on or payment against an operating loan."""
    __tablename__ = "operating_loan_transactions"

    id = Column(Integer, primary_key=True)
    loan_id = Column(Integer, ForeignKey("operating_loans.id"), nullable=False)
    transaction_type = Column(Enum(OperatingTransactionType), nullable=False)
    amount = Column(Float, nullable=False)
    balance_after = Column(Float, nullable=False)
    transaction_date = Column(Date, nullable=False)
    description = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    loan = relationship("OperatingLoan", back_populates="transactions")

    def __repr__(self):
        return f"<OperatingLoanTransaction(loan={self.loan_id}, {self.transaction_type.value} ${self.amount:,.2f})>"


class GrainContract(Base):
    """Grain marketing contract (cash, basis, HTA, accumulator)."""
    __tablename__ = "grain_contracts"

    id = Column(Integer, primary_key=True)
    entity_id = Column(Integer, ForeignKey("legal_entities.id"))
    contract_number = Column(String(100))
    buyer = Column(String(200), nullable=False)
    contract_type = Column(Enum(ContractType), nullable=False, default=ContractType.CASH)
    crop_year = Column(Enum(CropYear), nullable=False, default=CropYear.NEW_CROP)
    commodity = Column(Enum(CommodityType), nullable=False)
    year = Column(Integer, nullable=False)
    total_bushels = Column(Float, nullable=False)
    cash_price = Column(Float)
    basis_price = Column(Float)
    futures_price = Column(Float)
    futures_month = Column(String(20))
    bushels_delivered = Column(Float, default=0.0)
    is_active = Column(Boolean, default=True)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    entity = relationship("LegalEntity", back_populates="contracts")
    allocations = relationship("FarmContractAllocation", back_populates="contract", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<GrainContract(#{self.contract_number}, {self.commodity.value} {self.year}, {self.total_bushels:,.0f} bu)>"


class FarmContractAllocation(Base):
    """Bushels of a contract attributed to one farm."""
    __tablename__ = "farm_contract_allocations"
    __table_args__ = (UniqueConstraint("contract_id", "farm_id"),)

    id = Column(Integer, primary_key=True)
    contract_id = Column(Integer, ForeignKey("grain_contracts.id"), nullable=False)
    farm_id = Column(Integer, ForeignKey("farms.id"), nullable=False)
    allocation_type = Column(Enum(AllocationType), nullable=False, default=AllocationType.PROPORTIONAL)
    allocated_bushels = Column(Float, nullable=False, default=0.0)
    manual_percentage = Column(Float)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    contract = relationship("GrainContract", back_populates="allocations")
    farm = relationship("Farm", back_populates="allocations")

    @property
    def share(self):
        total = self.contract.total_bushels if self.contract else 0
        return self.allocated_bushels / total if total else 0.0

    def __repr__(self):
        return f"<FarmContractAllocation(contract={self.contract_id}, farm={self.farm_id}, bu={self.allocated_bushels:,.0f})>"


class MarketPrice(Base):
    """Futures + local basis quote for one commodity and marketing year."""
    __tablename__ = "market_prices"

    id = Column(Integer, primary_key=True)
    commodity = Column(Enum(CommodityType), nullable=False)
    year = Column(Integer, nullable=False)
    futures_price = Column(Float, nullable=False)
    basis = Column(Float, nullable=False, default=0.0)
    contract_month = Column(String(20))
    price_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    source = Column(String(50), default="manual")

    def __repr__(self):
        return f"<MarketPrice({self.commodity.value} {self.year}, futures={self.futures_price}, basis={self.basis})>"


class AuditLog(Base):
    """Immutable audit trail for engine writes and degraded projections."""
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
    entity_id = Column(Integer, ForeignKey("legal_entities.id"))
    module = Column(String(50), nullable=False)
    action = Column(String(100), nullable=False)
    detail = Column(JSON)
    user = Column(String(100), default="system")
    severity = Column(Enum(AuditSeverity), default=AuditSeverity.INFO)

    def __repr__(self):
        return f"<AuditLog(time={self.timestamp}, module='{self.module}', action='{self.action}')>"
