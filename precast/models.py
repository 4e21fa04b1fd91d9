from sqlalchemy import (
    Column, Integer, String, Float, Date, DateTime, Text, ForeignKey, Boolean, JSON,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime
from .database import Base
import enum


class BudgetStatus(str, enum.Enum):
    DRAFT = "draft"
    FINALIZED = "finalized"


class RateKind(str, enum.Enum):
    FREIGHT = "freight"
    ASSEMBLY = "assembly"
    MATERIAL_PRICE = "material_price"
    MONTHLY_INDEX = "monthly_index"
    POLYNOMIAL_FORMULA = "polynomial_formula"


# Wizard steps. draft_data is keyed by the step number as a string.
WIZARD_STEPS = {
    1: "client_project",
    2: "plant",
    3: "distance",
    4: "freight",
    5: "additionals",
    6: "summary",
}


# --- Rate catalog (append-only: corrections are new rows, never edits) ---

class FreightRate(Base):
    """Per-truck freight rate for a distance band [km_from, km_to)."""
    __tablename__ = "freight_rates"

    id = Column(Integer, primary_key=True, index=True)
    origin_plant = Column(String, nullable=True)  # None = applies to every plant
    km_from = Column(Float, nullable=False)
    km_to = Column(Float, nullable=False)
    rate_under = Column(Float, nullable=False)  # Standard trucks (pieces <= 12m)
    rate_over = Column(Float, nullable=False)   # Long-haul configuration (pieces > 12m)
    effective_date = Column(Date, nullable=False, index=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class AssemblyRate(Base):
    """Flat assembly charge for a distance band, tiered by total tonnage."""
    __tablename__ = "assembly_rates"

    id = Column(Integer, primary_key=True, index=True)
    km_from = Column(Float, nullable=False)
    km_to = Column(Float, nullable=False)
    rate_under_100t = Column(Float, nullable=False)
    rate_100_300t = Column(Float, nullable=False)
    rate_over_300t = Column(Float, nullable=False)
    effective_date = Column(Date, nullable=False, index=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class MaterialPrice(Base):
    __tablename__ = "material_prices"

    id = Column(Integer, primary_key=True, index=True)
    material_code = Column(String, nullable=False, index=True)
    price = Column(Float, nullable=False)
    unit = Column(String, default="kg")
    effective_date = Column(Date, nullable=False, index=True)
    change_reason = Column(String, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class MonthlyIndex(Base):
    """Commodity indices published for one calendar month."""
    __tablename__ = "monthly_indices"
    __table_args__ = (UniqueConstraint("month", "year", name="uq_monthly_index_period"),)

    id = Column(Integer, primary_key=True, index=True)
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    steel_index = Column(Float, nullable=False)
    labor_index = Column(Float, nullable=False)
    concrete_index = Column(Float, nullable=False)
    fuel_index = Column(Float, nullable=False)
    dollar_rate = Column(Float, nullable=True)
    source = Column(String, default="manual")  # 'manual' | 'calculated'
    effective_date = Column(Date, nullable=False, index=True)  # First day of the month
    created_at = Column(DateTime, default=datetime.utcnow)


class PolynomialFormula(Base):
    """Weights of the escalation formula. The most recent effective row is current."""
    __tablename__ = "polynomial_formulas"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=True)
    steel_coefficient = Column(Float, nullable=True)
    labor_coefficient = Column(Float, nullable=True)
    concrete_coefficient = Column(Float, nullable=True)
    fuel_coefficient = Column(Float, nullable=True)
    effective_date = Column(Date, nullable=False, index=True)
    created_by = Column(String, nullable=True)
    # Only set on the system-created default; unique, so there is at most one
    bootstrap_key = Column(String, unique=True, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class PiecePrice(Base):
    """Base unit cost of a precast piece, optionally zone-specific."""
    __tablename__ = "piece_prices"

    id = Column(Integer, primary_key=True, index=True)
    piece_id = Column(String, nullable=False, index=True)
    zone = Column(String, nullable=True)  # None = list price for every zone
    unit_cost = Column(Float, nullable=False)
    effective_date = Column(Date, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)


# --- Freight audit trail ---

class FreightCalculation(Base):
    """Immutable record of one freight pricing decision."""
    __tablename__ = "freight_calculations"

    id = Column(Integer, primary_key=True, index=True)
    budget_id = Column(Integer, ForeignKey("budgets.id", ondelete="SET NULL"), nullable=True)
    origin_plant = Column(String, nullable=True)
    destination = Column(String, nullable=True)
    distance_km = Column(Float, nullable=False)
    truck_loads = Column(Integer, nullable=False)
    long_haul = Column(Boolean, default=False)
    freight_rate_id = Column(Integer, ForeignKey("freight_rates.id"), nullable=True)
    unit_rate = Column(Float, nullable=False)
    total_cost = Column(Float, nullable=False)
    request_key = Column(String, unique=True, nullable=True)  # Retry de-duplication
    created_at = Column(DateTime, default=datetime.utcnow)


# --- Budgets ---

class Budget(Base):
    """Aggregate root — a draft while the wizard is open, then a finalized budget."""
    __tablename__ = "budgets"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(String, nullable=True)
    project_id = Column(String, nullable=True)
    user_id = Column(String, nullable=True)
    status = Column(String, default=BudgetStatus.DRAFT.value)

    # Draft session
    is_draft = Column(Boolean, default=True, nullable=False)
    draft_step = Column(Integer, default=1)
    completed_steps = Column(JSON, default=list)  # Sorted step numbers, no duplicates
    draft_data = Column(JSON, default=dict)       # {"<step>": payload}
    resume_token = Column(String, unique=True, nullable=True, index=True)
    last_edited_at = Column(DateTime, default=datetime.utcnow)

    # Logistics, filled from wizard steps 2-5
    origin_plant = Column(String, nullable=True)
    destination = Column(String, nullable=True)
    distance_km = Column(Float, nullable=True)
    truck_loads = Column(Integer, nullable=True)   # None = plan from item weights
    long_haul = Column(Boolean, nullable=True)     # None = derive from item lengths
    assembly_days = Column(Float, default=0.0)
    crane_days = Column(Float, default=0.0)

    # Pricing snapshot
    needs_repricing = Column(Boolean, default=True)
    total_materials = Column(Float, default=0.0)
    total_assembly = Column(Float, default=0.0)
    total_freight = Column(Float, default=0.0)
    final_total = Column(Float, default=0.0)
    priced_json = Column(JSON, nullable=True)
    priced_at = Column(DateTime, nullable=True)
    finalized_at = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship(
        "BudgetItem", back_populates="budget", cascade="all, delete-orphan",
        order_by="BudgetItem.id",
    )
    draft_history = relationship(
        "BudgetDraftHistory", back_populates="budget", cascade="all, delete-orphan",
    )

    # Optimistic locking for concurrent step submissions
    __mapper_args__ = {"version_id_col": version}


class BudgetItem(Base):
    __tablename__ = "budget_items"

    id = Column(Integer, primary_key=True, index=True)
    budget_id = Column(Integer, ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False)
    piece_id = Column(String, nullable=False)
    description = Column(String, nullable=True)
    zone = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    unit_weight_tons = Column(Float, default=0.0)
    length_m = Column(Float, default=0.0)

    # Filled by the aggregator; cleared when the item changes
    unit_cost = Column(Float, nullable=True)
    escalated_unit_cost = Column(Float, nullable=True)
    line_total = Column(Float, nullable=True)

    budget = relationship("Budget", back_populates="items")


class BudgetDraftHistory(Base):
    """Every step submission, in order — lets support replay what the operator entered."""
    __tablename__ = "budget_draft_history"

    id = Column(Integer, primary_key=True, index=True)
    budget_id = Column(Integer, ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False)
    step = Column(Integer, nullable=False)
    data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    budget = relationship("Budget", back_populates="draft_history")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String, nullable=False)
    resource = Column(String, nullable=False)
    resource_id = Column(String, nullable=True)
    detail = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
