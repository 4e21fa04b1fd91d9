from pydantic import BaseModel, Field
from typing import Optional, List, Any
from datetime import date, datetime


# --- Rate catalog ---

class FreightRateBase(BaseModel):
    origin_plant: Optional[str] = None
    km_from: float = Field(ge=0)
    km_to: float = Field(gt=0)
    rate_under: float = Field(ge=0)
    rate_over: float = Field(ge=0)
    effective_date: Optional[date] = None

class FreightRateCreate(FreightRateBase):
    pass

class FreightRate(FreightRateBase):
    id: int
    effective_date: date
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    class Config:
        from_attributes = True

class AssemblyRateBase(BaseModel):
    km_from: float = Field(ge=0)
    km_to: float = Field(gt=0)
    rate_under_100t: float = Field(ge=0)
    rate_100_300t: float = Field(ge=0)
    rate_over_300t: float = Field(ge=0)
    effective_date: Optional[date] = None

class AssemblyRateCreate(AssemblyRateBase):
    pass

class AssemblyRate(AssemblyRateBase):
    id: int
    effective_date: date
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    class Config:
        from_attributes = True

class MaterialPriceBase(BaseModel):
    material_code: str
    price: float = Field(ge=0)
    unit: str = "kg"
    effective_date: Optional[date] = None
    change_reason: Optional[str] = None

class MaterialPriceCreate(MaterialPriceBase):
    pass

class MaterialPrice(MaterialPriceBase):
    id: int
    effective_date: date
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    class Config:
        from_attributes = True

class MaterialAdjustment(BaseModel):
    percentage: float = Field(gt=-100)
    effective_date: Optional[date] = None
    material_codes: Optional[List[str]] = None  # None = every material with a price

class MonthlyIndexBase(BaseModel):
    month: int = Field(ge=1, le=12)
    year: int = Field(ge=2000, le=2100)
    steel_index: float = Field(ge=0)
    labor_index: float = Field(ge=0)
    concrete_index: float = Field(ge=0)
    fuel_index: float = Field(ge=0)
    dollar_rate: Optional[float] = Field(default=None, ge=0)

class MonthlyIndexCreate(MonthlyIndexBase):
    pass

class MonthlyIndex(MonthlyIndexBase):
    id: int
    source: Optional[str] = None
    effective_date: date
    class Config:
        from_attributes = True

class DollarIndexRequest(BaseModel):
    month: int = Field(ge=1, le=12)
    year: int = Field(ge=2000, le=2100)
    dollar_rate: float = Field(gt=0)

class IndexAdjustmentRequest(BaseModel):
    base_month: int = Field(ge=1, le=12)
    base_year: int
    target_month: int = Field(ge=1, le=12)
    target_year: int

class FormulaBase(BaseModel):
    name: Optional[str] = None
    steel_coefficient: float = Field(ge=0)
    labor_coefficient: float = Field(ge=0)
    concrete_coefficient: float = Field(ge=0)
    fuel_coefficient: float = Field(ge=0)
    effective_date: Optional[date] = None

class FormulaCreate(FormulaBase):
    pass

class Formula(BaseModel):
    id: int
    name: Optional[str] = None
    steel_coefficient: Optional[float] = None
    labor_coefficient: Optional[float] = None
    concrete_coefficient: Optional[float] = None
    fuel_coefficient: Optional[float] = None
    effective_date: date
    created_by: Optional[str] = None
    class Config:
        from_attributes = True


# --- Freight ---

class FreightRequest(BaseModel):
    distance_km: float = Field(ge=0)
    truck_loads: int = Field(ge=1)
    origin_plant: Optional[str] = None
    destination: Optional[str] = None
    long_haul: bool = False
    as_of: Optional[date] = None
    budget_id: Optional[int] = None
    request_key: Optional[str] = None  # Retry-safe: same key, same record

class FreightCalculation(BaseModel):
    id: int
    budget_id: Optional[int] = None
    origin_plant: Optional[str] = None
    destination: Optional[str] = None
    distance_km: float
    truck_loads: int
    long_haul: bool
    freight_rate_id: Optional[int] = None
    unit_rate: float
    total_cost: float
    request_key: Optional[str] = None
    created_at: Optional[datetime] = None
    class Config:
        from_attributes = True


# --- Drafts ---

class DraftStart(BaseModel):
    customer_id: Optional[str] = None
    project_id: Optional[str] = None

class StepSubmission(BaseModel):
    data: dict  # Step payload, stored verbatim

class FinalizeRequest(BaseModel):
    as_of: Optional[date] = None

class DraftState(BaseModel):
    budget_id: int
    resume_token: str
    draft_step: int
    draft_data: dict
    completed_steps: List[int]
    last_edited_at: Optional[datetime] = None


# --- Budgets ---

class BudgetItemBase(BaseModel):
    piece_id: str
    description: Optional[str] = None
    zone: Optional[str] = None
    quantity: int = Field(default=1, ge=1)
    unit_weight_tons: float = Field(default=0.0, ge=0)
    length_m: float = Field(default=0.0, ge=0)

class BudgetItemCreate(BudgetItemBase):
    pass

class BudgetItemUpdate(BaseModel):
    piece_id: Optional[str] = None
    description: Optional[str] = None
    zone: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=1)
    unit_weight_tons: Optional[float] = Field(default=None, ge=0)
    length_m: Optional[float] = Field(default=None, ge=0)

class BudgetItem(BudgetItemBase):
    id: int
    unit_cost: Optional[float] = None
    escalated_unit_cost: Optional[float] = None
    line_total: Optional[float] = None
    class Config:
        from_attributes = True

class PriceRequest(BaseModel):
    as_of: Optional[date] = None

class Budget(BaseModel):
    id: int
    customer_id: Optional[str] = None
    project_id: Optional[str] = None
    status: str
    is_draft: bool
    draft_step: Optional[int] = None
    completed_steps: List[int] = []
    resume_token: Optional[str] = None
    origin_plant: Optional[str] = None
    destination: Optional[str] = None
    distance_km: Optional[float] = None
    truck_loads: Optional[int] = None
    long_haul: Optional[bool] = None
    assembly_days: Optional[float] = None
    crane_days: Optional[float] = None
    needs_repricing: bool
    total_materials: Optional[float] = None
    total_assembly: Optional[float] = None
    total_freight: Optional[float] = None
    final_total: Optional[float] = None
    priced_json: Optional[Any] = None
    priced_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    items: List[BudgetItem] = []
    class Config:
        from_attributes = True
