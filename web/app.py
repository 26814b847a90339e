"""
FastAPI app for FieldLedger.
JSON API for break-even projections, contracts and their allocations, financing
and operating loans, plus an HTML break-even dashboard.
"""

import logging
from datetime import date, datetime
from pathlib import Path

from fastapi import FastAPI, Request, Query, Depends
from fastapi.templating import Jinja2Templates
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from database.db import get_db_session
from core.entity_context import get_all_entities
from core.errors import NotFound
from modules.breakeven.projector import ScenarioDelta, PricingMode

logger = logging.getLogger(__name__)

WEB_DIR = Path(__file__).resolve().parent

app = FastAPI(title="FieldLedger", description="Farm break-even and grain contract allocation")
templates = Jinja2Templates(directory=WEB_DIR / "templates")


class ServiceNotConfigured(RuntimeError):
    pass


class AllocationIn(BaseModel):
    farm_id: int
    allocated_bushels: float
    notes: str = ""


class AutoAllocateIn(BaseModel):
    farm_ids: list[int] | None = None


class PaymentIn(BaseModel):
    principal_amount: float
    interest_amount: float = 0.0
    total_amount: float | None = None
    payment_date: date | None = None
    notes: str = ""


class ContractIn(BaseModel):
    buyer: str
    commodity: str
    year: int
    total_bushels: float
    contract_type: str = "cash"
    entity_id: int | None = None
    crop_year: str = "new_crop"
    contract_number: str | None = None
    futures_month: str | None = None
    notes: str = ""
    cash_price: float | None = None
    basis_price: float | None = None
    futures_price: float | None = None


class EquipmentIn(BaseModel):
    name: str
    entity_id: int | None = None


class FinancingIn(BaseModel):
    financing_type: str = "loan"
    mode: str = "simple"
    equipment_id: int | None = None
    farm_id: int | None = None
    lender: str = ""
    annual_payment: float | None = None
    principal: float | None = None
    interest_rate: float | None = None
    term_months: int | None = None
    start_date: date | None = None
    remaining_balance: float | None = None
    annual_interest_override: float | None = None
    annual_principal_override: float | None = None
    include_in_breakeven: bool | None = None


class OperatingLoanIn(BaseModel):
    entity_id: int
    year: int
    lender: str
    credit_limit: float
    interest_rate: float
    current_balance: float = 0.0
    loan_number: str | None = None
    notes: str = ""


class OperatingTransactionIn(BaseModel):
    amount: float
    transaction_date: date | None = None
    description: str = ""


def _service(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise ServiceNotConfigured(f"{name} not configured")
    return service


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    status = 404 if isinstance(exc, NotFound) else 400
    return JSONResponse({"detail": str(exc)}, status_code=status)


@app.exception_handler(ServiceNotConfigured)
async def not_configured_handler(request: Request, exc: ServiceNotConfigured):
    logger.error(str(exc))
    return JSONResponse({"detail": str(exc)}, status_code=500)


# === Dashboard ===

@app.get("/", response_class=HTMLResponse)
async def dashboard(request: Request, year: int = None, commodity: str = None,
                    db: Session = Depends(get_db_session)):
    """Break-even overview for a crop year."""
    year = year or datetime.today().year
    report = _service(request, "breakeven").project(year, commodity=commodity)
    entity_names = {e.id: e.name for e in get_all_entities(db)}
    return templates.TemplateResponse(request, "breakeven.html", {
        "year": year,
        "report": report,
        "entity_names": entity_names,
    })


# === Break-even ===

@app.get("/api/breakeven")
def breakeven(
    request: Request,
    year: int,
    commodity: str = None,
    yield_pct: float = 0.0,
    price_pct: float = 0.0,
    cost_pct: float = 0.0,
    pricing_mode: str = PricingMode.MARKET.value,
):
    scenario = ScenarioDelta(yield_pct=yield_pct, price_pct=price_pct, cost_pct=cost_pct)
    report = _service(request, "breakeven").project(
        year, commodity=commodity, scenario=scenario, pricing_mode=PricingMode(pricing_mode),
    )
    return report.to_dict()


@app.get("/api/breakeven/history")
def breakeven_history(
    request: Request,
    years: list[int] = Query(...),
    commodity: str = None,
    pricing_mode: str = PricingMode.MARKET.value,
):
    reports = _service(request, "breakeven").historical(
        years, commodity=commodity, pricing_mode=PricingMode(pricing_mode),
    )
    return [r.to_dict() for r in reports]


@app.get("/api/farms/{farm_id}/profit-matrix")
def farm_profit_matrix(farm_id: int, request: Request, steps: int = 7):
    return _service(request, "breakeven").farm_profit_matrix(farm_id, steps=steps)


# === Allocations ===

@app.get("/api/contracts/{contract_id}/allocations")
def contract_allocations(contract_id: int, request: Request):
    return _service(request, "allocator").contract_summary(contract_id)


@app.get("/api/contracts/{contract_id}/allocations/preview")
def allocation_preview(contract_id: int, request: Request):
    return _service(request, "allocator").preview(contract_id)


@app.post("/api/contracts/{contract_id}/allocations/auto")
def allocation_auto(contract_id: int, request: Request, body: AutoAllocateIn = None):
    farm_ids = body.farm_ids if body else None
    return _service(request, "allocator").auto_allocate(contract_id, farm_ids=farm_ids, user="web")


@app.post("/api/contracts/{contract_id}/allocations/reset")
def allocation_reset(contract_id: int, request: Request):
    return _service(request, "allocator").reset_to_proportional(contract_id, user="web")


@app.put("/api/contracts/{contract_id}/allocations")
def allocation_set_manual(contract_id: int, allocations: list[AllocationIn], request: Request):
    return _service(request, "allocator").set_manual(
        contract_id, [a.model_dump() for a in allocations], user="web",
    )


@app.delete("/api/contracts/{contract_id}/allocations/{farm_id}")
def allocation_delete(contract_id: int, farm_id: int, request: Request):
    return _service(request, "allocator").delete_allocation(contract_id, farm_id, user="web")


@app.get("/api/farms/{farm_id}/coverage")
def farm_coverage(farm_id: int, request: Request):
    return _service(request, "allocator").farm_coverage(farm_id)


# === Financing ===

@app.post("/api/financing/{record_id}/payments")
def record_payment(record_id: int, payment: PaymentIn, request: Request):
    result = _service(request, "loan_ledger").record_payment(
        record_id,
        principal_amount=payment.principal_amount,
        interest_amount=payment.interest_amount,
        total_amount=payment.total_amount,
        payment_date=payment.payment_date,
        notes=payment.notes,
    )
    return result.to_dict()


@app.post("/api/financing")
def create_financing(body: FinancingIn, request: Request):
    ledger = _service(request, "loan_ledger")
    record_id = ledger.create_record(**body.model_dump(exclude_none=True))
    return ledger.annual_cost(record_id)


@app.post("/api/equipment")
def create_equipment(body: EquipmentIn, request: Request):
    equipment_id = _service(request, "loan_ledger").create_equipment(body.name, entity_id=body.entity_id)
    return {"equipment_id": equipment_id}


@app.post("/api/equipment/{equipment_id}/deactivate")
def deactivate_equipment(equipment_id: int, request: Request):
    record_ids = _service(request, "loan_ledger").deactivate_equipment(equipment_id)
    return {"equipment_id": equipment_id, "deactivated_records": record_ids}


# === Contracts ===

@app.get("/api/contracts")
def list_contracts(request: Request, year: int = None, commodity: str = None, active_only: bool = True):
    return _service(request, "contracts").list_contracts(
        year=year, commodity=commodity, active_only=active_only,
    )


@app.post("/api/contracts")
def create_contract(body: ContractIn, request: Request):
    store = _service(request, "contracts")
    contract_id = store.create_contract(**body.model_dump())
    return store.get_contract(contract_id)


@app.post("/api/contracts/{contract_id}/deactivate")
def deactivate_contract(contract_id: int, request: Request):
    return _service(request, "contracts").deactivate_contract(contract_id)


# === Operating loans ===

@app.post("/api/operating-loans")
def create_operating_loan(body: OperatingLoanIn, request: Request):
    ledger = _service(request, "operating_loans")
    loan_id = ledger.create_loan(**body.model_dump())
    return ledger.summary(loan_id)


@app.get("/api/operating-loans/{loan_id}")
def operating_loan_summary(loan_id: int, request: Request):
    return _service(request, "operating_loans").summary(loan_id)


@app.post("/api/operating-loans/{loan_id}/draws")
def operating_draw(loan_id: int, body: OperatingTransactionIn, request: Request):
    return _service(request, "operating_loans").record_draw(
        loan_id, body.amount, transaction_date=body.transaction_date, description=body.description,
    )


@app.post("/api/operating-loans/{loan_id}/payments")
def operating_payment(loan_id: int, body: OperatingTransactionIn, request: Request):
    return _service(request, "operating_loans").record_payment(
        loan_id, body.amount, transaction_date=body.transaction_date, description=body.description,
    )
