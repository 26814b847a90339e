"""
FieldLedger — Farm break-even and grain contract allocation
CLI entry point.
"""

import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

console = Console()


def setup_logging(level: str = "INFO"):
    """Configure logging with Rich handler for console output."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _build_services():
    """Wire the services to one EventBus."""
    from core.events import EventBus
    from modules.allocation.service import ContractAllocator
    from modules.breakeven.service import BreakEvenService
    from modules.contracts.store import ContractStore
    from modules.costs.ledger import CostLedger
    from modules.loans.ledger import LoanLedger
    from modules.loans.operating import OperatingLoanLedger

    event_bus = EventBus()
    services = {
        "allocator": ContractAllocator(),
        "breakeven": BreakEvenService(),
        "contracts": ContractStore(),
        "cost_ledger": CostLedger(),
        "loan_ledger": LoanLedger(),
        "operating_loans": OperatingLoanLedger(),
    }
    for service in services.values():
        service.setup(event_bus)
    return event_bus, services


def _fail(error: Exception):
    console.print(f"[red]{error}[/red]")
    sys.exit(1)


def _money(value: float) -> str:
    text = f"${abs(value):,.0f}"
    return f"[red]-{text}[/red]" if value < 0 else text


def _print_report(report):
    if report.degraded:
        console.print(f"[yellow]Degraded: {', '.join(report.degraded)} unavailable[/yellow]")
    for missing in report.missing_prices:
        console.print(f"[yellow]No price for {missing.commodity} {missing.year}; left out[/yellow]")

    table = Table(title=f"Break-even {report.year}")
    for column in ("Commodity", "Acres", "Bushels", "Marketed", "Cost/ac",
                   "Break-even", "Cash", "Blended", "Profit", "Margin"):
        table.add_column(column, justify="left" if column == "Commodity" else "right")

    for row in report.by_commodity:
        table.add_row(
            row.commodity.title() + (" *" if row.price_is_default else ""),
            f"{row.acres:,.1f}",
            f"{row.adjusted_bushels:,.0f}",
            f"{row.marketed_bushels:,.0f}",
            f"${row.cost_per_acre:,.2f}",
            f"${row.break_even_price:.2f}",
            f"${row.cash_price:.2f}",
            f"${row.blended_price:.3f}",
            _money(row.profit),
            f"{row.margin_pct:.1f}%",
        )
    console.print(table)

    op = report.operation
    console.print(
        f"  Operation: {op.acres:,.1f} ac, cost {_money(op.total_cost)}, "
        f"revenue {_money(op.total_revenue)}, profit {_money(op.profit)} ({op.margin_pct:.1f}%)"
    )
    if any(r.price_is_default for r in report.by_commodity):
        console.print("  [dim]* priced at default estimates[/dim]")


@click.group()
@click.option("--log-level", default=None, help="Override log level (DEBUG, INFO, WARNING, ERROR)")
def cli(log_level):
    """FieldLedger — Farm break-even and grain contract allocation"""
    from config.settings import LOG_LEVEL
    setup_logging(log_level or LOG_LEVEL)


@cli.command()
def init_db():
    """Initialize the database and seed default entities."""
    from database.db import init_db as _init_db, get_session
    from core.entity_context import seed_entities

    console.print("[bold blue]Initializing database...[/bold blue]")
    created = _init_db()
    console.print(f"[green]Tables created: {len(created)}[/green]")

    with get_session() as session:
        seed_entities(session)
    console.print("[green]Entities seeded.[/green]")

    console.print("[bold green]Database ready.[/bold green]")


@cli.command()
def web():
    """Start the web dashboard and JSON API."""
    from config.settings import WEB_HOST, WEB_PORT
    from database.db import init_db as _init_db

    _init_db()
    event_bus, services = _build_services()

    console.print(f"[bold blue]Starting dashboard at http://{WEB_HOST}:{WEB_PORT}[/bold blue]")

    import uvicorn
    from web.app import app

    app.state.event_bus = event_bus
    for name, service in services.items():
        setattr(app.state, name, service)

    uvicorn.run(app, host=WEB_HOST, port=WEB_PORT)


@cli.command()
@click.option("--year", type=int, required=True, help="Crop year")
@click.option("--commodity", type=click.Choice(["corn", "soybeans", "wheat"]), default=None)
@click.option("--yield-pct", type=float, default=0.0, help="Yield change, percent")
@click.option("--price-pct", type=float, default=0.0, help="Price change, percent")
@click.option("--cost-pct", type=float, default=0.0, help="Cost change, percent")
@click.option("--pricing-mode", type=click.Choice(["market", "contract_average"]), default="market")
def breakeven(year, commodity, yield_pct, price_pct, cost_pct, pricing_mode):
    """Project break-even, blended price and profit for a crop year."""
    from modules.breakeven.projector import ScenarioDelta, PricingMode

    _, services = _build_services()
    try:
        scenario = ScenarioDelta(yield_pct=yield_pct, price_pct=price_pct, cost_pct=cost_pct)
        report = services["breakeven"].project(
            year, commodity=commodity, scenario=scenario, pricing_mode=PricingMode(pricing_mode),
        )
    except ValueError as e:
        _fail(e)
    _print_report(report)


@cli.command()
@click.argument("years", nargs=-1, type=int, required=True)
@click.option("--commodity", type=click.Choice(["corn", "soybeans", "wheat"]), default=None)
def history(years, commodity):
    """Replay break-even for past crop years."""
    _, services = _build_services()
    try:
        reports = services["breakeven"].historical(years, commodity=commodity)
    except ValueError as e:
        _fail(e)

    table = Table(title="Break-even history")
    for column in ("Year", "Acres", "Cost", "Revenue", "Profit", "Margin"):
        table.add_column(column, justify="right")
    for report in reports:
        op = report.operation
        table.add_row(
            str(report.year),
            f"{op.acres:,.1f}",
            _money(op.total_cost),
            _money(op.total_revenue),
            _money(op.profit),
            f"{op.margin_pct:.1f}%",
        )
    console.print(table)


@cli.command()
@click.argument("contract_id", type=int)
@click.option("--farm", "farm_ids", type=int, multiple=True, help="Limit to these farms (repeatable)")
@click.option("--preview", is_flag=True, help="Show the proportional split without saving it")
@click.option("--reset", is_flag=True, help="Discard manual allocations and re-split proportionally")
def allocate(contract_id, farm_ids, preview, reset):
    """Allocate a grain contract across its eligible farms."""
    _, services = _build_services()
    allocator = services["allocator"]
    farm_ids = list(farm_ids) or None

    try:
        if preview:
            rows = allocator.preview(contract_id, farm_ids=farm_ids)
        elif reset:
            rows = allocator.reset_to_proportional(contract_id, user="cli")["allocations"]
        else:
            rows = allocator.auto_allocate(contract_id, farm_ids=farm_ids, user="cli")["allocations"]
    except ValueError as e:
        _fail(e)

    table = Table(title=f"Contract {contract_id}" + (" (preview)" if preview else ""))
    table.add_column("Farm")
    table.add_column("Bushels", justify="right")
    table.add_column("Share", justify="right")
    for row in rows:
        table.add_row(
            row["farm_name"] or str(row["farm_id"]),
            f"{row['allocated_bushels']:,.0f}",
            f"{row['share'] * 100:.2f}%",
        )
    console.print(table)


@cli.command()
@click.argument("buyer")
@click.argument("commodity", type=click.Choice(["corn", "soybeans", "wheat"]))
@click.argument("year", type=int)
@click.argument("bushels", type=float)
@click.option("--type", "contract_type", type=click.Choice(["cash", "basis", "hta", "accumulator"]),
              default="cash")
@click.option("--entity", "entity_id", type=int, default=None, help="Selling entity id")
@click.option("--number", "contract_number", default=None, help="Buyer's contract number")
@click.option("--cash", "cash_price", type=float, default=None, help="Cash price ($/bu)")
@click.option("--basis", "basis_price", type=float, default=None, help="Basis ($/bu)")
@click.option("--futures", "futures_price", type=float, default=None, help="Futures price ($/bu)")
@click.option("--month", "futures_month", default=None, help="Futures month, e.g. DEC")
def add_contract(buyer, commodity, year, bushels, contract_type, entity_id, contract_number,
                 cash_price, basis_price, futures_price, futures_month):
    """Record a new grain contract."""
    _, services = _build_services()
    try:
        contract_id = services["contracts"].create_contract(
            buyer, commodity, year, bushels, contract_type=contract_type, entity_id=entity_id,
            contract_number=contract_number, futures_month=futures_month,
            cash_price=cash_price, basis_price=basis_price, futures_price=futures_price,
        )
    except ValueError as e:
        _fail(e)
    console.print(f"[green]Contract {contract_id} created:[/green] {bushels:,.0f} bu {commodity} {year}")


@cli.command()
@click.argument("contract_id", type=int)
def deactivate_contract(contract_id):
    """Deactivate a grain contract; its allocations are kept."""
    _, services = _build_services()
    try:
        services["contracts"].deactivate_contract(contract_id)
    except ValueError as e:
        _fail(e)
    console.print(f"[yellow]Contract {contract_id} deactivated.[/yellow]")


@cli.command()
@click.argument("name")
@click.option("--entity", "entity_id", type=int, default=None, help="Owning entity id")
def add_equipment(name, entity_id):
    """Register an equipment asset."""
    _, services = _build_services()
    try:
        equipment_id = services["loan_ledger"].create_equipment(name, entity_id=entity_id)
    except ValueError as e:
        _fail(e)
    console.print(f"[green]Equipment {equipment_id} created:[/green] {name}")


@cli.command()
@click.argument("equipment_id", type=int)
def retire_equipment(equipment_id):
    """Retire equipment and deactivate its financing records."""
    _, services = _build_services()
    try:
        record_ids = services["loan_ledger"].deactivate_equipment(equipment_id)
    except ValueError as e:
        _fail(e)
    console.print(f"[yellow]Equipment {equipment_id} retired; {len(record_ids)} record(s) deactivated.[/yellow]")


@cli.command()
@click.option("--equipment", "equipment_id", type=int, default=None)
@click.option("--farm", "farm_id", type=int, default=None, help="Charge this farm in full")
@click.option("--type", "financing_type", type=click.Choice(["loan", "lease"]), default="loan")
@click.option("--mode", type=click.Choice(["simple", "amortized"]), default="simple")
@click.option("--lender", default="")
@click.option("--payment", "annual_payment", type=float, default=None, help="Annual payment (simple)")
@click.option("--principal", type=float, default=None)
@click.option("--rate", "interest_rate", type=float, default=None, help="Annual rate, e.g. 0.065")
@click.option("--term", "term_months", type=int, default=None, help="Term in months")
@click.option("--balance", "remaining_balance", type=float, default=None)
def add_financing(equipment_id, farm_id, financing_type, mode, lender, **terms):
    """Create a loan or lease on equipment or a farm."""
    _, services = _build_services()
    terms = {k: v for k, v in terms.items() if v is not None}
    try:
        record_id = services["loan_ledger"].create_record(
            financing_type=financing_type, mode=mode, equipment_id=equipment_id,
            farm_id=farm_id, lender=lender, **terms,
        )
        cost = services["loan_ledger"].annual_cost(record_id)
    except ValueError as e:
        _fail(e)
    console.print(
        f"[green]Financing record {record_id} created.[/green] "
        f"Annual interest ${cost['annual_interest']:,.2f}, principal ${cost['annual_principal']:,.2f}"
    )


@cli.command()
@click.argument("entity_id", type=int)
@click.argument("year", type=int)
@click.option("--lender", required=True)
@click.option("--limit", "credit_limit", type=float, required=True, help="Credit limit")
@click.option("--rate", "interest_rate", type=float, required=True, help="Annual rate, e.g. 0.0725")
@click.option("--balance", "current_balance", type=float, default=0.0, help="Opening balance")
@click.option("--number", "loan_number", default=None)
def add_operating_loan(entity_id, year, lender, credit_limit, interest_rate, current_balance, loan_number):
    """Open an operating line of credit for an entity and crop year."""
    _, services = _build_services()
    try:
        loan_id = services["operating_loans"].create_loan(
            entity_id, year, lender, credit_limit, interest_rate,
            current_balance=current_balance, loan_number=loan_number,
        )
    except ValueError as e:
        _fail(e)
    console.print(f"[green]Operating loan {loan_id} opened:[/green] {lender}, limit ${credit_limit:,.0f}")


def _operating_transaction(kind, loan_id, amount, description):
    _, services = _build_services()
    ledger = services["operating_loans"]
    record = ledger.record_draw if kind == "draw" else ledger.record_payment
    try:
        result = record(loan_id, amount, description=description)
    except ValueError as e:
        _fail(e)
    console.print(
        f"[green]{kind.title()} recorded.[/green] Balance ${result['balance_after']:,.2f}, "
        f"available ${result['available_credit']:,.2f}"
    )


@cli.command()
@click.argument("loan_id", type=int)
@click.argument("amount", type=float)
@click.option("--description", default="")
def operating_draw(loan_id, amount, description):
    """Draw on an operating loan."""
    _operating_transaction("draw", loan_id, amount, description)


@cli.command()
@click.argument("loan_id", type=int)
@click.argument("amount", type=float)
@click.option("--description", default="")
def operating_payment(loan_id, amount, description):
    """Pay down an operating loan."""
    _operating_transaction("payment", loan_id, amount, description)


@cli.command()
@click.argument("record_id", type=int)
@click.option("--principal", type=float, required=True, help="Principal portion")
@click.option("--interest", type=float, default=0.0, help="Interest portion")
@click.option("--notes", default="")
def record_payment(record_id, principal, interest, notes):
    """Record a payment against a financing record."""
    _, services = _build_services()
    try:
        result = services["loan_ledger"].record_payment(
            record_id, principal_amount=principal, interest_amount=interest, notes=notes,
        )
    except ValueError as e:
        _fail(e)

    console.print(f"[green]Payment recorded.[/green] Remaining balance: ${result.remaining_balance:,.2f}")
    if result.paid_off:
        console.print("[bold green]Record is paid off.[/bold green]")


@cli.command()
@click.argument("commodity", type=click.Choice(["corn", "soybeans", "wheat"]))
@click.argument("year", type=int)
@click.argument("futures", type=float)
@click.option("--basis", type=float, default=0.0, help="Local basis ($/bu)")
@click.option("--month", "contract_month", default=None, help="Futures contract month, e.g. DEC")
def record_price(commodity, year, futures, basis, contract_month):
    """Record a futures + basis quote used to price unmarketed grain."""
    from database.db import get_session
    from modules.market.prices import PriceFeed

    with get_session() as session:
        PriceFeed().record_price(session, commodity, year, futures, basis=basis,
                                 contract_month=contract_month)
    console.print(f"[green]{commodity} {year}: {futures:.4f} + {basis:.4f} recorded.[/green]")


@cli.command()
def status():
    """Show current system status."""
    from sqlalchemy import func
    from database.db import get_session
    from database.models import (
        LegalEntity, Farm, GrainContract, FarmContractAllocation, FinancingRecord, OperatingLoan,
    )

    with get_session() as session:
        entities = [e.name for e in session.query(LegalEntity).filter(LegalEntity.active == True).all()]
        farm_count = session.query(Farm).count()
        total_acres = session.query(func.coalesce(func.sum(Farm.acres), 0)).scalar()
        active_contracts = session.query(GrainContract).filter(GrainContract.is_active == True).all()
        contracted = sum(c.total_bushels for c in active_contracts)
        allocated = (
            session.query(func.coalesce(func.sum(FarmContractAllocation.allocated_bushels), 0))
            .join(GrainContract)
            .filter(GrainContract.is_active == True)
            .scalar()
        )
        active_financing = session.query(FinancingRecord).filter(FinancingRecord.is_active == True).count()
        operating = session.query(OperatingLoan).filter(OperatingLoan.is_active == True).all()
        operating_drawn = sum(loan.current_balance or 0.0 for loan in operating)

    console.print("\n[bold]FieldLedger Status[/bold]")
    console.print(f"  Entities:          {len(entities)}")
    for name in entities:
        console.print(f"    - {name}")
    console.print(f"  Farms:             {farm_count} ({total_acres:,.1f} ac)")
    console.print()
    console.print("[bold]Contracts[/bold]")
    console.print(f"  Active:            {len(active_contracts)}")
    console.print(f"  Contracted bu:     {contracted:,.0f}")
    console.print(f"  Allocated bu:      [green]{allocated:,.0f}[/green]")
    console.print(f"  Unallocated bu:    [yellow]{contracted - allocated:,.0f}[/yellow]")
    console.print()
    console.print(f"  Active financing:  {active_financing}")
    console.print(f"  Operating loans:   {len(operating)} (${operating_drawn:,.0f} drawn)")
    console.print()


if __name__ == "__main__":
    cli()
