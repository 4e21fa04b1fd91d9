from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import os

from .config import settings
from .database import engine, Base, SessionLocal
from .errors import (
    BudgetingError, Conflict, IncompleteDraft, InvalidFormula, InvalidInput,
    NoApplicableRate, NotFound,
)
from .rate_catalog import RateCatalog
from .routers import budgets, drafts, freight, rates

logger = logging.getLogger("precast")
logger.setLevel(settings.LOG_LEVEL)

# Create tables (handles new tables but won't add columns to existing ones)
Base.metadata.create_all(bind=engine)

# Most specific first: IncompleteDraft is an InvalidInput
ERROR_STATUS = [
    (IncompleteDraft, 400),
    (InvalidInput, 400),
    (NotFound, 404),
    (NoApplicableRate, 422),
    (InvalidFormula, 422),
    (Conflict, 409),
]

BASE_REVISION = "5b1f0c2a9d47"


def _run_migrations():
    """Run pending Alembic migrations on startup.

    Databases created by Base.metadata.create_all() have the tables but no
    alembic_version table — those are stamped at the base revision first.
    """
    try:
        from alembic.config import Config
        from alembic import command
        from sqlalchemy import inspect

        alembic_ini = os.path.join(os.path.dirname(__file__), "..", "alembic.ini")
        if not os.path.exists(alembic_ini):
            logger.info("alembic.ini not found, skipping migrations")
            return

        alembic_cfg = Config(alembic_ini)
        alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)

        insp = inspect(engine)
        tables = insp.get_table_names()
        if "alembic_version" not in tables and "budgets" in tables:
            logger.info(f"Stamping base migration {BASE_REVISION} (tables already exist)")
            command.stamp(alembic_cfg, BASE_REVISION)

        logger.info("Running pending Alembic migrations...")
        command.upgrade(alembic_cfg, "head")
        logger.info("Migrations complete")

    except Exception as e:
        # Never let migration errors prevent app startup
        logger.warning(f"Alembic migration warning: {e}")


app = FastAPI(
    title="Precast Budgeting API",
    description=f"Budget quoting for {settings.COMPANY_NAME}",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BudgetingError)
async def budgeting_error_handler(request: Request, exc: BudgetingError):
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    content = {"detail": exc.message, "error": exc.code}
    if isinstance(exc, IncompleteDraft):
        content["missing_steps"] = exc.missing_steps
    if status_code >= 500:
        logger.error(f"Unmapped budgeting error: {exc!r}")
    return JSONResponse(status_code=status_code, content=content)


app.include_router(rates.router, prefix="/api")
app.include_router(freight.router, prefix="/api")
app.include_router(drafts.router, prefix="/api")
app.include_router(budgets.router, prefix="/api")


@app.get("/health")
def health():
    return {"status": "ok", "app": "precast-budgeting"}


@app.on_event("startup")
def auto_migrate():
    """Run pending Alembic migrations on startup."""
    _run_migrations()


@app.on_event("startup")
def auto_seed():
    """Make sure a polynomial formula exists before the first budget is priced."""
    db = SessionLocal()
    try:
        formula = RateCatalog(db).ensure_default_formula()
        logger.info(f"Polynomial formula in force: id={formula.id}")
    finally:
        db.close()
