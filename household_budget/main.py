from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
import logging

from household_budget.core.config import settings
from household_budget.api.v1.api import api_router
from household_budget.core.exceptions import (
    CategoryInUse,
    ConflictError,
    NotFoundError,
    SetupRequiredError,
    ValidationError,
)

# Load environment variables
load_dotenv()

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Configure audit logger (JSON lines)
audit_logger = logging.getLogger("audit")
if not audit_logger.handlers:
    handler = logging.StreamHandler()
    # Keep raw JSON line without extra prefixes
    handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(handler)
audit_logger.setLevel(logging.INFO)
# Do not propagate to root to avoid duplication
audit_logger.propagate = False

api_description = """
## Household Budget

Versioned budget templates, per-month snapshots, scheduled adjustments and
category lifecycle for a household.

### Workflow

1. **Set up**: `POST /budget-templates/` creates the first template version
2. **Track a month**: `GET /monthly-budgets/{year}/{month}` snapshots the active template
3. **Adjust this month**: `PUT /monthly-budgets/{id}/categories/{name}`
4. **Plan next month**: `POST /budget-adjustments/` schedules a template change

Every request carries the `X-Household-ID` header; `X-Actor-ID` names the member making a change.
"""

app = FastAPI(
    title="Household Budget API",
    description=api_description,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# GZip compression for large JSON responses
app.add_middleware(GZipMiddleware, minimum_size=500)

# Set up CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SetupRequiredError)
async def setup_required_handler(request: Request, exc: SetupRequiredError):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": exc.message, "setup_required": True},
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    content = {"detail": exc.message, "error_code": exc.error_code}
    if exc.details:
        content["details"] = exc.details
    if isinstance(exc, CategoryInUse):
        content["transaction_count"] = exc.count
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=content)


@app.exception_handler(ConflictError)
async def conflict_error_handler(request: Request, exc: ConflictError):
    logger.warning(f"Conflict on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": exc.message, "retryable": True},
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": exc.message})


# Include API router
app.include_router(api_router, prefix="/api/v1")

@app.get("/")
async def root():
    return {"message": "Household Budget API is running"}

@app.get("/health")
async def health_check():
    return {"status": "healthy"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
