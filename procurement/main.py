from fastapi import FastAPI, Depends, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import structlog

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from procurement.config import settings
from procurement.database import init_db, close_db, get_db
from procurement.exceptions import WorkflowError
from procurement.logging_config import setup_logging
from procurement.middleware.correlation import CorrelationIdMiddleware

# Import models so they are registered with Base.metadata
import procurement.models  # noqa: F401

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("starting_procurement", env=settings.ENVIRONMENT, currency=settings.CURRENCY)
    await init_db()
    yield
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Global exception handlers: every error leaves as
# {"error": {"code": "...", "message": "...", "details": {...}}}
# ---------------------------------------------------------------------------

@app.exception_handler(WorkflowError)
async def workflow_exception_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log("workflow_error", code=exc.code, message=exc.message, path=request.url.path)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, str):
        detail = {"error": {"code": "HTTP_ERROR", "message": detail}}
    elif isinstance(detail, dict) and "error" not in detail:
        detail = {"error": detail}
    return JSONResponse(status_code=exc.status_code, content=detail, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": jsonable_errors(exc),
            }
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "X-Request-ID"],
)


@app.get("/health", tags=["System"])
async def health(response: Response, db: AsyncSession = Depends(get_db)):
    health_status = {"status": "healthy", "version": settings.APP_VERSION, "checks": {}}

    try:
        await db.execute(text("SELECT 1"))
        health_status["checks"]["db"] = "ok"
    except Exception as e:
        logger.error("health_check_db_failed", error=str(e))
        health_status["checks"]["db"] = "error"
        health_status["status"] = "unhealthy"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return health_status


# --- Routers ---
from procurement.routes.plans import router as plans_router  # noqa: E402
from procurement.routes.purchase_requests import router as pr_router  # noqa: E402
from procurement.routes.purchase_orders import router as po_router  # noqa: E402
from procurement.routes.inspection_reports import router as iar_router  # noqa: E402
from procurement.routes.disbursement_vouchers import router as dv_router  # noqa: E402

app.include_router(plans_router, prefix="/api/v1/plans", tags=["Plans"])
app.include_router(pr_router, prefix="/api/v1/purchase-requests", tags=["Purchase Requests"])
app.include_router(po_router, prefix="/api/v1/purchase-orders", tags=["Purchase Orders"])
app.include_router(iar_router, prefix="/api/v1/inspection-reports", tags=["Inspection Reports"])
app.include_router(dv_router, prefix="/api/v1/disbursement-vouchers", tags=["Disbursement Vouchers"])
