import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from staffpay.core.config import settings
from staffpay.core.database import create_tables
from staffpay.core.errors import StaffpayError
from staffpay.core.logging_config import configure_logging
from staffpay.api.v1.auth import router as auth_router
from staffpay.api.v1.payroll import router as payroll_router
from staffpay.api.v1.advances import router as advances_router
from staffpay.api.v1.sursalaires import router as sursalaires_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    # Create tables on startup (SQLite / local development)
    await create_tables()
    yield


app = FastAPI(
    title="staffpay API",
    description="Payroll, cash advance and sursalaire reconciliation",
    version="1.0.0",
    lifespan=lifespan,
    # Swagger UI only in development; set DEBUG=false in production
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StaffpayError)
async def staffpay_error_handler(request: Request, exc: StaffpayError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.to_dict())
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


API_PREFIX = "/api/v1"

app.include_router(auth_router, prefix=API_PREFIX)
app.include_router(payroll_router, prefix=API_PREFIX)
app.include_router(advances_router, prefix=API_PREFIX)
app.include_router(sursalaires_router, prefix=API_PREFIX)


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "staffpay API", "version": "1.0.0", "currency": settings.CURRENCY}
