import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.endpoints import account, admin, fanbases, thrivecart
from app.core.database import engine, Base
from app.core.settings import settings
from app.models import (  # noqa: F401  registers every table on Base.metadata
    checkout_session,
    coupon,
    credit_transaction,
    purchase,
    subscription,
    user,
    user_credits,
    webhook_log,
)
from app.models import fanbases as fanbases_models  # noqa: F401

logging.basicConfig(
    level=getattr(logging, (settings.log_level or "INFO").upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Course Credits Payments API")

# Configure CORS
origins = settings.resolved_cors_origins()
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.on_event("startup")
def startup() -> None:
    if settings.db_auto_create:
        Base.metadata.create_all(bind=engine)
    missing = [
        name
        for name, value in (
            ("THRIVECART_SECRET", settings.thrivecart_secret),
            ("FANBASES_API_KEY", settings.fanbases_api_key),
            ("FANBASES_WEBHOOK_SECRET", settings.fanbases_webhook_secret),
        )
        if not value
    ]
    if missing:
        logger.warning("startup.config.missing keys=%s", ",".join(missing))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "Invalid request", "details": [str(e.get("msg")) for e in exc.errors()]})


# API Routes
app.include_router(thrivecart.router, prefix="/api", tags=["thrivecart"])
app.include_router(fanbases.router, prefix="/api", tags=["fanbases"])
app.include_router(account.router, prefix="/api", tags=["account"])
app.include_router(admin.router, prefix="/api", tags=["admin"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
