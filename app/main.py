from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from app.core.config import settings
from app.core.errors import PaymentError
from app.core.version import VERSION
from app.api.deps import get_task_queue
from app.api.endpoints import agent, assets, provider, receipt, reputation
import logging

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.PROJECT_NAME} {VERSION} on {settings.CHAIN_NETWORK}")
    yield
    # Let queued reputation updates finish before exiting
    get_task_queue().shutdown(wait=True)


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json", # Standard location for OpenAPI spec
    lifespan=lifespan,
)


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    missing = [".".join(str(p) for p in err["loc"][1:]) for err in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={"error": "bad_request", "message": "Invalid or missing fields", "fields": missing},
    )


# Include the API router(s)
# The prefix ensures all routes start with /api/v1
app.include_router(assets.router, prefix=f"{settings.API_V1_STR}/assets", tags=["assets"])
app.include_router(receipt.router, prefix=f"{settings.API_V1_STR}", tags=["payments"])
app.include_router(agent.router, prefix=f"{settings.API_V1_STR}/agent", tags=["agent"])
app.include_router(reputation.router, prefix=f"{settings.API_V1_STR}/reputation", tags=["reputation"])
app.include_router(provider.router, prefix=f"{settings.API_V1_STR}/provider", tags=["provider"])


@app.get("/", summary="Health Check", tags=["default"])
def read_root():
    """ Basic health check endpoint. """
    logger.info("Root endpoint '/' accessed.")
    return {
        "status": "ok",
        "message": f"Welcome to {settings.PROJECT_NAME}",
        "version": VERSION,
        "network": settings.CHAIN_NETWORK,
    }
