from fastapi import (
    FastAPI,
    HTTPException,
    Depends,
    Header,
    Request,
    Response,
)
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from models import ServiceDescriptor, ServicesRequest
from manifests import generate_manifests
from utils import (
    logger,
    REQUEST_COUNT,
    REQUEST_LATENCY,
    SERVICES_NORMALIZED,
    log_request,
    get_metrics,
    health_check,
    AdapterException,
)
from dotenv import load_dotenv
import os
import time

from typing import Optional
from prometheus_client import CONTENT_TYPE_LATEST

load_dotenv()

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address)

app = FastAPI(
    title="Service Adapter",
    description="Normalizes service descriptions and renders Kubernetes manifests",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Authentication dependency
async def verify_adapter_token(authorization: Optional[str] = Header(None)):
    """Verify that the request carries the adapter token"""
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    expected_token = os.getenv("ADAPTER_TOKEN", "default-secret-token")
    if authorization != f"Bearer {expected_token}":
        raise HTTPException(status_code=403, detail="Invalid adapter token")

    return True


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    response = await call_next(request)

    response_time = time.time() - start_time
    log_request(request, response_time, response.status_code)

    REQUEST_COUNT.labels(
        method=request.method, endpoint=request.url.path, status=response.status_code
    ).inc()
    REQUEST_LATENCY.observe(response_time)

    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error("Validation error", errors=exc.errors())
    return JSONResponse(
        status_code=422,
        content={
            "detail": "Validation error",
            "errors": [
                {"loc": list(error["loc"]), "msg": error["msg"]}
                for error in exc.errors()
            ],
        },
    )


@app.exception_handler(AdapterException)
async def adapter_exception_handler(request: Request, exc: AdapterException):
    logger.error(
        "Adapter exception",
        error_code=exc.error_code,
        message=exc.message,
        status_code=exc.status_code,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error_code": exc.error_code},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error("Unexpected error", error=str(exc), exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "error_code": "INTERNAL_ERROR"},
    )


def build_services(payload: ServicesRequest):
    """Normalize every raw service in the payload, counting outcomes"""
    services = []
    for attrs in payload.services:
        try:
            services.append(ServiceDescriptor.from_attrs(attrs))
        except AdapterException:
            SERVICES_NORMALIZED.labels(status="failed").inc()
            raise
        SERVICES_NORMALIZED.labels(status="success").inc()
    return services


@app.post("/services/normalize")
@limiter.limit("30/minute")
def normalize_services(
    payload: ServicesRequest,
    request: Request,
    _: bool = Depends(verify_adapter_token),
):
    """Return the normalized form of each posted service"""
    services = build_services(payload)
    logger.info(
        "Services normalized",
        count=len(services),
        names=[service.name for service in services],
    )
    return [service.to_dict() for service in services]


@app.post("/manifests")
@limiter.limit("30/minute")
def create_manifests(
    payload: ServicesRequest,
    request: Request,
    _: bool = Depends(verify_adapter_token),
):
    """Render Kubernetes manifests for the posted services"""
    services = build_services(payload)
    return {"manifests": generate_manifests(services)}


@app.get("/health", status_code=200)
async def health_endpoint():
    """Health check endpoint"""
    return health_check()


@app.get("/metrics")
async def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=get_metrics(), media_type=CONTENT_TYPE_LATEST)


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "name": "Service Adapter",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }


@app.on_event("startup")
async def startup_tasks():
    logger.info("Starting Service Adapter")


@app.on_event("shutdown")
async def shutdown_tasks():
    logger.info("Service Adapter shutdown complete")
