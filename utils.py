import re
import structlog
from datetime import datetime
from typing import Optional, Dict, Any
from prometheus_client import (
    Counter,
    Histogram,
    REGISTRY,
    generate_latest,
)
from fastapi import Request

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Prometheus metrics
REQUEST_COUNT = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "endpoint", "status"]
)
REQUEST_LATENCY = Histogram("http_request_duration_seconds", "HTTP request latency")
SERVICES_NORMALIZED = Counter(
    "services_normalized_total", "Service descriptions normalized", ["status"]
)
MANIFESTS_GENERATED = Counter(
    "manifests_generated_total", "Manifests generated", ["kind"]
)

_SEPARATOR_RUN = re.compile(r"[^a-z0-9]+")


def sanitize(value: Optional[str]) -> Optional[str]:
    """Turn a string into a lowercase, hyphen-separated resource name.

    Every run of characters that is not an ASCII letter or digit becomes a
    single hyphen, so ``"fOO-3.4_latest"`` becomes ``"foo-3-4-latest"``.
    ``None`` passes through unchanged.
    """
    if value is None:
        return None
    return _SEPARATOR_RUN.sub("-", value.lower())


def log_request(request: Request, response_time: float, status_code: int):
    """Log request details with structured logging"""
    logger.info(
        "HTTP request",
        method=request.method,
        url=str(request.url),
        status_code=status_code,
        response_time=response_time,
        user_agent=request.headers.get("user-agent"),
        client_ip=request.client.host if request.client else None,
    )


def get_metrics():
    """Get Prometheus metrics"""
    return generate_latest()


def health_check() -> Dict[str, Any]:
    """Report adapter health along with the normalization counters"""
    try:
        normalized = {
            status: REGISTRY.get_sample_value(
                "services_normalized_total", {"status": status}
            )
            or 0.0
            for status in ("success", "failed")
        }
        return {
            "status": "healthy",
            "timestamp": datetime.utcnow().isoformat(),
            "services": normalized,
        }
    except Exception as e:
        logger.error("Health check failed", error=str(e))
        return {
            "status": "unhealthy",
            "timestamp": datetime.utcnow().isoformat(),
            "error": str(e),
        }


# Error handling utilities
class AdapterException(Exception):
    """Base exception for the service adapter"""

    def __init__(self, message: str, error_code: str = None, status_code: int = 500):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(self.message)


class InvalidConfiguration(AdapterException):
    """Exception for service descriptions that cannot be normalized"""

    def __init__(self, message: str = "Invalid service configuration"):
        super().__init__(message, "INVALID_CONFIGURATION", 422)
