"""Health check router: liveness + readiness.

Readiness reports whether statements would be sent to an external
provider and which providers are configured, in fallback order. No
provider is contacted: a probe must never spend API quota.
"""

import structlog
from fastapi import APIRouter, Depends

from apps.api.core.config import Settings, get_settings

router = APIRouter(tags=["health"])
logger = structlog.get_logger()


@router.get("/health")
async def health_liveness():
    """Liveness probe: returns 200 if the API process is running.

    This is the fast probe. Kubernetes/load balancers should use this.
    """
    return {"status": "healthy", "service": "api"}


@router.get("/health/ready")
async def health_readiness(settings: Settings = Depends(get_settings)):
    """Readiness probe: reports the extraction mode.

    ``degraded`` means external extraction was wanted (not disabled) but
    no provider has a key, so uploads are parsed deterministically only.
    """
    config = settings.pipeline_config()
    providers = [p.name for p in config.providers]

    if config.disable_external:
        extraction = "disabled"
    elif providers:
        extraction = "enabled"
    else:
        extraction = "unconfigured"

    status = {
        "status": "degraded" if extraction == "unconfigured" else "healthy",
        "services": {
            "api": "up",
            "extraction": extraction,
        },
        "external_extraction": config.external_enabled,
        "providers": providers,
    }
    if extraction == "unconfigured":
        logger.warning("no_extraction_provider_configured")
    return status
