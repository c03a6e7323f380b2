# controller/controller_dependencies.py
from fastapi import Depends, Request, Response, status
from fastapi_limiter import FastAPILimiter
from fastapi_limiter.depends import RateLimiter
from config.settings import settings
from service.container import ServiceContainer
from service.ingestion_service import IngestionService
from util.errors import AppError

_limiter = RateLimiter(times=settings.RATE_LIMIT_TIMES, seconds=settings.RATE_LIMIT_SECONDS)


async def rate_limit(request: Request, response: Response) -> None:
    # Limiter is only live once FastAPILimiter.init ran in the lifespan.
    if not settings.RATE_LIMIT_ENABLED or FastAPILimiter.redis is None:
        return
    await _limiter(request, response)


def get_services(request: Request) -> ServiceContainer:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise AppError("Service not ready", status.HTTP_503_SERVICE_UNAVAILABLE)
    return services


def get_ingestion_service(
    services: ServiceContainer = Depends(get_services),
) -> IngestionService:
    return services.ingestion
