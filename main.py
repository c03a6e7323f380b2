# main.py
from contextlib import asynccontextmanager
from typing import Optional
import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi_limiter import FastAPILimiter
from starlette.middleware.cors import CORSMiddleware
import routes
from config.cache import close_redis, get_redis
from config.settings import settings
from repository.namespaces import RATE_LIMIT
from service.container import ServiceContainer
from util.enums import Color, Environment, ErrorMessage
from util.errors import (
    AuthRefreshError,
    IngestError,
    InvalidJobError,
    NotFoundError,
    PreconditionError,
    StoreError,
)
from util.logger import init_logger


async def _real_ip(request: Request) -> str:
    if settings.TRUST_PROXY:
        fwd = request.headers.get("x-forwarded-for")
        if fwd:
            return fwd.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


@asynccontextmanager
async def lifespan(fastApi: FastAPI):
    owns_services = getattr(fastApi.state, "services", None) is None
    try:
        logger = init_logger()
        print(f"{Color.GREEN}Initializing...{Color.RESET}")
        if owns_services:
            redis = await get_redis()
            if settings.RATE_LIMIT_ENABLED:
                await FastAPILimiter.init(redis, prefix=RATE_LIMIT, identifier=_real_ip)
            fastApi.state.services = ServiceContainer.build(
                redis, http=httpx.AsyncClient()
            )
        fastApi.state.services.start_maintenance()
        print(f"{Color.BLUE}Server Started{Color.RESET}")
    except Exception as e:
        print("Failed to start services:", e)
        raise

    try:
        yield
    finally:
        try:
            await fastApi.state.services.aclose()
        except Exception as e:
            logger.error("services.close.error err=%s", e)
        if owns_services:
            try:
                await close_redis()
            except Exception as e:
                print("Error closing Redis:", e)

        print(f"{Color.RED}Server Shutdown{Color.RESET}")


def _envelope(info: ErrorMessage, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=info.value.http_status,
        content={"ok": False, "error": info.value.code, "message": message},
    )


_ERROR_MAP: list[tuple[type[IngestError], ErrorMessage]] = [
    (NotFoundError, ErrorMessage.NOT_FOUND),
    (InvalidJobError, ErrorMessage.INVALID_REQUEST),
    (PreconditionError, ErrorMessage.PRECONDITION_FAILED),
    (AuthRefreshError, ErrorMessage.AUTH_REQUIRED),
    (StoreError, ErrorMessage.STORAGE_ERROR),
]


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    app = FastAPI(lifespan=lifespan)
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.ALLOWED_ORIGIN],
        allow_credentials=True,  # Session cookies come from the auth layer
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Authorization", "Content-Type", "Accept"],
    )

    @app.get("/healthz")
    async def healthz():
        return {"ok": True}

    @app.exception_handler(429)
    async def ratelimit_handler(request: Request, exc):
        return JSONResponse(
            status_code=429,
            content={
                "ok": False,
                "error": "rate_limited",
                "message": f"Too many requests. Try again in {settings.RATE_LIMIT_SECONDS}s.",
            },
            headers={"Retry-After": str(settings.RATE_LIMIT_SECONDS)},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        loc = ".".join(str(x) for x in first.get("loc", []) if x != "body")
        msg = first.get("msg", "Invalid request")
        return _envelope(ErrorMessage.INVALID_REQUEST, f"{loc}: {msg}" if loc else msg)

    @app.exception_handler(IngestError)
    async def ingest_error_handler(request: Request, exc: IngestError):
        for exc_type, info in _ERROR_MAP:
            if isinstance(exc, exc_type):
                return _envelope(info, str(exc))
        return _envelope(ErrorMessage.INTERNAL_ERROR, str(exc))

    routes.register_routes(app)
    return app


app: FastAPI = create_app()

if __name__ == "__main__":
    import uvicorn

    reload = settings.APP_ENV == Environment.DEV
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=reload)
