from typing import Annotated
from fastapi import Depends, FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.cache import InMemoryCache
from app.core.database.engine import AsyncSessionLocal, get_db, init_db
from app.core.errors import AppError
from app.core.rate_limit import limiter
from app.features.permissions.models import Permission, Role
from app.features.permissions.routes import role_router, permission_router
from app.features.permissions.schemas import StatsResponse
from app.features.permissions.seed import provision
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.features.users.routes import router as user_router, auth_router
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="RBAC Admin",
    description="Users, roles and permissions administration API",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
app.state.limiter = limiter
# Process-wide permission graph cache
app.state.cache = InMemoryCache()


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    origins = [config.ALLOW_ORIGIN]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(AppError)
async def app_error_handler(_request: Request, exc: AppError):
    if exc.status_code >= 500:
        log.error("Request failed: %s", exc.detail)
    else:
        log.info("Request rejected (%s): %s", exc.status_code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_content()))


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.on_event("startup")
async def startup():
    """Initialize database (and optionally default roles) on application startup."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")
    if config.SEED_ON_STARTUP:
        async with AsyncSessionLocal() as db:
            await provision(db, app.state.cache)


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "RBAC Admin API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/admin/stats", response_model=StatsResponse, tags=["dashboard"])
async def stats(
    _user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Entity counts for the dashboard cards."""
    async def count(model) -> int:
        return (await db.execute(select(func.count()).select_from(model))).scalar() or 0

    return StatsResponse(users=await count(User), roles=await count(Role), permissions=await count(Permission))


# Include routers
app.include_router(auth_router, prefix="/auth", tags=["auth"])
app.include_router(user_router, prefix="/admin/users", tags=["users"])
app.include_router(role_router, prefix="/admin/roles", tags=["roles"])
app.include_router(permission_router, prefix="/admin/permissions", tags=["permissions"])
