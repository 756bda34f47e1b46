import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.deps import get_catalog
from app.api.endpoints import appointments, billing, credits, packages
from app.core.database import engine, Base
from app.core.errors import EngineError
from app.core.settings import settings
from app.models import registry  # noqa: F401

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Consultation Credit Engine API")

# Configure CORS
origins = settings.resolved_cors_origins()
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.on_event("startup")
def startup() -> None:
    if settings.is_production and not settings.jwt_secret:
        raise RuntimeError("JWT_SECRET must be set in production")
    if settings.db_auto_create:
        Base.metadata.create_all(bind=engine)
    catalog = get_catalog()
    logger.info("startup.ready environment=%s catalog_version=%s", settings.environment, catalog.version)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    if exc.status_code >= 500:
        logger.error("api.engine_error path=%s code=%s detail=%s", request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# API Routes
app.include_router(credits.router, prefix="/api", tags=["credits"])
app.include_router(appointments.router, prefix="/api", tags=["appointments"])
app.include_router(packages.router, prefix="/api", tags=["packages"])
app.include_router(billing.router, prefix="/api", tags=["billing"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
