# storefront/main.py
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from storefront.api.errors import register_exception_handlers
from storefront.api.v1.api import api_router
from storefront.core.config import settings
from storefront.core.logging import setup_logging
from storefront.database import SessionLocal, create_tables
from storefront.services.integration import build_integration

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()

    # Инициализация БД
    if settings.AUTO_CREATE_TABLES:
        create_tables()

    app.state.integration = build_integration(settings, SessionLocal)
    logger.info(f"{settings.PROJECT_NAME} started ({settings.ENVIRONMENT})")
    try:
        yield
    finally:
        await app.state.integration.aclose()
        logger.info(f"{settings.PROJECT_NAME} stopped")

# Создаем app
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Storefront - marketplace dropshipping integration",
    version=settings.VERSION,
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin).rstrip("/") for origin in settings.BACKEND_CORS_ORIGINS],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Подключаем роутеры
app.include_router(api_router, prefix=settings.API_V1_STR)

@app.get("/")
async def root():
    return {"message": f"{settings.PROJECT_NAME} v{settings.VERSION}", "status": "ok"}

@app.get("/health")
async def health():
    return {"status": "ok", "service": "storefront-api", "environment": settings.ENVIRONMENT}
