"""Главный файл приложения."""
import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront.api.v1 import router as api_v1_router
from storefront.config import settings
from storefront.core.cache import cache_service
from storefront.database import AsyncSessionLocal
from storefront.exceptions import StorefrontError
from storefront.services.mercadopago_client import MercadoPagoClient
from storefront.services.reconciliation_service import ReconciliationService

# Настройка логирования
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Глобальный планировщик задач
scheduler = AsyncIOScheduler()


async def reconcile_pending_orders():
    """Периодическая сверка PENDING заказов, для которых не дошёл webhook."""
    try:
        async with AsyncSessionLocal() as db:
            service = ReconciliationService(db, MercadoPagoClient())
            updated = await service.reconcile_pending(
                min_age=timedelta(minutes=settings.pending_reconcile_min_age_minutes)
            )
            if updated > 0:
                logger.info(f"Сверка обновила {updated} заказов")
    except Exception as e:
        logger.error(f"Ошибка при сверке PENDING заказов: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Управление жизненным циклом приложения."""
    # Startup
    await cache_service.connect()

    if settings.mercadopago_access_token:
        scheduler.add_job(
            reconcile_pending_orders,
            trigger=IntervalTrigger(minutes=settings.pending_reconcile_interval_minutes),
            id="reconcile_pending_orders",
            name="Сверка PENDING заказов с MercadoPago",
            replace_existing=True,
        )
        scheduler.start()
        logger.info(
            f"Планировщик запущен: сверка PENDING заказов каждые "
            f"{settings.pending_reconcile_interval_minutes} мин"
        )
    else:
        logger.warning("MERCADOPAGO_ACCESS_TOKEN не задан, фоновая сверка отключена")

    yield

    # Shutdown
    if scheduler.running:
        scheduler.shutdown(wait=False)
    await cache_service.disconnect()


app = FastAPI(
    title="Storefront Payments API",
    description="Заказы, оплата MercadoPago и сверка статусов для мобильного магазина",
    version="1.0.0",
    lifespan=lifespan,
)

# В development разрешаем все origins (Expo dev-сервер меняет адреса)
if settings.is_development:
    cors_origins = ["*"]
    # Нельзя использовать allow_credentials=True с allow_origins=["*"]
    allow_creds = False
else:
    cors_origins = list(set(settings.cors_origins))
    allow_creds = True

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=allow_creds,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    """Единый формат ошибок сервисов."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} на {request.url.path}: {exc.message} {exc.details}")
    else:
        logger.info(f"{exc.error_code} на {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Подключаем роутеры
app.include_router(api_v1_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Корневой endpoint."""
    return {
        "message": "Storefront Payments API",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok", "cache": cache_service.is_connected}
