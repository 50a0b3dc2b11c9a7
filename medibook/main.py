import asyncio
import logging
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from medibook.core import config
from medibook.database import Base, engine, ensure_reservation_schema
from medibook.models import doctor, patient, reservation  # noqa: F401
from medibook.routes import appointment_routes, availability_routes
from medibook.services.reconciliation_service import reconcile_pending_reservations

logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
logger = logging.getLogger(__name__)

config.validate_runtime_config()

app = FastAPI(title='Medibook API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_reservation_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')


def _log_recovery_failure(future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error('Startup reconciliation of pending reservations failed', exc_info=exc)


@app.on_event('startup')
async def resume_pending_reconciliation() -> None:
    if not config.RECONCILE_PENDING_ON_STARTUP:
        return
    future = asyncio.get_running_loop().run_in_executor(None, reconcile_pending_reservations)
    future.add_done_callback(_log_recovery_failure)


@app.get('/')
def root():
    return {'status': 'Medibook API Running'}


@app.get('/health')
def health():
    return {
        'success': True,
        'status': 'healthy',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'service': 'Medibook API',
    }


app.include_router(availability_routes.router)
app.include_router(appointment_routes.router)
