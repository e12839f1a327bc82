import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from clinic_backend.core import config
from clinic_backend.database import Base, engine, ensure_appointment_schema, ensure_unavailability_schema
from clinic_backend.models import appointment, company, inventory, patient, procedure, unavailability, user  # noqa: F401
from clinic_backend.routes import appointment_routes, schedule_routes
from clinic_backend.services.slot_cache import SlotCache

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
logging.basicConfig(level=config.LOG_LEVEL, format=LOG_FORMAT)

logger = logging.getLogger(__name__)

config.validate_runtime_config()

app = FastAPI(title='Clinic Scheduling API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

# Without REDIS_URL slot listings are computed on every request.
app.state.slot_cache = (
    SlotCache.from_url(config.REDIS_URL, config.SLOT_CACHE_TTL_SECONDS) if config.REDIS_URL else None
)


@app.on_event('startup')
def initialize_database() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
        ensure_unavailability_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Clinic Scheduling API Running'}


app.include_router(appointment_routes.public_router, prefix='/public')
app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(schedule_routes.router, prefix='/schedule')
