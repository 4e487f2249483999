import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from clinic_backend.core import config
from clinic_backend.database import Base, engine, ensure_appointment_schema
from clinic_backend.models import appointment, patient, user  # noqa: F401
from clinic_backend.routes import appointment_routes, auth_routes, patient_routes, user_routes

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = FastAPI(title='Clinic API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_ORIGIN],
    allow_credentials=True,
    allow_methods=['GET', 'POST', 'PUT', 'DELETE'],
    allow_headers=['Content-Type', 'Authorization'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Clinic API Running'}


@app.get('/health')
def health():
    return {'status': 'OK', 'environment': config.APP_ENV}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(patient_routes.router, prefix='/patients')
app.include_router(user_routes.router, prefix='/users')
