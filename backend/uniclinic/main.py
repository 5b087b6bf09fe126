"""
UniClinic - University Clinic API
Role-scoped identities, doctor-patient assignments, appointments, medical
records, prescriptions and vital-sign alerting.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import settings
from .models.base import Base, engine
from .models import appointment, audit_log, medical_card, medical_record, prescription, user  # noqa: F401
from .api import appointments, assignments, auth, medical_cards, prescriptions, records, users
from .core.audit_middleware import AuditMiddleware
from .exceptions import ClinicError
from .seed_demo import seed_demo_data

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Request locations FastAPI prefixes onto field paths
_REQUEST_LOCATIONS = ("body", "query", "path", "header")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # NOTE: In production, use Alembic migrations instead of create_all()
    Base.metadata.create_all(bind=engine)
    if settings.SEED_DEMO_DATA:
        seed_demo_data()
    logger.info("%s %s started", settings.APP_NAME, settings.VERSION)
    yield


app = FastAPI(
    title="UniClinic API",
    description=(
        "University clinic back end: students and academic staff as patients, "
        "doctors and clinical staff as carers, with rule-based vital-sign alerts."
    ),
    version=settings.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(AuditMiddleware)


@app.exception_handler(ClinicError)
async def clinic_error_handler(request: Request, exc: ClinicError):
    if exc.status_code >= 409:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.error_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = {}
    for err in exc.errors():
        loc = [str(part) for part in err["loc"]]
        if loc and loc[0] in _REQUEST_LOCATIONS:
            loc = loc[1:]
        errors.setdefault(".".join(loc) or "__root__", []).append(err["msg"])
    return JSONResponse(
        status_code=422,
        content={"message": "The given data was invalid.", "error_code": "VALIDATION_ERROR", "errors": errors},
    )


app.include_router(auth.router, prefix="/api/v1")
app.include_router(users.router, prefix="/api/v1")
app.include_router(assignments.router, prefix="/api/v1")
app.include_router(appointments.router, prefix="/api/v1")
app.include_router(records.router, prefix="/api/v1")
app.include_router(prescriptions.router, prefix="/api/v1")
app.include_router(medical_cards.router, prefix="/api/v1")


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": settings.APP_NAME, "version": settings.VERSION}
