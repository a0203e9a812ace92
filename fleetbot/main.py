from __future__ import annotations

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .db import engine, init_db
from .errors import FleetError, RecordNotFound, StoreUnavailable
from .journeys import JourneyQuery
from .logger import get_logger
from .schemas import JourneyRead, JourneyReportRead, VehicleRead
from .store import FleetStore

logger = get_logger(__name__)

app = FastAPI(title="Fleet Assignment API")

# --- CORS: пустой CORS_ORIGINS — разрешаем всем ---
origins_str = settings.CORS_ORIGINS.strip()
origins = [o.strip() for o in origins_str.split(",") if o.strip()] if origins_str else ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)

# ---------------------------- Lifecycle ----------------------------

@app.on_event("startup")
def on_startup() -> None:
    init_db()


def get_store() -> FleetStore:
    return FleetStore(engine)


def get_journeys(store: FleetStore = Depends(get_store)) -> JourneyQuery:
    return JourneyQuery(store, tz=settings.TIMEZONE)


@app.exception_handler(FleetError)
async def fleet_error_handler(request: Request, exc: FleetError) -> JSONResponse:
    status_code = 400
    if isinstance(exc, RecordNotFound):
        status_code = 404
    elif isinstance(exc, StoreUnavailable):
        status_code = 503
    return JSONResponse(
        status_code=status_code,
        content={"error_code": exc.error_code, "message": exc.message},
    )


@app.get("/")
def root():
    return {"ok": True, "service": "fleet-bot", "message": "Both User Bot and Admin Bot are running"}


@app.get("/health")
def health():
    return "ok"

# ------------------------------ Парк -------------------------------

@app.get("/vehicles", response_model=list[VehicleRead])
def list_vehicles(store: FleetStore = Depends(get_store)):
    """Состояние парка: машины в пути сверху, затем по имени."""
    vehicles = store.list_vehicles()
    return sorted(vehicles, key=lambda v: (not v.in_use, v.name))


@app.get("/users/{user_id}/journeys", response_model=JourneyReportRead)
def user_journeys(
    user_id: int,
    offset: int = Query(0, ge=0, le=30),
    store: FleetStore = Depends(get_store),
    journeys: JourneyQuery = Depends(get_journeys),
):
    if store.get_user(user_id) is None:
        raise RecordNotFound(f"User {user_id} not found.")
    report = journeys.for_user(user_id, offset)
    return JourneyReportRead(
        user_id=report.user_id,
        day=report.day,
        journeys=[JourneyRead.model_validate(j) for j in report.journeys],
    )
