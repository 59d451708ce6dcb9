"""
FastAPI server for the territory operator lookup engine.

Loads static configuration and connects cache tiers on startup, then serves
address -> operator resolutions. Designed as a long-lived process.
"""

import logging
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from territory_lookup.config import Config
from territory_lookup.engine import TerritoryEngine
from territory_lookup.errors import ResolutionError
from territory_lookup.logging_config import setup_logging
from territory_lookup.models import RawAddress

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
setup_logging()
logger = logging.getLogger("api")

# ---------------------------------------------------------------------------
# Global engine (loaded once at startup)
# ---------------------------------------------------------------------------
engine: Optional[TerritoryEngine] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the engine on startup, release cache/log handles on shutdown."""
    global engine
    logger.info("Loading territory engine...")
    t0 = time.time()

    # Load .env if present
    env_path = Path(__file__).parent / ".env"
    if env_path.exists():
        for line in env_path.read_text().splitlines():
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, val = line.split("=", 1)
                os.environ.setdefault(key.strip(), val.strip())

    engine = TerritoryEngine(Config.from_env())
    if os.environ.get("WARMUP_ON_START", "1").lower() in ("1", "true", "yes"):
        engine.warmup()

    elapsed = time.time() - t0
    logger.info(f"Engine ready in {elapsed:.1f}s")

    yield

    if engine:
        engine.close()
    logger.info("Shutdown complete.")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Territory Operator Lookup API",
    description="Resolve the Texas electricity delivery operator (TDSP) for a service address.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------
class AddressRequest(BaseModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = "TX"
    zip_code: str = Field(..., min_length=1)
    zip4: Optional[str] = None
    unit: Optional[str] = None

    def to_raw(self) -> RawAddress:
        return RawAddress(
            street=self.street, city=self.city, state=self.state,
            zip_code=self.zip_code, zip4=self.zip4, unit=self.unit,
        )


class OperatorResponse(BaseModel):
    key: str
    registry_number: str
    name: str
    zone: str
    tier: int
    priority: float


class ResolutionResponse(BaseModel):
    address: dict
    operator: OperatorResponse
    confidence: str
    strategy: str
    alternates: list[OperatorResponse] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    metadata: dict = Field(default_factory=dict)
    processing_time_ms: int
    cache_hit: bool = False
    timestamp: str


class HealthResponse(BaseModel):
    status: str
    engine_loaded: bool
    uptime_seconds: float


class BulkRequest(BaseModel):
    addresses: list[str] = Field(..., description="One-line addresses to resolve", max_length=100)


_start_time = time.time()


def _require_engine() -> TerritoryEngine:
    if not engine:
        raise HTTPException(status_code=503, detail="Engine is still loading. Try again shortly.")
    return engine


def _error_response(e: ResolutionError) -> HTTPException:
    status = 400 if e.is_format_error else 422
    return HTTPException(status_code=status, detail=e.to_dict())


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@app.get("/health", response_model=HealthResponse)
async def health():
    """Health check."""
    return HealthResponse(
        status="ok" if engine else "loading",
        engine_loaded=engine is not None,
        uptime_seconds=round(time.time() - _start_time, 1),
    )


@app.get("/resolve", response_model=ResolutionResponse)
def resolve(
    address: str = Query(..., description="One-line Texas address", min_length=5),
):
    """Resolve the territory operator for a one-line address."""
    eng = _require_engine()
    try:
        result = eng.resolve(address)
    except ResolutionError as e:
        raise _error_response(e)
    except Exception as e:
        logger.error(f"Resolve error for '{address}': {e}")
        raise HTTPException(status_code=500, detail="Resolution failed due to an internal error.")
    return JSONResponse(content=result.to_dict())


@app.post("/resolve", response_model=ResolutionResponse)
def resolve_post(req: AddressRequest):
    """Structured-address variant of /resolve."""
    eng = _require_engine()
    try:
        result = eng.resolve(req.to_raw())
    except ResolutionError as e:
        raise _error_response(e)
    except Exception as e:
        logger.error(f"Resolve error for '{req.street}, {req.zip_code}': {e}")
        raise HTTPException(status_code=500, detail="Resolution failed due to an internal error.")
    return JSONResponse(content=result.to_dict())


@app.post("/resolve/bulk")
def resolve_bulk(req: BulkRequest):
    """Bulk resolution, up to 100 addresses. Output order matches input order."""
    eng = _require_engine()
    if not req.addresses:
        raise HTTPException(status_code=400, detail="No addresses provided.")

    t0 = time.time()
    results = []
    for addr, item in zip(req.addresses, eng.resolve_bulk([a.strip() for a in req.addresses])):
        if isinstance(item, ResolutionError):
            results.append({"input": addr, "error": item.to_dict()})
        else:
            results.append({"input": addr, **item.to_dict()})

    return JSONResponse(content={
        "results": results,
        "total": len(results),
        "lookup_time_ms": int((time.time() - t0) * 1000),
    })


@app.get("/postal/{zip_code}/analysis")
def analyze_postal(zip_code: str):
    """ZIP-only pre-check: does this ZIP need a full street address?"""
    eng = _require_engine()
    try:
        analysis = eng.analyze_postal_code(zip_code)
    except ResolutionError as e:
        raise _error_response(e)
    return JSONResponse(content=analysis.to_dict())


@app.get("/postal/{zip_code}/boundary")
def postal_boundary(zip_code: str):
    """Candidate operators and street rules for a ZIP."""
    eng = _require_engine()
    try:
        data = eng.boundary_data(zip_code)
    except ResolutionError as e:
        raise _error_response(e)
    return JSONResponse(content=data)


@app.post("/options")
def operator_options(req: AddressRequest):
    """Ranked operator options for users in a boundary area."""
    eng = _require_engine()
    try:
        options = eng.get_operator_options(req.to_raw())
    except ResolutionError as e:
        raise _error_response(e)
    return JSONResponse(content=options.to_dict())


@app.get("/stats")
def stats():
    return JSONResponse(content=_require_engine().stats())


@app.post("/cache/clear")
def clear_cache():
    _require_engine().clear_cache()
    return {"status": "cleared"}


@app.get("/config/validate")
def validate_config():
    return JSONResponse(content=_require_engine().validate_configuration())

