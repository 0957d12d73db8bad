import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.routers import analytics, health, overview, prices, reset, sync, vitals
from app.services.cache import ResultCache

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="usageWatch API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# --- Overview result cache (one per app) ---
app.state.overview_cache = ResultCache(
    ttl_seconds=settings.overview_cache_ttl_seconds,
    max_entries=settings.overview_cache_max_entries,
)

# --- CORS (read from env; defaults to * for dev) ---
origins = [o.strip() for o in (settings.cors_origins or "").split(",") if o.strip()]
if not origins or origins == ["*"]:
    allow_origins = ["*"]
else:
    allow_origins = origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=allow_origins != ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def _bad_request(request: Request, exc: RequestValidationError):
    details = [
        {"path": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Bad Request", "details": details})


# --- Routers ---
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(sync.router)
app.include_router(overview.router)
app.include_router(prices.router)
app.include_router(vitals.router)
app.include_router(analytics.router)
app.include_router(reset.router)


@app.get("/")
def root():
    return {
        "name": "usageWatch",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }
