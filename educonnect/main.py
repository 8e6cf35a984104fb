from dotenv import load_dotenv
import os

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
load_dotenv(os.path.join(BASE_DIR, ".env"))

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from educonnect.core.config import settings
from educonnect.core.errors import register_exception_handlers
from educonnect.core.logging import get_logger

# ───────────────── ROUTER IMPORTS ─────────────────
from educonnect.routes.auth import router as auth_router
from educonnect.routes.two_factor import router as two_factor_router
from educonnect.routes.verification import router as verification_router

logger = get_logger(__name__)

app = FastAPI(
    title="EduConnect API",
    description="Account, role verification and two-factor authentication API for the EduConnect ERP",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

# ───────── SAFE VALIDATION HANDLER ─────────

def _sanitize(obj):
    if isinstance(obj, (bytes, bytearray)):
        return f"<bytes:{len(obj)}>"
    if isinstance(obj, dict):
        # never echo submitted passwords / codes back
        return {k: _sanitize(v) for k, v in obj.items() if k not in ("input", "ctx")}
    if isinstance(obj, (list, tuple)):
        return [_sanitize(v) for v in obj]
    return obj


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    safe_errors = _sanitize(exc.errors())
    logger.warning("request_validation_failed", path=request.url.path, errors=len(safe_errors))
    return JSONResponse(
        status_code=422,
        content={"kind": "validation_error", "detail": safe_errors},
    )


register_exception_handlers(app)

# ───────────────── CORS ─────────────────

origins = settings.origins_list or [
    "http://localhost:3000",
    "http://localhost:5173",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ───────────────── ROUTES ─────────────────

app.include_router(auth_router, prefix="/api")          # /api/auth
app.include_router(two_factor_router, prefix="/api")    # /api/auth/2fa
app.include_router(verification_router, prefix="/api")  # /api/verification

# ───────────────── HEALTH ─────────────────

@app.get("/", tags=["Health"])
async def root():
    return {
        "status": "ok",
        "app": "EduConnect API",
        "env": settings.APP_ENV,
    }


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "healthy"}
