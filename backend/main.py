import logging
import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException

from config import FRONTEND_URL, LOG_LEVEL
from database import engine, Base
from errors import MarketplaceError, ValidationError
from routes.auth import router as auth_router
from routes.listings import router as listings_router
from routes.documents import router as documents_router
from routes.inquiries import router as inquiries_router
from routes.transactions import router as transactions_router
from routes.favorites import router as favorites_router
from routes.saved_searches import router as saved_searches_router
from routes.preferences import router as preferences_router
from routes.waitlist import router as waitlist_router
from routes.notifications import router as notifications_router
from routes.admin import router as admin_router

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("notetrade.api")

# Create tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="NoteTrade API",
    description="Marketplace for buying and selling mortgage notes",
    version="1.0.0",
)

_allowed_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
    FRONTEND_URL,
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o for o in _allowed_origins if o],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ═══════════════════════════════════════════════
#  ERROR ENVELOPE
# ═══════════════════════════════════════════════

def _envelope(status_code: int, message: str, errors: list = None) -> JSONResponse:
    body = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=body)


def _field_errors(errors) -> list:
    result = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        result.append({"field": ".".join(loc) or None, "message": err.get("msg", "Invalid value")})
    return result


@app.exception_handler(MarketplaceError)
def marketplace_error_handler(request: Request, exc: MarketplaceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    errors = None
    if isinstance(exc, ValidationError) and exc.field:
        errors = [{"field": exc.field, "message": exc.message}]
    return _envelope(exc.status_code, exc.message, errors)


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError):
    return _envelope(400, "Validation failed", _field_errors(exc.errors()))


@app.exception_handler(PydanticValidationError)
def pydantic_validation_handler(request: Request, exc: PydanticValidationError):
    return _envelope(400, "Validation failed", _field_errors(exc.errors()))


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException):
    return _envelope(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _envelope(500, "Internal server error")


app.include_router(auth_router)
app.include_router(listings_router)
app.include_router(documents_router)
app.include_router(inquiries_router)
app.include_router(transactions_router)
app.include_router(favorites_router)
app.include_router(saved_searches_router)
app.include_router(preferences_router)
app.include_router(waitlist_router)
app.include_router(notifications_router)
app.include_router(admin_router)


@app.get("/")
def root():
    return {"message": "NoteTrade API is running", "version": "1.0.0"}


@app.get("/health")
def health():
    return {"status": "healthy"}


# ── Run directly with: python main.py ──
if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("main:app", host="0.0.0.0", port=port, reload=True)
