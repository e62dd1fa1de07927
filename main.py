"""
Solutil Connect API.

FastAPI application over MongoDB.  During the Firestore migration window
(``DUAL_WRITE_ENABLED``) every write is mirrored to Firestore through the
dual-write strategy.  Without a reachable database the public catalog,
admin catalog screens and booking listing are served from in-memory demo
data.

Run with::

    uvicorn main:app --reload
"""
import logging
import os

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError, WriteError

import database
from config import settings
from dual_write import create_dual_write_strategy, reset_dual_write_strategy
from firestore_store import FirestoreStore, init_firestore
from logging_config import setup_logging
from routers import admin, bookings, payouts, provider_services, reviews, services

setup_logging(settings.log_level, settings.log_file or None)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.project_name, version=settings.api_version)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(services.router)
app.include_router(provider_services.router)
app.include_router(bookings.router)
app.include_router(reviews.router)
app.include_router(payouts.router)
app.include_router(admin.router)


# ---------------------------
# Error envelopes
# ---------------------------

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


def _first_error_message(errors) -> str:
    if not errors:
        return "Invalid request"
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{field}: {first.get('msg')}" if field else first.get("msg")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    return JSONResponse(status_code=400, content={"status": "error", "message": _first_error_message(errors)})


# Raised by document re-validation inside the dual write.
@app.exception_handler(ValidationError)
async def document_validation_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"status": "error", "message": _first_error_message(exc.errors())})


@app.exception_handler(WriteError)
async def write_error_handler(request: Request, exc: WriteError):
    if isinstance(exc, DuplicateKeyError):
        return JSONResponse(status_code=409, content={"status": "error", "message": "Duplicate value for a unique field"})
    logger.warning("Rejected write on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=400, content={"status": "error", "message": "Invalid document"})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"status": "error", "message": "Internal server error"})


# ---------------------------
# Startup
# ---------------------------

@app.on_event("startup")
def startup_event() -> None:
    if not database.check_connection():
        logger.info("Running in mock mode: demo data is served for catalog endpoints")
        return

    database.create_indexes(database.db)

    firestore = None
    if settings.dual_write_enabled:
        if settings.firebase_credentials:
            firestore = FirestoreStore(init_firestore(settings.firebase_credentials, settings.firebase_project_id))
        else:
            logger.warning("DUAL_WRITE_ENABLED is set but FIREBASE_CREDENTIALS is empty; writing MongoDB only")

    create_dual_write_strategy(
        database.db,
        firestore,
        primary_database=settings.primary_database if firestore is not None else "mongodb",
        enable_fallback=settings.enable_read_fallback,
        record_sync_errors=settings.record_sync_errors,
        log_operations=settings.log_operations,
        max_sync_errors=settings.max_sync_errors,
    )


@app.on_event("shutdown")
def shutdown_event() -> None:
    reset_dual_write_strategy()
    if database.client is not None:
        database.client.close()


# ---------------------------
# Health & Utility
# ---------------------------

@app.get("/")
def read_root():
    return {"message": "Solutil Connect API running", "version": settings.api_version}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "database": "connected" if database.is_db_connected() else "mock",
    }


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }
    db = database.db
    if db is None:
        response["database"] = "⚠️ Available but not initialized"
        return response

    response["database"] = "✅ Available"
    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = db.name
    try:
        collections = db.list_collection_names()
        response["collections"] = collections[:10]
        response["connection_status"] = "Connected"
        response["database"] = "✅ Connected & Working"
    except Exception as e:
        response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
