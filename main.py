# main.py
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as PoolTimeoutError

from config import CORS_ORIGINS
from database import Base, SessionLocal, engine
from exceptions import AppError, ConflictError, InternalError, ValidationError
from logger import get_logger
from routers.v1 import api_v1
from scheduler import start_retention, stop_retention
from services.audit import audit_writer, recorder

import models  # noqa: F401  (registers every table on Base.metadata)

log = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ---------- Bootstrap ----------
    Base.metadata.create_all(bind=engine)
    audit_writer.start()
    start_retention(app)
    try:
        yield
    finally:
        await stop_retention(app)
        audit_writer.stop()


app = FastAPI(title="Textile Pipeline API", version="1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_response(exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.to_dict()})


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return error_response(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
    msg = first.get("msg", "Invalid request")
    message = f"{field}: {msg}" if field else msg
    return error_response(
        ValidationError(message, details={"errors": [{"loc": list(e.get("loc", ())), "msg": e.get("msg")}
                                                     for e in errors]})
    )


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    log.warning("integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    return error_response(ConflictError("The change conflicts with an existing record"))


@app.exception_handler(OperationalError)
@app.exception_handler(PoolTimeoutError)
async def storage_error_handler(request: Request, exc: Exception):
    log.error("storage failure on %s %s: %s", request.method, request.url.path, exc)
    recorder.record_error(request.method.lower(), "api", str(exc), details={"path": request.url.path})
    return error_response(InternalError("Database unavailable or timed out, please retry", code="STORAGE_TIMEOUT"))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log.exception("unhandled error on %s %s", request.method, request.url.path)
    recorder.record_error(request.method.lower(), "api", str(exc), details={"path": request.url.path})
    return error_response(AppError("Internal server error"))


@app.get("/health")
def health():
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    finally:
        db.close()


app.include_router(api_v1, prefix="/api/v1")
