# api_main.py
import logging
import datetime as dt
import os
from typing import Optional
import uvicorn

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from supabase import create_client, Client as SupabaseClient

from config import settings
from errors import AppError
from models_pydantic import error_response
from routers import csv_router, income_router, insights_router


# --- Configure Logging ---
log = logging.getLogger('fastapi_app')
log.setLevel(logging.INFO if not settings.DEBUG_MODE else logging.DEBUG)
if not log.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s - %(levelname)s - [%(name)s:%(module)s:%(funcName)s:%(lineno)d] - %(message)s')
    handler.setFormatter(formatter)
    log.addHandler(handler)


# --- FastAPI App Initialization ---
app = FastAPI(
    title=settings.APP_NAME,
    description="Imports payment-platform exports into normalized income records.",
    version="1.0.0"
)

# --- Supabase Client Initialization & App State ---
supabase_url: Optional[str] = settings.SUPABASE_URL
supabase_key: Optional[str] = settings.SUPABASE_KEY

if not supabase_url or not supabase_key:
    log.critical("Supabase URL or Key not found in settings. Authenticated routes will return 503.")
    app.state.supabase_client = None
else:
    try:
        _supabase_client: SupabaseClient = create_client(supabase_url, supabase_key)
        app.state.supabase_client = _supabase_client
        log.info("Supabase client initialized successfully and stored in app.state.")
    except Exception as e:
        log.critical(f"Failed to initialize Supabase client: {e}", exc_info=True)
        app.state.supabase_client = None


# --- CORS Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error Envelope ---
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        log.error(f"{request.method} {request.url.path}: {type(exc).__name__}: {exc.message}")
    else:
        log.warning(f"{request.method} {request.url.path}: {type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=error_response(exc.message))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content=error_response(str(exc.detail)),
                        headers=getattr(exc, 'headers', None))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    messages = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
    return JSONResponse(status_code=400, content=error_response(", ".join(messages)))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    log.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    message = str(exc) if settings.DEBUG_MODE else "Internal server error"
    return JSONResponse(status_code=500, content=error_response(message))


# --- Include API Routers ---
app.include_router(csv_router.router)
app.include_router(income_router.router)
app.include_router(insights_router.router)
log.info("API routers included.")


@app.get("/api/health", tags=["General"])
async def health():
    return {"status": "ok", "timestamp": dt.datetime.now(dt.timezone.utc).isoformat()}


@app.get("/", tags=["General"])
async def read_root():
    return {"message": f"Welcome to {settings.APP_NAME}"}


# --- Main Execution (for local development using uvicorn) ---
if __name__ == "__main__":
    log.info(f"Starting FastAPI server (Debug: {settings.DEBUG_MODE})...")
    uvicorn.run(
        "api_main:app",
        host=settings.FASTAPI_HOST,
        port=settings.FASTAPI_PORT,
        reload=settings.DEBUG_MODE,
        reload_dirs=[os.path.dirname(os.path.abspath(__file__))],
    )
