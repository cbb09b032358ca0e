import uuid
from dotenv import load_dotenv

# Load env vars BEFORE imports that might use them
load_dotenv()

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fastbill.core.config import LOG_DIR, LOG_FILE, LOG_LEVEL, get_allowed_origins, is_remote_parser_enabled
from fastbill.domain.errors import BillingError
from fastbill.utils.logging_config import setup_logging, get_logger, request_id_ctx

# --- Logging Configuration ---
setup_logging(log_dir=LOG_DIR, log_file=LOG_FILE, level=LOG_LEVEL)
logger = get_logger("api")

from fastbill.api.routes import intents, pricing, products, voice

if not is_remote_parser_enabled():
    logger.info("REMOTE_PARSER_URL not set. Voice sessions use the local intent parser only.")

app = FastAPI(title="FastBill Voice Billing API")

# --- Middleware ---
@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """
    Uses the caller's X-Request-ID or generates one.
    Injects it into ContextVar for logging and echoes it back.
    """
    req_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    token = request_id_ctx.set(req_id)
    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = req_id
        return response
    except Exception:
        logger.exception("Middleware Error")
        raise
    finally:
        request_id_ctx.reset(token)

@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError):
    """
    Domain errors that escaped a route: the request was understood but
    could not be applied.
    """
    logger.warning(f"{type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=400,
        content={
            "status": "error",
            "message": type(exc).__name__,
            "detail": str(exc),
            "request_id": request_id_ctx.get()
        }
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Catches all unhandled exceptions.
    Logs full traceback with Request ID.
    Returns JSON to frontend.
    """
    req_id = request_id_ctx.get()
    logger.exception(f"Unhandled Exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "status": "error",
            "message": "Internal Server Error",
            "detail": str(exc),
            "request_id": req_id
        }
    )

# --- CORS Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Routers ---
app.include_router(pricing.router)
app.include_router(intents.router)
app.include_router(products.router)
app.include_router(voice.router)


@app.get("/health")
async def health_check():
    return {"status": "ok", "remote_parser": is_remote_parser_enabled()}


if __name__ == "__main__":
    uvicorn.run("fastbill.api.server:app", host="0.0.0.0", port=8000, reload=True)
