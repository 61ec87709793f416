import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
import uvicorn

from zkvault.core.config import PROJECT_NAME, ALLOW_ORIGINS, ENVIRONMENT, LOG_LEVEL, PORT, SWEEP_INTERVAL_SECONDS
from zkvault.core.exceptions import ZKVaultError, zkvault_error_handler
from zkvault.core.pending_store import pending_store
from zkvault.core.security import session_ledger
from zkvault.db.database import SessionLocal, init_db
from zkvault.routers import auth_router, vault_router, health_router

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def sweep_expired_state() -> None:
    """Drop expired sessions and pending login entries"""
    db = SessionLocal()
    try:
        session_ledger.sweep_expired(db)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Session sweep failed: {type(e).__name__}")
    finally:
        db.close()
    pending_store.sweep()


async def _sweep_loop(interval: int) -> None:
    while True:
        await asyncio.sleep(interval)
        await run_in_threadpool(sweep_expired_state)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    sweeper = asyncio.create_task(_sweep_loop(SWEEP_INTERVAL_SECONDS))
    logger.info(f"{PROJECT_NAME} started ({ENVIRONMENT})")
    try:
        yield
    finally:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass


app = FastAPI(title=PROJECT_NAME, description="Zero-knowledge password manager server", lifespan=lifespan)

# Proxy Headers Middleware - trust the reverse proxy's view of scheme and client
@app.middleware("http")
async def proxy_headers_middleware(request: Request, call_next):
    if "x-forwarded-proto" in request.headers:
        request.scope["scheme"] = request.headers["x-forwarded-proto"]
    if "x-forwarded-for" in request.headers:
        original_ip = request.headers["x-forwarded-for"].split(",")[0].strip()
        request.scope["client"] = (original_ip, 0)  # port 0 keeps uvicorn's access log happy

    response = await call_next(request)
    return response

# CORS Middleware - browser clients on other origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"  # Prevents MIME sniffing attacks
    response.headers["X-Frame-Options"] = "DENY"  # Prevents clickjacking by blocking iframe embedding
    response.headers["Cache-Control"] = "no-store"  # Ciphertext and tokens must not be cached
    response.headers["Content-Security-Policy"] = "default-src 'self'"
    return response

app.add_exception_handler(ZKVaultError, zkvault_error_handler)

# Include routers
app.include_router(auth_router.router, prefix="/auth", tags=["Authentication"])
app.include_router(vault_router.router, prefix="/vaults", tags=["Vaults"])
app.include_router(health_router.router, prefix="/health", tags=["Health"])

@app.get("/")
async def root():
    return {"message": f"{PROJECT_NAME} is running."}

if __name__ == "__main__":
    uvicorn_config = {
        "app": "zkvault.main:app",
        "host": "0.0.0.0",
        "port": PORT,
        "reload": ENVIRONMENT == "development",
        "forwarded_allow_ips": "*"
    }
    uvicorn.run(**uvicorn_config)
