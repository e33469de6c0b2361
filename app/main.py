# app/main.py
"""
FastAPI application hosting the WhatsApp webhook and the flow engine.

pywa registers the webhook routes on this app; every inbound message is
handed to the FlowExecutor, which starts or resumes bot flows.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.core.config import (
    PHONE_ID, TOKEN, VERIFY_TOKEN, VALIDATE_UPDATES,
    DEFAULT_INSTANCE_ID, LOG_LEVEL, settings
)
from app.core.logging_config import setup_logging
from app.db.session import init_db, test_db_connection
from app.services.flow_executor import FlowExecutor
from app.services.flow_runtime import DelayScheduler
from app.services.transport import PywaTransport

setup_logging("whatsaflow", LOG_LEVEL)

log = logging.getLogger("whatsaflow")
log.info("="*80)
log.info("🚀 Application starting")
log.info("="*80)

# Initialize database
try:
    init_db()
    if test_db_connection():
        log.info("✅ Database initialized")
except Exception as e:
    log.error(f"❌ Database error: {e}")

# ────────────────────────────────────────────
# Flow engine
# ────────────────────────────────────────────
transport = PywaTransport()
scheduler = DelayScheduler()
flow_executor = FlowExecutor(transport, scheduler=scheduler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler.start()
    yield
    # Pending delay continuations die with the process; their executions stay "running"
    scheduler.cancel_all()
    scheduler.shutdown()


app = FastAPI(
    title="WhatsaFlow - WhatsApp bot flows",
    description="Multi-tenant WhatsApp automation: keyword/welcome triggered bot flows",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# WhatsApp client
wa = None
if settings.whatsapp_configured:
    try:
        from pywa import WhatsApp
        from app.services.whatsapp_handlers import register_handlers

        wa = WhatsApp(
            phone_id=PHONE_ID,
            token=TOKEN,
            server=app,
            verify_token=VERIFY_TOKEN,
            validate_updates=VALIDATE_UPDATES
        )
        transport.register(DEFAULT_INSTANCE_ID, wa)
        register_handlers(wa, flow_executor, DEFAULT_INSTANCE_ID)
        log.info(f"✅ WhatsApp client initialized for instance {DEFAULT_INSTANCE_ID}")
    except Exception as e:
        log.error(f"❌ WhatsApp init failed: {e}")
else:
    log.warning("⚠️  WhatsApp not configured - flows will not receive messages")


@app.get("/healthz", tags=["System"])
def health():
    """Health check endpoint"""
    db_ok = test_db_connection()

    return {
        "status": "ok" if db_ok else "degraded",
        "phone_id_ok": bool(PHONE_ID),
        "token_ok": bool(TOKEN),
        "verify_token_ok": bool(VERIFY_TOKEN),
        "database_ok": db_ok,
        "whatsapp_ready": wa is not None,
        "instance_id": DEFAULT_INSTANCE_ID,
        "pending_delays": scheduler.pending(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8100)
