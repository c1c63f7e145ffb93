import os

from fastapi import FastAPI

from orderdesk.config import settings
from orderdesk.database import init_db
from orderdesk.logging_config import get_logger, setup_logging
from orderdesk.routers import reminders, webhook

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="OrderDesk API",
    description="WhatsApp assistant for tasks and orders",
    version="0.1.0",
)

app.include_router(webhook.router)
app.include_router(reminders.router)


@app.on_event("startup")
def create_tables() -> None:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return
    init_db()
    logger.info("Database ready")


@app.get("/health")
async def health():
    return {"status": "ok"}
