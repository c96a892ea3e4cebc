import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from app.config import settings
from app.database import get_store
from app.tasks.reminders import process_follow_up_reminders, run_reminder_worker
# Import routes
from app.routes import auth, conversations, templates, automation, analytics, integrations

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = get_store()
    store.ensure_file()
    logger.info(f"Using data file {store.path}")

    worker = None
    if settings.AUTOMATION_WORKER_ENABLED:
        worker = asyncio.create_task(run_reminder_worker(settings.AUTOMATION_INTERVAL_SECONDS))

    yield

    if worker is not None:
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass


# Create FastAPI app
app = FastAPI(
    title="WhatsApp CRM API",
    description="Conversations, templates and automated replies for WhatsApp leads",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(conversations.router, prefix="/api/conversations", tags=["Conversations"])
app.include_router(templates.router, prefix="/api/templates", tags=["Templates"])
app.include_router(automation.router, prefix="/api/automation", tags=["Automation"])
app.include_router(analytics.router, prefix="/api/analytics", tags=["Analytics"])
app.include_router(integrations.router, prefix="/api/integrations", tags=["Integrations"])


# Health check
@app.get("/api/health")
def health_check():
    return {
        "status": "ok",
        "dataFile": str(get_store().path),
        "environment": settings.ENVIRONMENT
    }


@app.post("/api/tasks/send-reminders")
async def trigger_reminders():
    """
    Manual trigger for the follow-up reminder sweep
    (the background worker runs the same sweep every minute)
    """
    try:
        reminders = await process_follow_up_reminders()
        return {
            "success": True,
            "reminders_sent": len(reminders),
            "reminders": reminders,
            "message": f"Successfully sent {len(reminders)} reminder(s)"
        }
    except Exception as e:
        logger.error(f"Manual reminder sweep failed: {e}", exc_info=True)
        return {
            "success": False,
            "error": str(e)
        }


frontend_dist = Path(settings.FRONTEND_DIST_PATH)
if (frontend_dist / "index.html").exists():
    app.mount("/", StaticFiles(directory=str(frontend_dist), html=True), name="frontend")
else:
    @app.get("/")
    def root():
        return {
            "message": "Backend is running. Build the frontend to serve the dashboard from this domain.",
            "docs": "/docs"
        }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=settings.PORT)
