from fastapi import FastAPI, Depends
from contextlib import asynccontextmanager
import asyncio
import uvicorn
import logging

from .config import Settings
from .factory import create_file_processing_worker
from .services.queue_worker import QueueWorker

settings = Settings()

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

SHUTDOWN_GRACE_SECONDS = 30


def _log_worker_exit(task: asyncio.Task):
    if not task.cancelled() and task.exception() is not None:
        logger.error("Worker task exited with an error", exc_info=task.exception())


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Conversion Worker...")

    worker = create_file_processing_worker(settings)
    worker_task = asyncio.create_task(worker.start())
    worker_task.add_done_callback(_log_worker_exit)
    # Let the worker enter RUNNING so an early shutdown can stop it
    await asyncio.sleep(0)

    app.state.worker = worker
    app.state.worker_task = worker_task

    logger.info("Conversion Worker started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Conversion Worker...")
    worker.stop()
    try:
        await asyncio.wait_for(worker_task, timeout=SHUTDOWN_GRACE_SECONDS)
    except asyncio.TimeoutError:
        logger.warning(f"Worker did not stop within {SHUTDOWN_GRACE_SECONDS}s and was cancelled")
    if worker.job_store is not None:
        await worker.job_store.close()
    logger.info("Conversion Worker shutdown complete")

app = FastAPI(
    title="Conversion Worker",
    description="Queue-driven file conversion and compression worker",
    version="1.0.0",
    lifespan=lifespan
)

# Health check
@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "conversion-worker"}

@app.get("/api/v1/worker")
async def get_worker_status(
    worker: QueueWorker = Depends(lambda: app.state.worker)
):
    """Worker lifecycle state, registered processors and counters"""
    return worker.snapshot()

if __name__ == "__main__":
    uvicorn.run(
        "conversion_worker.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug
    )
