from fastapi import FastAPI, Request
import time
import logging

from pdfgrade import __version__
from pdfgrade.api.routes import annotations, copies, export, grading, rubric, stamps

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="PDF Grade API", version=__version__)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    t0 = time.perf_counter()
    logger.info("REQUEST  %s %s", request.method, request.url.path)
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - t0) * 1000
    logger.info("RESPONSE %s %s — status: %d, time: %.1fms", request.method, request.url.path, response.status_code, elapsed_ms)
    return response

app.include_router(copies.router, prefix="/api")
app.include_router(grading.router, prefix="/api")
app.include_router(rubric.router, prefix="/api")
app.include_router(annotations.router, prefix="/api")
app.include_router(stamps.router, prefix="/api")
app.include_router(export.router, prefix="/api")


@app.get("/")
def root():
    return {"status": "ok", "message": "PDF Grade API"}
