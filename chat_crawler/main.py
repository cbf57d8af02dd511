# chat_crawler/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import settings
from .controllers.crawler_controller import get_coordinator
from .errors import BrowserUnavailableError
from .routers import crawler_router, data_router

logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)

@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    coordinator = get_coordinator()
    if coordinator.is_crawling:
        await coordinator.abandon("Server shutting down")
        logging.info("Running crawl abandoned on shutdown.")

app = FastAPI(
    title="Chat History Crawler",
    description="Crawls a chat channel open in the browser, stores its history and exports it to SQLite.",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(crawler_router.router, tags=["Crawler"])
app.include_router(data_router.router, tags=["Data"])

# Raised while resolving the browser dependency, before any route body runs
@app.exception_handler(BrowserUnavailableError)
async def browser_unavailable(request: Request, exc: BrowserUnavailableError):
    return JSONResponse(status_code=503, content={"detail": str(exc)})

@app.get("/")
def read_root():
    return {"message": "Crawler is running. Open a channel in the browser and POST /crawl/start."}
