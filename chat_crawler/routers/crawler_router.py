# chat_crawler/routers/crawler_router.py
import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from chat_crawler import schemas
from chat_crawler.controllers.crawler_controller import CrawlCoordinator, get_coordinator
from chat_crawler.errors import CrawlerBusyError, InvalidTargetError, StorageError
from chat_crawler.services.browser import get_surface
from chat_crawler.services.surface import ChatSurface

log = logging.getLogger(__name__)

router = APIRouter(prefix="/crawl")

@router.post("/start", response_model=schemas.CrawlResponse)
async def start_crawl(
    coordinator: CrawlCoordinator = Depends(get_coordinator),
    surface: ChatSurface = Depends(get_surface),
):
    try:
        report = await coordinator.start(surface)
    except CrawlerBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidTargetError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return schemas.CrawlResponse(
        status="started",
        initial_messages=report.initial_messages,
        initial_users=report.initial_users,
        failed_records=report.failed_records,
        crawl_state=report.status,
    )

@router.post("/stop", response_model=schemas.CrawlResponse)
async def stop_crawl(coordinator: CrawlCoordinator = Depends(get_coordinator)):
    stopped = await coordinator.stop()
    return schemas.CrawlResponse(
        status="stopped" if stopped else "not_running",
        crawl_state=coordinator.get_status(),
    )

@router.get("/status", response_model=schemas.CrawlStatus)
def crawl_status(coordinator: CrawlCoordinator = Depends(get_coordinator)):
    return coordinator.get_status()

@router.websocket("/events")
async def crawl_events(websocket: WebSocket, coordinator: CrawlCoordinator = Depends(get_coordinator)):
    # Subscribe before accepting so no update slips between handshake and loop
    queue, unsubscribe = coordinator.broadcaster.subscribe_queue()

    async def forward():
        while True:
            status = await queue.get()
            await websocket.send_json(status.model_dump())

    sender = None
    try:
        await websocket.accept()
        await websocket.send_json(coordinator.get_status().model_dump())
        sender = asyncio.create_task(forward())
        # Incoming frames are ignored; reading is how a disconnect shows up
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        log.debug("Status listener disconnected")
    finally:
        if sender is not None:
            sender.cancel()
        unsubscribe()
