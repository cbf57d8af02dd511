# chat_crawler/routers/data_router.py
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse, Response

from chat_crawler import schemas
from chat_crawler.controllers.crawler_controller import CrawlCoordinator, get_coordinator
from chat_crawler.errors import NoDataError, NothingToExportError
from chat_crawler.services.exporter import export_database
from chat_crawler.services.keyed_store import KeyedStore, get_store
from chat_crawler.services.markdown_export import export_filename, format_markdown, load_records_from_bytes

router = APIRouter()


def _export(store: KeyedStore) -> bytes:
    try:
        return export_database(store.dump())
    except NoDataError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except NothingToExportError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("/stats", response_model=schemas.StatsResponse)
def stats(
    store: KeyedStore = Depends(get_store),
    coordinator: CrawlCoordinator = Depends(get_coordinator),
):
    return schemas.StatsResponse(
        message_count=store.message_count(),
        channel_count=store.channel_count(),
        crawl_state=coordinator.get_status(),
    )

@router.get("/channels/{channel_id}/stats", response_model=schemas.ChannelStatsResponse)
def channel_stats(channel_id: str, store: KeyedStore = Depends(get_store)):
    return schemas.ChannelStatsResponse(**store.channel_stats(channel_id))

@router.get("/data", response_model=schemas.DataDump)
def get_data(limit: Optional[int] = Query(None, ge=1), store: KeyedStore = Depends(get_store)):
    return store.dump(limit)

@router.delete("/data")
def clear_data(
    store: KeyedStore = Depends(get_store),
    coordinator: CrawlCoordinator = Depends(get_coordinator),
):
    if coordinator.is_crawling:
        raise HTTPException(status_code=409, detail="Stop the running crawl before clearing data")
    store.clear_all()
    return {"status": "cleared"}

@router.get("/export")
def export_sqlite(store: KeyedStore = Depends(get_store)):
    blob = _export(store)
    return Response(
        content=blob,
        media_type="application/vnd.sqlite3",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(".sqlite")}"'},
    )

@router.get("/export/markdown", response_class=PlainTextResponse)
def export_markdown(store: KeyedStore = Depends(get_store)):
    records = load_records_from_bytes(_export(store))
    return PlainTextResponse(
        format_markdown(records),
        media_type="text/markdown",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(".md")}"'},
    )
