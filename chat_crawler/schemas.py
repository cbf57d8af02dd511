# chat_crawler/schemas.py
from typing import List, Optional

from pydantic import BaseModel, Field


class Reaction(BaseModel):
    emoji: str
    count: int = Field(..., ge=1)

class ServerRecord(BaseModel):
    server_id: str
    server_name: Optional[str] = None

class ChannelRecord(BaseModel):
    channel_id: str
    server_id: Optional[str] = None
    channel_name: Optional[str] = None
    last_crawled_at: Optional[str] = None

class UserRecord(BaseModel):
    user_id: str
    username: Optional[str] = None
    avatar_url: Optional[str] = None

class MessageRecord(BaseModel):
    message_id: str
    channel_id: Optional[str] = None
    user_id: Optional[str] = None
    timestamp: Optional[str] = None
    content: str = ""
    has_attachments: bool = False
    reactions: List[Reaction] = Field(default_factory=list)

class CrawlStatus(BaseModel):
    is_crawling: bool = False
    current_channel_id: Optional[str] = None
    current_channel_name: Optional[str] = None
    current_server_name: Optional[str] = None
    message_count: int = 0
    last_error: Optional[str] = None

class CrawlResponse(BaseModel):
    status: str
    initial_messages: int = 0
    initial_users: int = 0
    failed_records: int = 0
    crawl_state: CrawlStatus

class StatsResponse(BaseModel):
    message_count: int
    channel_count: int
    crawl_state: CrawlStatus

class ChannelStatsResponse(BaseModel):
    message_count: int
    last_crawled: Optional[str] = None

class DataDump(BaseModel):
    servers: List[ServerRecord]
    channels: List[ChannelRecord]
    users: List[UserRecord]
    messages: List[MessageRecord]
