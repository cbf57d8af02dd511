# chat_crawler/config.py
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./chat_crawler.db"

    # The chat web client being crawled
    platform_host: str = "https://discord.com"
    message_list_selector: str = 'ol[data-list-id="chat-messages"]'
    scroller_selector: str = 'div[class*="scroller_"][class*="managedReactiveScroller_"]'

    # Pagination timings (milliseconds) and termination policy
    scroll_delay_ms: int = 200
    initial_settle_ms: int = 1000
    scroll_fraction: float = 0.8
    no_growth_threshold: int = 3
    top_tolerance_px: int = 10
    status_every: int = 10

    # Selenium attaches to an already running, logged-in Chromium
    debugger_address: str = "127.0.0.1:9222"
    chromedriver_path: Optional[str] = None

    log_level: str = "INFO"

    @property
    def platform_domain(self) -> str:
        return self.platform_host.split("://", 1)[-1].rstrip("/")

    class Config:
        env_file = ".env"

settings = Settings()
