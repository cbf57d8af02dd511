# chat_crawler/services/browser.py
"""Selenium-backed chat surface, attached to an already logged-in Chromium."""
import logging
from typing import Optional

from bs4 import BeautifulSoup
from selenium import webdriver
from selenium.common.exceptions import WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service

from chat_crawler.config import settings
from chat_crawler.errors import BrowserUnavailableError, HostContextLost
from chat_crawler.services.surface import ChatSurface

log = logging.getLogger(__name__)

_SCROLL_TO_BOTTOM_JS = """
const c = document.querySelector(arguments[0]);
if (!c) { return false; }
c.scrollTop = c.scrollHeight;
return true;
"""

_SCROLL_UP_JS = """
const c = document.querySelector(arguments[0]);
if (!c) { return false; }
const before = c.scrollTop;
c.scrollTop = Math.max(0, before - c.clientHeight * arguments[1]);
return c.scrollTop !== before;
"""

_SCROLL_POSITION_JS = """
const c = document.querySelector(arguments[0]);
return c ? c.scrollTop : null;
"""


def make_driver(debugger_address: str = settings.debugger_address,
                chromedriver_path: Optional[str] = settings.chromedriver_path) -> webdriver.Chrome:
    """Attach to a Chromium started with --remote-debugging-port."""
    opts = Options()
    opts.add_experimental_option("debuggerAddress", debugger_address)
    if chromedriver_path:
        return webdriver.Chrome(service=Service(chromedriver_path), options=opts)
    return webdriver.Chrome(options=opts)


class SeleniumChatSurface(ChatSurface):
    def __init__(self, driver: webdriver.Chrome, scroller_selector: str = settings.scroller_selector):
        self.driver = driver
        self.scroller_selector = scroller_selector
        # Set once the driver fails; get_surface then attaches afresh
        self.lost = False

    def _lost(self, e: WebDriverException) -> HostContextLost:
        self.lost = True
        return HostContextLost(f"Browser tab is gone: {e.msg}")

    def _run(self, script: str, *args):
        try:
            return self.driver.execute_script(script, *args)
        except WebDriverException as e:
            raise self._lost(e) from e

    def current_url(self) -> str:
        try:
            return self.driver.current_url
        except WebDriverException as e:
            raise self._lost(e) from e

    def snapshot(self) -> BeautifulSoup:
        html = self._run("return document.documentElement.outerHTML;")
        return BeautifulSoup(html or "", "html.parser")

    def scroll_to_bottom(self) -> bool:
        return bool(self._run(_SCROLL_TO_BOTTOM_JS, self.scroller_selector))

    def scroll_up(self, fraction: float) -> bool:
        return bool(self._run(_SCROLL_UP_JS, self.scroller_selector, fraction))

    def scroll_position(self) -> Optional[float]:
        return self._run(_SCROLL_POSITION_JS, self.scroller_selector)


def attach_surface(debugger_address: str = settings.debugger_address) -> SeleniumChatSurface:
    log.info("Attaching to browser at %s", debugger_address)
    try:
        driver = make_driver(debugger_address)
    except WebDriverException as e:
        raise BrowserUnavailableError(
            f"Cannot attach to a browser at {debugger_address}: {e.msg or e}"
        ) from e
    return SeleniumChatSurface(driver)


_surface: Optional[SeleniumChatSurface] = None


def get_surface() -> ChatSurface:
    """Dependency: the shared browser surface, attached on first use and
    re-attached after the previous driver failed."""
    global _surface
    if _surface is None or _surface.lost:
        _surface = attach_surface()
    return _surface
