# chat_crawler/errors.py


class CrawlerError(Exception):
    """Base class for errors surfaced to API and CLI callers."""


class CrawlerBusyError(CrawlerError):
    def __init__(self, message: str = "Crawler is already running"):
        super().__init__(message)


class InvalidTargetError(CrawlerError):
    def __init__(self, message: str = "Please navigate to a chat channel first"):
        super().__init__(message)


class HostContextLost(CrawlerError):
    """The browsing context left the chat platform or went away."""


class StorageError(CrawlerError):
    def __init__(self, failed: int, store: str = "records"):
        self.failed = failed
        self.store = store
        super().__init__(f"{failed} errors occurred while storing {store}")


class ExportError(CrawlerError):
    pass


class NoDataError(ExportError):
    def __init__(self, message: str = "No data to export"):
        super().__init__(message)


class NothingToExportError(ExportError):
    def __init__(self, message: str = "No valid messages could be exported"):
        super().__init__(message)


class BrowserUnavailableError(CrawlerError):
    """No debuggable browser could be attached."""


class TranscriptError(CrawlerError):
    pass
