# run.py
import os
import sys

from gunicorn.app.base import BaseApplication
from gunicorn.util import import_app


class CrawlerApplication(BaseApplication):
    def __init__(self, app_uri, options=None):
        self.app_uri = app_uri
        self.options = options or {}
        super().__init__()

    def load_config(self):
        for key, value in self.options.items():
            if key in self.cfg.settings and value is not None:
                self.cfg.set(key.lower(), value)

    def load(self):
        return import_app(self.app_uri)


def main():
    sys.path.insert(0, os.getcwd())

    # One worker: the crawl slot and the browser attachment live in-process
    options = {
        "bind": "0.0.0.0:8000",
        "workers": 1,
        "worker_class": "uvicorn.workers.UvicornWorker",
        "proc_name": "chat_crawler",
    }

    CrawlerApplication("chat_crawler.main:app", options).run()

if __name__ == "__main__":
    main()
