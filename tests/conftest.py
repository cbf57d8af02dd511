import os
import tempfile

import pytest

# Must be set before chat_crawler.config is imported anywhere
_TMP_DIR = tempfile.mkdtemp(prefix="chat-crawler-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'default.db')}"

from chat_crawler.services.keyed_store import KeyedStore  # noqa: E402


@pytest.fixture
def store(tmp_path):
    return KeyedStore.from_url(f"sqlite:///{tmp_path / 'store.db'}")
