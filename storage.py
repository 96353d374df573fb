"""Local-disk blob store for book covers and PDFs.

Files land under ``UPLOAD_DIR`` and are served back by the static mount at
``/uploads``, so the stored URL is simply that prefix plus the relative path.
"""

import logging
import os
import random
import time
from pathlib import Path

from starlette.concurrency import run_in_threadpool

from config import settings

logger = logging.getLogger(__name__)

URL_PREFIX = "/uploads"


class LocalBlobStore:
    def __init__(self, root: str, url_prefix: str = URL_PREFIX):
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")

    def make_filename(self, field: str, original_name: str) -> str:
        suffix = Path(original_name or "").suffix.lower()
        unique = f"{int(time.time() * 1000)}-{random.randint(0, 10 ** 9)}"
        return f"{field}-{unique}{suffix}"

    def _write(self, path: Path, data: bytes):
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        with open(tmp_path, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)

    async def save(self, subdir: str, filename: str, data: bytes) -> str:
        relative = Path(subdir) / filename if subdir else Path(filename)
        await run_in_threadpool(self._write, self.root / relative, data)
        logger.info("Stored %d bytes at %s", len(data), relative)
        return f"{self.url_prefix}/{relative.as_posix()}"


def get_blob_store() -> LocalBlobStore:
    return LocalBlobStore(settings.upload_dir)
