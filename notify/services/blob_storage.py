"""
Filesystem blob store.

Objects are written under a root directory and served from a public base URL
(``/files/<path>`` on this application by default).
"""

import os
from pathlib import Path

from ..utils.logging_config import get_logger


class BlobStorageError(Exception):
    pass


class LocalBlobStore:
    def __init__(self, root: str, public_base_url: str):
        self.root = Path(root).resolve()
        self.public_base_url = public_base_url.rstrip("/")
        self.logger = get_logger("services.blob_storage")

    def _resolve(self, path: str) -> Path:
        target = (self.root / path.lstrip("/")).resolve()
        if self.root not in target.parents:
            raise BlobStorageError(f"Path escapes storage root: {path}")
        return target

    def upload(self, path: str, data: bytes) -> str:
        """Store ``data`` at ``path`` and return its public URL."""
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".tmp")
        with open(tmp, "wb") as fh:
            fh.write(data)
        os.replace(tmp, target)

        self.logger.info("Blob stored", extra={"event": "blob_uploaded", "path": path, "size": len(data)})
        return self.url_for(path)

    def delete(self, path: str) -> bool:
        if not path:
            return False
        target = self._resolve(path)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        self.logger.info("Blob deleted", extra={"event": "blob_deleted", "path": path})
        return True

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def local_path(self, path: str) -> Path:
        return self._resolve(path)

    def url_for(self, path: str) -> str:
        return f"{self.public_base_url}/{path.lstrip('/')}"
