from __future__ import annotations

import logging
from pathlib import Path

from quizportal.infra.ports.storage import AssetStoragePort

logger = logging.getLogger(__name__)


class LocalAssetStorage(AssetStoragePort):
    scheme = "local"

    def __init__(self, base_dir: Path):
        self.base_dir = base_dir
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path_for(self, locator: str) -> Path:
        if not self.owns(locator):
            raise ValueError(f"Not a {self.scheme} locator: {locator}")
        key = locator.removeprefix(f"{self.scheme}://").lstrip("/")
        dest = (self.base_dir / key).resolve()
        if self.base_dir.resolve() not in dest.parents:
            raise ValueError(f"Locator escapes storage root: {locator}")
        return dest

    def upload(self, path: str, data: bytes, content_type: str | None) -> str:
        locator = f"{self.scheme}://{path.lstrip('/')}"
        dest = self._path_for(locator)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(data)
        logger.info("Stored asset %s (%d bytes)", locator, len(data))
        return locator

    def delete(self, locator: str) -> None:
        dest = self._path_for(locator)
        if dest.exists():
            dest.unlink()
            logger.info("Deleted asset %s", locator)

    def build_url(self, locator: str) -> str:
        key = locator.removeprefix(f"{self.scheme}://").lstrip("/")
        return f"/uploads/{key}"
