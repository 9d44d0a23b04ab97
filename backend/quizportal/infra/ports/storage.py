from __future__ import annotations

from abc import ABC, abstractmethod


class AssetStoragePort(ABC):
    """Image asset store. Locators look like ``<scheme>://images/<category>/<questionId>.<ext>``."""

    scheme: str

    @abstractmethod
    def upload(self, path: str, data: bytes, content_type: str | None) -> str:
        """Persist bytes under ``path`` and return the locator."""

    @abstractmethod
    def delete(self, locator: str) -> None:
        """Remove the asset behind ``locator``. Missing assets are not an error."""

    @abstractmethod
    def build_url(self, locator: str) -> str:
        """Resolve a locator to a retrievable URL."""

    def owns(self, value: str | None) -> bool:
        return bool(value) and value.startswith(f"{self.scheme}://")
