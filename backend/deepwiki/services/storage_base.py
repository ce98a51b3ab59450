"""
DeepWiki Backend — Abstract Object Storage Interface
======================================================

What:  The contract every page store implements.
Why:   Development and tests keep pages on local disk; production keeps them
       in a Cloudflare R2 bucket. WikiService only sees this interface.

Key layout (shared by all backends):
    {slug}/{filename}          current body of a page
    {slug}/{filename}.v{n}     body of version n
"""

from abc import ABC, abstractmethod
from typing import List


class StorageBackend(ABC):
    """
    Contract:
        - Keys are "/"-separated strings; values are UTF-8 text
        - Missing keys raise NotFoundError
        - Backend-specific failures are wrapped in StorageError
    """

    @abstractmethod
    async def put_text(self, key: str, content: str) -> None:
        """Create or overwrite the object at `key`."""
        ...

    @abstractmethod
    async def get_text(self, key: str) -> str:
        """
        Read the object at `key`.

        Raises:
            NotFoundError: No object at `key`.
            StorageError: The backend failed.
        """
        ...

    @abstractmethod
    async def list_keys(self, prefix: str) -> List[str]:
        """Every key starting with `prefix`, sorted."""
        ...

    @abstractmethod
    async def delete_keys(self, keys: List[str]) -> None:
        """Delete the given objects. Missing keys are ignored."""
        ...

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> List[str]:
        """Delete every object under `prefix`; returns the deleted keys."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """True if the store is reachable. Never raises."""
        ...


def page_key(slug: str, filename: str) -> str:
    return f"{slug}/{filename}"


def version_key(slug: str, filename: str, version_number: int) -> str:
    return f"{slug}/{filename}.v{version_number}"
