import asyncio
from abc import ABC, abstractmethod

from registry_cleanup.config import RetentionConfig
from registry_cleanup.models import Backend, TagCandidate
from registry_cleanup.policy import filtered_tags
from registry_cleanup.rest import RestClient


class RegistryAdapter(ABC):
    """Operations a backend offers to the cleanup pipeline."""

    backend: Backend

    def __init__(self, client: RestClient, config: RetentionConfig) -> None:
        self.client = client
        self.config = config

    @property
    def repository(self) -> str:
        return self.config.repository

    def keep_names(self, names: list[str]) -> list[str]:
        return filtered_tags(names, self.config.name_pattern)

    @abstractmethod
    async def authenticate(self) -> None:
        """Obtain the credentials used by every later call."""

    @abstractmethod
    async def discover_tags(self) -> list[TagCandidate]:
        """List tags passing the name filter; `created_at` may still be unknown."""

    @abstractmethod
    async def resolve_timestamps(
        self, tags: list[TagCandidate], limiter: asyncio.Semaphore
    ) -> list[TagCandidate]:
        """Return the tags whose creation time could be established."""

    @abstractmethod
    async def delete_tag(self, tag: TagCandidate) -> None:
        """Delete one tag, raising DeletionError on failure."""
