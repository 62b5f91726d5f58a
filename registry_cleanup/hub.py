import asyncio
import logging

from pydantic import ValidationError

from registry_cleanup.adapter import RegistryAdapter
from registry_cleanup.exceptions import (
    AuthenticationError,
    DeletionError,
    DiscoveryError,
    RequestFailed,
)
from registry_cleanup.models import Backend, HubTagsPage, TagCandidate, TokenResponse
from registry_cleanup.utils import parse_timestamp

PAGE_SIZE = 100


class HubAdapter(RegistryAdapter):
    """Public hosting API: login token, paginated tag list, delete by name."""

    backend = Backend.HUB

    @property
    def base_url(self) -> str:
        return self.config.registry_url

    async def authenticate(self) -> None:
        try:
            data = await self.client.post(
                f"{self.base_url}/users/login/",
                {"username": self.config.username, "password": self.config.password},
            )
            token = TokenResponse.model_validate(data or {}).bearer()
        except RequestFailed as err:
            raise AuthenticationError(
                f"Login to {self.base_url} failed: {err.reason}"
            ) from err
        except ValidationError as err:
            raise AuthenticationError(
                f"Login to {self.base_url} returned no token"
            ) from err

        self.client.headers["Authorization"] = f"Bearer {token.token}"
        logging.debug(f"Logged in to {self.base_url} as {self.config.username}")

    async def list_pages(self) -> list[HubTagsPage]:
        pages: list[HubTagsPage] = []
        url: str | None = (
            f"{self.base_url}/repositories/{self.repository}/tags/"
            f"?page_size={PAGE_SIZE}&page=1"
        )
        while url:
            try:
                page = HubTagsPage.model_validate(await self.client.get(url) or {})
            except RequestFailed as err:
                raise DiscoveryError(
                    f"Error getting tags for {self.repository}: {err.reason}"
                ) from err
            except ValidationError as err:
                raise DiscoveryError(
                    f"Error getting tags for {self.repository}: invalid page {url}"
                ) from err
            pages.append(page)
            url = page.next
        return pages

    async def discover_tags(self) -> list[TagCandidate]:
        hub_tags = [tag for page in await self.list_pages() for tag in page.results]
        if not hub_tags:
            logging.warning(f"No tags found for {self.repository}")

        by_name = {tag.name: tag for tag in hub_tags}
        found: list[TagCandidate] = []
        for name in self.keep_names([tag.name for tag in hub_tags]):
            last_updated = by_name[name].last_updated
            if not last_updated:
                logging.warning(f"Skipping {self.repository}:{name}, no update time")
                continue
            try:
                created_at = parse_timestamp(last_updated)
            except (ValueError, OverflowError):
                logging.warning(
                    f"Skipping {self.repository}:{name}, invalid update time {last_updated!r}"
                )
                continue
            found.append(TagCandidate(name=name, created_at=created_at))
        return found

    async def resolve_timestamps(
        self, tags: list[TagCandidate], limiter: asyncio.Semaphore
    ) -> list[TagCandidate]:
        # The tag listing already carries `last_updated`.
        return tags

    async def delete_tag(self, tag: TagCandidate) -> None:
        try:
            await self.client.delete(
                f"{self.base_url}/repositories/{self.repository}/tags/{tag.name}/"
            )
        except RequestFailed as err:
            raise DeletionError(err.reason) from err
