import asyncio
import json
import logging
from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError

from registry_cleanup.adapter import RegistryAdapter
from registry_cleanup.auth import AUTH_HEADER, REQUIRED_SCOPE, challenge_from_headers
from registry_cleanup.exceptions import (
    AuthenticationError,
    DeletionError,
    DiscoveryError,
    ProtocolUnsupported,
    RequestFailed,
    ResolutionError,
)
from registry_cleanup.models import (
    AuthChallenge,
    Backend,
    BearerToken,
    ManifestBodyV1,
    ManifestBodyV2,
    ManifestDescriptor,
    ManifestV1,
    ManifestV2,
    TagCandidate,
    TagList,
    TokenResponse,
    UnsupportedManifest,
)
from registry_cleanup.utils import build_basic_auth, parse_timestamp

MANIFEST_MIME_V2 = "application/vnd.docker.distribution.manifest.v2+json"
MANIFEST_MIME_V1 = "application/vnd.docker.distribution.manifest.v1+prettyjws"
MANIFEST_MIME_V1_JSON = "application/vnd.docker.distribution.manifest.v1+json"
MANIFEST_MIMES_V1 = {MANIFEST_MIME_V1, MANIFEST_MIME_V1_JSON}
ACCEPT_MANIFESTS = ", ".join(
    [MANIFEST_MIME_V2, MANIFEST_MIME_V1, MANIFEST_MIME_V1_JSON]
)
DIGEST_HEADER = "Docker-Content-Digest"
CHALLENGE_STATUSES = {401, 403}


def latest_history_timestamp(history: list[str]) -> datetime:
    """Most recent `created` time among v1Compatibility entries.

    Each entry is a JSON document of its own; entries that cannot be
    decoded are ignored as long as one of them carries a timestamp.
    """
    timestamps: list[datetime] = []
    for entry in history:
        try:
            created = json.loads(entry).get("created")
            if created:
                timestamps.append(parse_timestamp(created))
        except (ValueError, TypeError, AttributeError, OverflowError) as err:
            logging.debug(f"Ignoring undecodable history entry: {err}")
    if not timestamps:
        raise ResolutionError("no creation time in manifest history")
    return max(timestamps)


class RegistryV2Adapter(RegistryAdapter):
    """Generic registry speaking the Registry v2 protocol; deletes by digest."""

    backend = Backend.REGISTRY_V2

    @property
    def api_url(self) -> str:
        return f"{self.config.registry_url}/v2"

    def manifest_url(self, reference: str) -> str:
        return f"{self.api_url}/{self.repository}/manifests/{reference}"

    def blob_url(self, digest: str) -> str:
        return f"{self.api_url}/{self.repository}/blobs/{digest}"

    def basic_auth(self) -> dict[str, str]:
        if not (self.config.username or self.config.password):
            return {}
        return {
            "Authorization": build_basic_auth(self.config.username, self.config.password)
        }

    async def probe(self) -> httpx.Headers:
        """HEAD /v2/; an auth challenge counts as a positive answer."""
        try:
            return await self.client.head(f"{self.api_url}/")
        except RequestFailed as err:
            if (
                err.status_code in CHALLENGE_STATUSES
                and err.headers is not None
                and AUTH_HEADER in err.headers
            ):
                return httpx.Headers(err.headers)
            raise ProtocolUnsupported(
                f"{self.config.registry_url} does not support registry v2: {err.reason}"
            ) from err

    async def fetch_token(self, challenge: AuthChallenge) -> BearerToken:
        params = {"scope": f"repository:{self.repository}:{REQUIRED_SCOPE}"}
        if challenge.service:
            params["service"] = challenge.service
        try:
            data = await self.client.get(
                challenge.realm, params=params, headers=self.basic_auth()
            )
            return TokenResponse.model_validate(data or {}).bearer()
        except RequestFailed as err:
            raise AuthenticationError(
                f"Cannot get a token from {challenge.realm}: {err.reason}"
            ) from err
        except ValidationError as err:
            raise AuthenticationError(
                f"Token endpoint {challenge.realm} returned no token"
            ) from err

    async def authenticate(self) -> None:
        challenge = challenge_from_headers(await self.probe())
        if challenge is None:
            logging.warning(
                f"{self.config.registry_url} sent no auth challenge, "
                "using basic credentials for every request"
            )
            self.client.headers.update(self.basic_auth())
            return

        logging.debug(f"Auth challenge: realm={challenge.realm} service={challenge.service}")
        token = await self.fetch_token(challenge)
        self.client.headers["Authorization"] = f"Bearer {token.token}"

    async def discover_tags(self) -> list[TagCandidate]:
        try:
            data = await self.client.get(f"{self.api_url}/{self.repository}/tags/list")
            tag_list = TagList.model_validate(data or {})
        except RequestFailed as err:
            raise DiscoveryError(
                f"Error getting tags for {self.repository}: {err.reason}"
            ) from err
        except ValidationError as err:
            raise DiscoveryError(
                f"Error getting tags for {self.repository}: invalid tag list"
            ) from err

        names = tag_list.tags or []
        if not names:
            logging.warning(f"No tags found for {self.repository}")
        return [TagCandidate(name=name) for name in self.keep_names(names)]

    async def get_json(self, url: str, **kwargs) -> dict[str, Any]:
        try:
            data = await self.client.get(url, **kwargs)
        except RequestFailed as err:
            raise ResolutionError(err.reason) from err
        if not isinstance(data, dict):
            raise ResolutionError(f"unexpected response from {url}")
        return data

    async def describe_manifest(self, reference: str) -> ManifestDescriptor:
        url = self.manifest_url(reference)
        try:
            headers = await self.client.head(url, headers={"Accept": ACCEPT_MANIFESTS})
        except RequestFailed as err:
            raise ResolutionError(err.reason) from err

        digest = headers.get(DIGEST_HEADER, "")
        media_type = headers.get("Content-Type", "").split(";")[0].strip()
        if media_type != MANIFEST_MIME_V2 and media_type not in MANIFEST_MIMES_V1:
            return UnsupportedManifest(digest=digest, media_type=media_type)
        if not digest:
            raise ResolutionError(f"no {DIGEST_HEADER} header")

        body = await self.get_json(url, headers={"Accept": media_type})
        try:
            if media_type == MANIFEST_MIME_V2:
                manifest_v2 = ManifestBodyV2.model_validate(body)
                config_digest = manifest_v2.config.digest if manifest_v2.config else ""
                if not config_digest:
                    raise ResolutionError("manifest has no config digest")
                return ManifestV2(digest=digest, config_digest=config_digest)

            manifest_v1 = ManifestBodyV1.model_validate(body)
        except ValidationError as err:
            raise ResolutionError(f"invalid manifest: {err.error_count()} errors") from err
        history = [entry.v1Compatibility for entry in manifest_v1.history or []]
        return ManifestV1(digest=digest, history=history)

    async def creation_time(self, manifest: ManifestDescriptor) -> datetime | None:
        if isinstance(manifest, ManifestV2):
            blob = await self.get_json(self.blob_url(manifest.config_digest))
            created = blob.get("created")
            if not created:
                raise ResolutionError("config blob has no creation time")
            try:
                return parse_timestamp(created)
            except (ValueError, TypeError, OverflowError) as err:
                raise ResolutionError(f"invalid creation time {created!r}") from err
        if isinstance(manifest, ManifestV1):
            return latest_history_timestamp(manifest.history)
        return None

    async def resolve_tag(
        self, tag: TagCandidate, limiter: asyncio.Semaphore
    ) -> TagCandidate | None:
        async with limiter:
            try:
                manifest = await self.describe_manifest(tag.name)
                created_at = await self.creation_time(manifest)
            except ResolutionError as err:
                logging.error(f"Error resolving {self.repository}:{tag.name}. {err}")
                return None

        if created_at is None:
            logging.warning(
                f"Skipping {self.repository}:{tag.name}, "
                f"unsupported manifest type {manifest.media_type!r}"  # type: ignore[union-attr]
            )
            return None
        return tag.model_copy(update={"created_at": created_at, "digest": manifest.digest})

    async def resolve_timestamps(
        self, tags: list[TagCandidate], limiter: asyncio.Semaphore
    ) -> list[TagCandidate]:
        tasks = [asyncio.create_task(self.resolve_tag(tag, limiter)) for tag in tags]
        # gather keeps discovery order, which the stable sort relies on
        resolved = await asyncio.gather(*tasks)
        return [tag for tag in resolved if tag is not None]

    async def delete_tag(self, tag: TagCandidate) -> None:
        try:
            await self.client.delete(self.manifest_url(tag.digest))
        except RequestFailed as err:
            raise DeletionError(err.reason) from err
