from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Backend(StrEnum):
    HUB = "hub"
    REGISTRY_V2 = "registry-v2"


class TagCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    created_at: datetime | None = None
    digest: str = ""


class AuthChallenge(BaseModel):
    model_config = ConfigDict(frozen=True)

    realm: str
    service: str = ""
    scope: str


class BearerToken(BaseModel):
    token: str


class TokenResponse(BaseModel):
    """Token endpoint answer; some servers only fill `access_token`."""

    token: str = ""
    access_token: str = ""
    expires_in: int | None = None
    issued_at: str | None = None

    @model_validator(mode="after")
    def require_token(self) -> "TokenResponse":
        if not self.token and not self.access_token:
            raise ValueError("token response carries no token")
        return self

    def bearer(self) -> BearerToken:
        return BearerToken(token=self.token or self.access_token)


class ManifestV2(BaseModel):
    kind: Literal["v2"] = "v2"
    schema_version: Literal[2] = 2
    digest: str
    config_digest: str


class ManifestV1(BaseModel):
    kind: Literal["v1"] = "v1"
    schema_version: Literal[1] = 1
    digest: str
    history: list[str]


class UnsupportedManifest(BaseModel):
    kind: Literal["unsupported"] = "unsupported"
    digest: str = ""
    media_type: str


ManifestDescriptor = ManifestV2 | ManifestV1 | UnsupportedManifest


class BlobInfo(BaseModel):
    mediaType: str = ""
    size: int = 0
    digest: str = ""


class ManifestBodyV2(BaseModel):
    schemaVersion: int = 2
    config: BlobInfo | None = None


class HistoryEntry(BaseModel):
    v1Compatibility: str = ""


class ManifestBodyV1(BaseModel):
    schemaVersion: int = 1
    history: list[HistoryEntry] | None = None


class TagList(BaseModel):
    name: str = ""
    tags: list[str] | None = None


class HubTag(BaseModel):
    name: str
    last_updated: str | None = None


class HubTagsPage(BaseModel):
    count: int = 0
    next: str | None = None
    previous: str | None = None
    results: list[HubTag] = Field(default_factory=list)


class DeletionOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    created_at: datetime | None
    succeeded: bool
    dry_run: bool = False
    error: str = ""


class CleanupResult(BaseModel):
    repository: str
    backend: Backend
    started_at: datetime
    finished_at: datetime
    found_tags_count: int
    resolved_tags_count: int
    deleted: int
    failed: int
    dry_run: bool
    outcomes: list[DeletionOutcome]

    @property
    def success(self) -> bool:
        return self.failed == 0
