"""In-memory registries answering through httpx.MockTransport."""

import json
from datetime import datetime, timedelta
from typing import Any

import httpx

from registry_cleanup.config import DEFAULT_REGISTRY, build_config
from registry_cleanup.registry import MANIFEST_MIME_V1, MANIFEST_MIME_V2
from registry_cleanup.utils import build_basic_auth, true_utcnow

REGISTRY_URL = "https://registry.example"
REPOSITORY = "team/app"
USERNAME = "user"
PASSWORD = "pass"
REGISTRY_TOKEN = "registry-token"
HUB_TOKEN = "hub-token"


def make_config(**overrides: Any):
    data = {
        "registry_url": REGISTRY_URL,
        "repository": REPOSITORY,
        "username": USERNAME,
        "password": PASSWORD,
        "min_keep": 3,
        "max_age": "360h",
    }
    data.update(overrides)
    return build_config(data)


def days_ago(days: int) -> datetime:
    return true_utcnow() - timedelta(days=days)


def json_response(status_code: int, data: Any, **kwargs) -> httpx.Response:
    headers = {"Content-Type": "application/json", **kwargs.pop("headers", {})}
    return httpx.Response(
        status_code, headers=headers, content=json.dumps(data).encode(), **kwargs
    )


class FakeRegistry:
    """Registry v2 server holding one repository."""

    def __init__(self, repository: str = REPOSITORY, challenge: bool = True) -> None:
        self.repository = repository
        self.challenge = challenge
        self.manifests: dict[str, tuple[str, str, Any]] = {}
        self.blobs: dict[str, dict[str, Any]] = {}
        self.failing_deletes: set[str] = set()
        self.deleted: list[str] = []
        self.requests: list[httpx.Request] = []

    def add_v2_tag(self, name: str, created: datetime) -> str:
        digest = f"sha256:manifest-{name}"
        config_digest = f"sha256:config-{name}"
        self.manifests[name] = (
            MANIFEST_MIME_V2,
            digest,
            {
                "schemaVersion": 2,
                "mediaType": MANIFEST_MIME_V2,
                "config": {"mediaType": "application/json", "digest": config_digest},
                "layers": [],
            },
        )
        self.blobs[config_digest] = {"created": created.isoformat()}
        return digest

    def add_v1_tag(self, name: str, history: list[datetime]) -> str:
        digest = f"sha256:manifest-{name}"
        self.manifests[name] = (
            MANIFEST_MIME_V1,
            digest,
            {
                "schemaVersion": 1,
                "name": self.repository,
                "tag": name,
                "history": [
                    {
                        "v1Compatibility": json.dumps(
                            {"id": f"layer{index}", "created": created.isoformat()}
                        )
                    }
                    for index, created in enumerate(history)
                ],
            },
        )
        return digest

    def add_tag_with_type(self, name: str, media_type: str) -> str:
        digest = f"sha256:manifest-{name}"
        self.manifests[name] = (media_type, digest, {"schemaVersion": 2})
        return digest

    def authorized(self, request: httpx.Request) -> bool:
        expected = (
            f"Bearer {REGISTRY_TOKEN}"
            if self.challenge
            else build_basic_auth(USERNAME, PASSWORD)
        )
        return request.headers.get("Authorization") == expected

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        base = f"/v2/{self.repository}"

        if path == "/token":
            if request.headers.get("Authorization") != build_basic_auth(USERNAME, PASSWORD):
                return httpx.Response(401)
            return json_response(200, {"token": REGISTRY_TOKEN})

        if path == "/v2/":
            if self.challenge and not self.authorized(request):
                return httpx.Response(
                    401,
                    headers={
                        "WWW-Authenticate": (
                            f'Bearer realm="{REGISTRY_URL}/token",'
                            'service="registry.example"'
                        )
                    },
                )
            return httpx.Response(200)

        if not self.authorized(request):
            return httpx.Response(401)

        if path == f"{base}/tags/list":
            return json_response(
                200, {"name": self.repository, "tags": list(self.manifests)}
            )

        if path.startswith(f"{base}/manifests/"):
            reference = path.rsplit("/", 1)[1]
            if request.method == "DELETE":
                if reference in self.failing_deletes:
                    return httpx.Response(500)
                self.deleted.append(reference)
                return httpx.Response(202)
            if reference not in self.manifests:
                return json_response(404, {"errors": [{"code": "MANIFEST_UNKNOWN"}]})
            media_type, digest, body = self.manifests[reference]
            headers = {"Content-Type": media_type, "Docker-Content-Digest": digest}
            if request.method == "HEAD":
                return httpx.Response(200, headers=headers)
            return httpx.Response(200, headers=headers, content=json.dumps(body).encode())

        if path.startswith(f"{base}/blobs/"):
            digest = path.rsplit("/", 1)[1]
            if digest in self.blobs:
                return json_response(200, self.blobs[digest])

        return httpx.Response(404)

    def requests_with_method(self, method: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.method == method]


class FakeHub:
    """Public hosting API holding one repository, paginated by `page_size`."""

    def __init__(self, repository: str = REPOSITORY, page_size: int = 100) -> None:
        self.repository = repository
        self.page_size = page_size
        self.tags: list[dict[str, Any]] = []
        self.failing_deletes: set[str] = set()
        self.deleted: list[str] = []
        self.requests: list[httpx.Request] = []

    def add_tag(self, name: str, last_updated: datetime | None) -> None:
        self.tags.append(
            {
                "name": name,
                "full_size": 1024,
                "last_updated": last_updated.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
                if last_updated
                else None,
            }
        )

    def page(self, number: int) -> dict[str, Any]:
        start = (number - 1) * self.page_size
        results = self.tags[start : start + self.page_size]
        tags_url = f"{DEFAULT_REGISTRY}/repositories/{self.repository}/tags/"
        has_next = start + self.page_size < len(self.tags)
        return {
            "count": len(self.tags),
            "next": f"{tags_url}?page_size=100&page={number + 1}" if has_next else None,
            "previous": f"{tags_url}?page_size=100&page={number - 1}"
            if number > 1
            else None,
            "results": results,
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        tags_path = f"/v2/repositories/{self.repository}/tags/"

        if path == "/v2/users/login/" and request.method == "POST":
            credentials = json.loads(request.content)
            if credentials != {"username": USERNAME, "password": PASSWORD}:
                return json_response(401, {"detail": "Incorrect authentication credentials"})
            return json_response(200, {"token": HUB_TOKEN})

        if request.headers.get("Authorization") != f"Bearer {HUB_TOKEN}":
            return httpx.Response(401)

        if path == tags_path and request.method == "GET":
            return json_response(200, self.page(int(request.url.params.get("page", "1"))))

        if path.startswith(tags_path) and request.method == "DELETE":
            name = path[len(tags_path) :].strip("/")
            if name in self.failing_deletes:
                return httpx.Response(500)
            self.deleted.append(name)
            return httpx.Response(204)

        return httpx.Response(404)
