"""Small JSON-over-HTTP helper shared by both registry adapters."""

import json
import logging
from typing import Any

import httpx

from registry_cleanup.exceptions import RequestFailed

JSON_MIME = "application/json"
HIDDEN = "---HIDDEN---"


def redact_authorization(value: str) -> str:
    parts = value.split(" ")
    parts[-1] = HIDDEN
    return " ".join(parts)


class RestClient:
    """Issues GET/HEAD/POST/DELETE requests through a shared httpx session.

    `headers` is merged onto every request, which is how the adapters
    carry their Authorization header. HEAD requests return the response
    headers as their body; other methods return the decoded JSON body.
    """

    def __init__(self, session: httpx.AsyncClient, dump: bool = False) -> None:
        self.session = session
        self.headers: dict[str, str] = {}
        self.dump = dump

    async def get(self, url: str, payload: Any = None, **kwargs) -> Any:
        return self.decode(await self.request("GET", url, payload, **kwargs))

    async def head(self, url: str, payload: Any = None, **kwargs) -> httpx.Headers:
        response = await self.request("HEAD", url, payload, **kwargs)
        return response.headers

    async def post(self, url: str, payload: Any = None, **kwargs) -> Any:
        return self.decode(await self.request("POST", url, payload, **kwargs))

    async def delete(self, url: str, payload: Any = None, **kwargs) -> Any:
        return self.decode(await self.request("DELETE", url, payload, **kwargs))

    async def request(
        self,
        method: str,
        url: str,
        payload: Any = None,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        method = method.upper()
        request_headers: dict[str, str] = {}
        content: bytes | None = None
        if payload is not None:
            try:
                content = json.dumps(payload).encode()
            except (TypeError, ValueError) as err:
                raise RequestFailed(
                    method, url, f"cannot serialise payload: {err}"
                ) from err
            request_headers["Content-Type"] = JSON_MIME
        if method != "HEAD":
            request_headers["Accept"] = JSON_MIME
        request_headers.update(self.headers)
        request_headers.update(headers or {})

        request = self.session.build_request(
            method, url, content=content, params=params, headers=request_headers
        )
        if self.dump:
            self.dump_request(request, content)

        try:
            response = await self.session.send(request)
        except httpx.HTTPError as err:
            raise RequestFailed(method, url, f"error executing request: {err}") from err

        if self.dump:
            self.dump_response(response)

        if not response.is_success:
            raise RequestFailed(
                method,
                url,
                f"{response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
                body=response.content,
                headers=response.headers,
            )
        return response

    @staticmethod
    def decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as err:
            raise RequestFailed(
                response.request.method,
                str(response.request.url),
                f"cannot decode response body: {err}",
                status_code=response.status_code,
                body=response.content,
            ) from err

    @staticmethod
    def dump_request(request: httpx.Request, content: bytes | None) -> None:
        logging.info(f"request > {request.method} {request.url}")
        if content is not None:
            logging.info(f"payload ---\n{content.decode()}\npayload ---")
        lines = []
        for key, value in request.headers.multi_items():
            if key.lower() == "authorization":
                value = redact_authorization(value)
            lines.append(f"{key}: {value}")
        logging.info("request headers ---\n" + "\n".join(lines) + "\nrequest headers ---")

    @staticmethod
    def dump_response(response: httpx.Response) -> None:
        lines = [f"{key}: {value}" for key, value in response.headers.multi_items()]
        logging.info(
            f"response < {response.status_code} {response.reason_phrase}\n"
            "response headers ---\n" + "\n".join(lines) + "\nresponse headers ---"
        )
        if response.request.method != "HEAD":
            logging.info(f"response ---\n{response.text}\nresponse ---")
