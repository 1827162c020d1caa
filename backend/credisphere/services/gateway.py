import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from credisphere.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class GatewayError(RuntimeError):
    """Raised when an analysis gateway call fails."""
    pass


class GatewayResponseError(GatewayError):
    """Raised when a gateway response body does not have the expected shape."""
    pass


@dataclass
class Classification:
    api_calls: list[str]
    requested_data: list[list[str]]


@dataclass
class AnalysisResult:
    markdown: str | None
    raw: dict[str, Any] = field(default_factory=dict)


# (filename, content, content_type), the tuple shape httpx accepts for multipart files
UploadFileTuple = tuple[str, bytes, str]


def parse_classification(data: Any) -> Classification:
    """Validate a classification body; nothing is coerced."""
    if not isinstance(data, dict):
        raise GatewayResponseError("Invalid API response format: expected a JSON object")

    api_calls = data.get("api_calls")
    requested_data = data.get("requested_data")
    if not isinstance(api_calls, list) or not isinstance(requested_data, list):
        raise GatewayResponseError("Invalid API response format: api_calls and requested_data are required lists")
    if not all(isinstance(call, str) for call in api_calls):
        raise GatewayResponseError("Invalid API response format: api_calls must contain strings")
    for fields in requested_data:
        if not isinstance(fields, list) or not all(isinstance(name, str) for name in fields):
            raise GatewayResponseError("Invalid API response format: requested_data must contain lists of strings")
    if len(api_calls) != len(requested_data):
        raise GatewayResponseError(
            f"Invalid API response format: {len(api_calls)} api_calls but {len(requested_data)} requested_data entries"
        )

    return Classification(api_calls=list(api_calls), requested_data=[list(fields) for fields in requested_data])


def parse_analysis(data: Any) -> AnalysisResult:
    if not isinstance(data, dict):
        raise GatewayResponseError("Invalid API response format: expected a JSON object")
    markdown = data.get("markdown")
    if markdown is not None and not isinstance(markdown, str):
        raise GatewayResponseError("Invalid API response format: markdown must be a string")
    return AnalysisResult(markdown=markdown or None, raw=data)


class AnalysisGateway:
    """Client for the external classification, analysis, upload and chat endpoints.

    Each call is an independent JSON (or multipart) POST. Timeout and retry
    policy come from settings; retries are connection-level only and default
    to zero, so a failed call is reported to the caller rather than repeated.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or get_settings()
        if transport is None:
            transport = httpx.AsyncHTTPTransport(retries=self.settings.gateway_max_retries)
        self._client = httpx.AsyncClient(
            timeout=self.settings.gateway_timeout_seconds,
            headers=self.settings.gateway_headers(),
            transport=transport,
        )

    async def __aenter__(self) -> "AnalysisGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, url: str, **kwargs) -> Any:
        try:
            resp = await self._client.post(url, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning("Gateway HTTP error from %s: %s", url, e.response.status_code)
            raise GatewayError(f"API error: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.warning("Gateway request to %s failed", url, exc_info=True)
            raise GatewayError(f"Gateway request failed: {e}") from e

        try:
            return resp.json()
        except ValueError as e:
            raise GatewayResponseError("Invalid API response format: body is not JSON") from e

    async def classify(self, context: str, report_id: str) -> Classification:
        data = await self._post(
            self.settings.gateway_classify_url,
            json={"context": context, "report_id": report_id},
        )
        logger.debug("Classification response for report %s: %s", report_id, data)
        return parse_classification(data)

    async def analyze(self, calls: list[dict[str, Any]], report_id: str) -> AnalysisResult:
        data = await self._post(
            self.settings.gateway_analyze_url,
            json={"api_calls": calls, "report_id": report_id},
        )
        return parse_analysis(data)

    async def upload(self, files: list[UploadFileTuple], report_id: str) -> dict[str, Any]:
        data = await self._post(
            self.settings.gateway_upload_url,
            data={"report_id": report_id},
            files=[("files", f) for f in files],
        )
        return data if isinstance(data, dict) else {"response": data}

    async def chat(self, report_id: str, message: str) -> str | None:
        data = await self._post(
            self.settings.gateway_chat_url,
            json={"report_id": report_id, "message": message},
        )
        if not isinstance(data, dict):
            raise GatewayResponseError("Invalid API response format: expected a JSON object")
        reply = data.get("response")
        return reply if isinstance(reply, str) else None
