"""HTTP client for a cloud vision API (images:annotate style)."""
from __future__ import annotations

import base64
import logging
from typing import Any, Optional

import requests

from ..core.errors import ItemProcessingError, UnexpectedProviderFailure


logger = logging.getLogger(__name__)


class VisionApiClient:
    """Send one image per request to a vision annotate endpoint.

    Error mapping:
    - connection errors, timeouts, 5xx, 401/403, 429: the service (or our
      credentials) is unusable for every item -> UnexpectedProviderFailure
    - other 4xx or a per-image error in the response -> ItemProcessingError
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self._api_url = api_url
        self._api_key = api_key
        self._timeout = timeout
        self._session = session or requests.Session()

    def annotate(self, item: str, image_bytes: bytes, features: list[dict[str, Any]]) -> dict[str, Any]:
        """Annotate one image and return its response entry."""
        body = {
            "requests": [{
                "image": {"content": base64.b64encode(image_bytes).decode("ascii")},
                "features": features,
            }]
        }
        try:
            response = self._session.post(
                self._api_url,
                params={"key": self._api_key},
                json=body,
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise UnexpectedProviderFailure(f"Vision API unreachable: {e}", cause=e) from e

        status = response.status_code
        if status >= 500 or status in (401, 403, 429):
            raise UnexpectedProviderFailure(f"Vision API returned HTTP {status}")
        if status >= 400:
            raise ItemProcessingError(item, f"Vision API rejected {item}: HTTP {status}")

        try:
            payload = response.json()
        except ValueError as e:
            raise UnexpectedProviderFailure("Vision API returned invalid JSON", cause=e) from e

        entries = payload.get("responses") or [{}]
        entry = entries[0]
        if "error" in entry:
            message = entry["error"].get("message", "unknown error")
            raise ItemProcessingError(item, f"Vision API error for {item}: {message}")
        logger.debug(f"Vision API annotated {item}: {sorted(entry.keys())}")
        return entry

    def close(self) -> None:
        self._session.close()
