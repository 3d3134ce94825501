from __future__ import annotations

import json
import logging
from typing import Any, Optional, Protocol
from urllib.error import URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from config import get_settings
from errors import SourceUnavailable


logger = logging.getLogger(__name__)

FETCH_LIMIT = 1000


class TransactionSource(Protocol):
    def fetch_transactions(
        self, subject_id: str, auth_token: str
    ) -> list[dict[str, Any]]: ...

    def fetch_profile(self, subject_id: str, auth_token: str) -> dict[str, Any]: ...


class SourceClient:
    """HTTP client for the external source of record.

    Transactions come back as raw payload dicts; the reconciler validates them
    one by one so that a single malformed record does not sink the batch.
    """

    def __init__(
        self, base_url: Optional[str] = None, timeout: Optional[float] = None
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.source_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.source_timeout_secs

    def fetch_transactions(
        self, subject_id: str, auth_token: str
    ) -> list[dict[str, Any]]:
        payload = self._get_json("/transactions", auth_token, {"limit": FETCH_LIMIT})
        if isinstance(payload, dict):
            payload = payload.get("transactions", [])
        if not isinstance(payload, list):
            raise SourceUnavailable("Unexpected transactions response from source")
        logger.info(
            f"source_fetch: resource=transactions subject={subject_id} "
            f"count={len(payload)}"
        )
        return payload

    def fetch_profile(self, subject_id: str, auth_token: str) -> dict[str, Any]:
        payload = self._get_json("/auth/me", auth_token)
        if isinstance(payload, dict) and isinstance(payload.get("user"), dict):
            payload = payload["user"]
        if not isinstance(payload, dict):
            raise SourceUnavailable("Unexpected profile response from source")
        logger.info(f"source_fetch: resource=profile subject={subject_id}")
        return payload

    def _get_json(
        self, path: str, auth_token: str, params: Optional[dict[str, object]] = None
    ) -> Any:
        url = f"{self.base_url}{path}"
        if params:
            url = f"{url}?{urlencode(params)}"
        req = Request(
            url,
            headers={
                "Accept": "application/json",
                "Authorization": f"Bearer {auth_token}",
            },
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except (
            URLError,
            TimeoutError,
            OSError,
            json.JSONDecodeError,
            UnicodeDecodeError,
        ) as exc:
            raise SourceUnavailable(f"Failed to fetch {path} from source") from exc
