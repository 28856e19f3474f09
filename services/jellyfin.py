"""
Lightweight Jellyfin client that reads persisted settings and performs
authenticated requests to the Jellyfin REST API.
"""

from __future__ import annotations

import ipaddress
import json
import re
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode, urlparse
from urllib.request import Request, urlopen

from services.settings_store import SettingsService

HOSTNAME_RE = re.compile(
    r"^(?=.{1,255}$)([A-Za-z0-9](?:[A-Za-z0-9\-]{0,61}[A-Za-z0-9])?)"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9\-]{0,61}[A-Za-z0-9])?)*$"
)

ITEM_FIELDS = (
    "MediaSources",
    "MediaStreams",
    "DateCreated",
    "PremiereDate",
    "ProductionYear",
    "Genres",
    "Studios",
    "ProviderIds",
    "Path",
    "SortName",
)


class JellyfinClient:
    def __init__(self, settings: SettingsService, page_size: int = 1000) -> None:
        self._settings = settings
        self.page_size = page_size

    def _read_settings(self) -> Tuple[str, str, str, str]:
        """
        Read settings and normalize scheme/host.

        :returns Tuple[str, str, str, str]: (scheme, host, port, api_token)
        """
        s = self._settings.get()
        raw_host = (s.get("jf_host") or "").strip()
        raw_port = (s.get("jf_port") or "").strip()
        token = (s.get("jf_api_key") or "").strip()
        scheme = "http"
        host = ""
        port = ""

        if not raw_host and not raw_port: # No connection info provided
            return scheme, host, port, token

        parsed = urlparse(raw_host if "://" in raw_host else f"//{raw_host}", scheme="http")
        candidate_host = parsed.hostname or ""
        candidate_port_from_host = parsed.port

        if raw_port: # Explicit port takes priority
            port = raw_port
        elif candidate_port_from_host:
            port = str(candidate_port_from_host)

        if parsed.scheme and parsed.scheme.lower() == "https":
            scheme = "https"

        host = candidate_host or raw_host
        if ":" in host:
            host = host.split(":", 1)[0]
        host = host.strip().strip("/")

        valid = False
        if host:
            try:
                ipaddress.ip_address(host)
                valid = True
            except ValueError:
                valid = bool(HOSTNAME_RE.match(host))

        if not valid: # Reject invalid host
            return scheme, "", "", token

        return scheme, host, port, token

    def _build_url(self, path: str) -> Optional[str]:
        """
        Construct a full URL for a given Jellyfin path.

        :param path: API path
        :returns str | None: Full URL, or None if config is invalid
        """
        scheme, host, port, token = self._read_settings()
        if not host or not port or not port.isdigit() or not token:
            return None

        pnum = int(port)
        if pnum < 1 or pnum > 65535:
            return None

        if not path.startswith("/"):
            path = f"/{path}"

        return f"{scheme}://{host}:{pnum}{path}"

    def _is_transient_error(self, exc: Exception) -> bool:
        """
        Determine if an error is transient and should be retried.
        """
        if isinstance(exc, HTTPError):
            return exc.code in (408, 429, 500, 502, 503, 504)
        if isinstance(exc, URLError):
            return True
        return False

    def _get(
        self,
        path: str,
        max_retries: int = 3,
        backoff_base: float = 1.0
    ) -> Dict[str, Any]:
        """
        Perform a GET request to Jellyfin.

        :param path: API path to request
        :param max_retries: Max number of retry attempts
        :param backoff_base: Base delay (in sec)
        :returns dict: Result object containing success flag, status code, and payload/error
        """
        url = self._build_url(path)
        if not url:
            return {
                "ok": False,
                "status": 400,
                "message": "Missing or invalid host/port/token in settings.",
            }

        _, _, _, token = self._read_settings()

        req = Request(url, method="GET")
        req.add_header("X-Emby-Token", token)
        req.add_header("Accept", "application/json")

        last_exception: Optional[Exception] = None
        for attempt in range(max_retries):
            try:
                with urlopen(req, timeout=30.0) as resp:
                    status = getattr(resp, "status", 200)
                    body = resp.read()
                    try:
                        parsed = json.loads(body.decode("utf-8"))
                    except ValueError:
                        parsed = {}
                    return {
                        "ok": 200 <= status < 300,
                        "status": status,
                        "data": parsed,
                    }
            except HTTPError as he:
                last_exception = he
                if not self._is_transient_error(he):
                    return {
                        "ok": False,
                        "status": he.code,
                        "message": (
                            f"HTTP error from Jellyfin ({he.code}): "
                            f"{he.reason or 'Unknown'}"
                        ),
                    }
            except URLError as ue:
                last_exception = ue
            except OSError as exc:
                return {
                    "ok": False,
                    "status": 0,
                    "message": f"Unexpected error: {exc}",
                }

            if attempt < max_retries - 1: # Exp backoff before retry
                time.sleep(backoff_base * (2 ** attempt))

        if isinstance(last_exception, HTTPError):
            return {
                "ok": False,
                "status": last_exception.code,
                "message": (
                    f"HTTP error after {max_retries} retries "
                    f"({last_exception.code}): "
                    f"{last_exception.reason or 'Unknown'}"
                ),
            }
        if isinstance(last_exception, URLError):
            reason = getattr(last_exception, "reason", "Unknown")
            return {
                "ok": False,
                "status": 0,
                "message": f"Network error after {max_retries} retries: {reason}",
            }
        return {
            "ok": False,
            "status": 0,
            "message": f"Failed after {max_retries} retries",
        }

    def _get_paged(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Follow StartIndex/Limit paging until every item is fetched.
        Items are de-duplicated by Id.
        """
        start_index = 0
        aggregated: List[Dict[str, Any]] = []
        seen_ids: set = set()
        last_status = 200

        while True:
            query = dict(params, Limit=self.page_size, StartIndex=start_index)
            resp = self._get(f"{path}?{urlencode(query)}")
            last_status = resp.get("status", last_status)
            if not resp.get("ok"):
                return resp

            data = resp.get("data", {})
            if isinstance(data, dict):
                page_items = data.get("Items", [])
                total = data.get("TotalRecordCount", None)
            elif isinstance(data, list):
                page_items = data
                total = None
            else:
                page_items = []
                total = None

            for it in page_items:
                jf_id = (it.get("Id") or "").strip()
                if not jf_id or jf_id in seen_ids:
                    continue
                seen_ids.add(jf_id)
                aggregated.append(it)

            if (total is not None and start_index + len(page_items) >= int(total)) or len(page_items) < self.page_size:
                return {
                    "ok": True,
                    "status": last_status,
                    "data": {
                        "Items": aggregated,
                        "TotalRecordCount": len(aggregated),
                        "StartIndex": 0,
                    },
                }
            start_index += len(page_items)

    def validate_connection(self) -> Dict[str, Any]:
        """
        Calls /System/Info to validate connectivity and credentials.
        """
        return self._get("/System/Info")

    def users(self) -> Dict[str, Any]:
        """
        Returns list of users, including their policy.
        """
        return self._get("/Users")

    def items(
        self,
        include_types: Iterable[str],
        fields: Iterable[str] = ITEM_FIELDS,
        location_types: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Returns every library item of the given types.

        :param include_types: Jellyfin item types, e.g. ("Movie",)
        :param fields: Extra fields to include on each item
        :param location_types: Optional LocationTypes filter
        :returns dict: Result object with an Items list
        """
        params: Dict[str, Any] = {
            "IncludeItemTypes": ",".join(include_types),
            "Recursive": "true",
            "Fields": ",".join(fields),
        }
        if location_types:
            params["LocationTypes"] = location_types
        return self._get_paged("/Items", params)

    def user_items(self, user_id: str) -> Dict[str, Any]:
        """
        Returns every item visible to a user together with their UserData.
        """
        params = {
            "IncludeItemTypes": "Movie,Series,Episode,BoxSet",
            "Recursive": "true",
            "EnableUserData": "true",
            "Fields": "",
        }
        return self._get_paged(f"/Users/{user_id}/Items", params)


def create_client(settings_service: SettingsService) -> JellyfinClient:
    """
    Factory to create a JellyfinClient from a settings store.
    """
    return JellyfinClient(settings_service)
