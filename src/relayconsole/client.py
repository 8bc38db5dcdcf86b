from __future__ import annotations

import os
import random
import sys
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any
from urllib.parse import quote

import requests

from .models import (
    DISCORD_DIRECTORY,
    JELLYSEERR_DIRECTORY,
    ApiResult,
    Channel,
    FieldError,
    IdentityLink,
    IdentityRecord,
    Library,
    SaveResult,
)

_DEFAULT_API_BASE = "http://127.0.0.1:8282"
_TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})

_DIRECTORY_ENDPOINTS = {
    DISCORD_DIRECTORY: ("/api/discord-members", "members"),
    JELLYSEERR_DIRECTORY: ("/api/jellyseerr-users", "users"),
}


class ConsoleAPIError(RuntimeError):
    def __init__(
        self,
        reason: str,
        *,
        path: str | None = None,
        status: int | None = None,
        detail: str | None = None,
    ):
        self.reason = reason
        self.path = path
        self.status = status
        self.detail = detail
        message_by_reason = {
            "not_found": "Console API resource not found",
            "unauthorized": "Console API authorization failed (log in again)",
            "forbidden": "Console API refused the request",
            "invalid_response": "Console API returned an unexpected response",
            "request_failed": "Console API request failed",
            "validation": "Console API rejected the submitted data",
        }
        message = message_by_reason.get(reason, "Console API call failed")
        if path:
            message = f"{message}: {path}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)

    @property
    def is_transient(self) -> bool:
        return self.reason == "request_failed"


def _log(message: str) -> None:
    from .runtime import get_verbose_logging

    if get_verbose_logging():
        print(message, file=sys.stderr, flush=True)


@lru_cache(maxsize=1)
def _load_dotenv() -> None:
    try:
        from dotenv import find_dotenv, load_dotenv

        env_path = find_dotenv(usecwd=True)
        if env_path:
            load_dotenv(env_path, override=False)
    except Exception:
        return


def _api_base() -> str:
    _load_dotenv()
    return (
        (os.environ.get("RELAYCONSOLE_API_BASE") or _DEFAULT_API_BASE)
        .strip()
        .rstrip("/")
    )


def _api_timeout_seconds() -> float:
    raw = (os.environ.get("RELAYCONSOLE_API_TIMEOUT") or "").strip()
    if not raw:
        return 30.0
    try:
        return max(1.0, float(raw))
    except ValueError:
        return 30.0


def _api_max_attempts() -> int:
    raw = (os.environ.get("RELAYCONSOLE_API_MAX_ATTEMPTS") or "").strip()
    if not raw:
        return 3
    try:
        return max(1, int(raw))
    except ValueError:
        return 3


def _retry_delay_seconds(attempt: int) -> float:
    base = min(10.0, 0.5 * (2 ** max(0, attempt - 1)))
    return base + random.uniform(0.0, 0.25)


def _retry_after_seconds(resp: object, attempt: int) -> float:
    headers = getattr(resp, "headers", None) or {}
    retry_after_raw = headers.get("Retry-After")
    if retry_after_raw:
        try:
            return max(0.0, float(retry_after_raw))
        except ValueError:
            pass
    return _retry_delay_seconds(attempt)


def _response_message(response: Any) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict):
        for key in ("message", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return None


@dataclass(frozen=True)
class ClientSettings:
    api_base: str
    auth_token: str | None
    timeout: float
    max_attempts: int

    @classmethod
    def from_env(cls, *, api_base: str | None = None) -> ClientSettings:
        _load_dotenv()
        token = (os.environ.get("RELAYCONSOLE_AUTH_TOKEN") or "").strip() or None
        return cls(
            api_base=(api_base or _api_base()).rstrip("/"),
            auth_token=token,
            timeout=_api_timeout_seconds(),
            max_attempts=_api_max_attempts(),
        )


class ConsoleClient:
    """HTTP client for the relay bot's configuration API."""

    def __init__(self, settings: ClientSettings | None = None) -> None:
        self.settings = settings or ClientSettings.from_env()

    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": "relayconsole",
        }

    def _cookies(self) -> dict[str, str]:
        if not self.settings.auth_token:
            return {}
        return {"auth_token": self.settings.auth_token}

    def _check_status(self, response: Any, path: str) -> None:
        status = response.status_code
        if status == 404:
            raise ConsoleAPIError("not_found", path=path, status=status)
        if status == 401:
            raise ConsoleAPIError("unauthorized", path=path, status=status)
        if status == 403:
            raise ConsoleAPIError("forbidden", path=path, status=status)

    def _decode(self, response: Any, path: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ConsoleAPIError(
                "invalid_response", path=path, status=response.status_code
            ) from exc

    def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.settings.api_base}{path}"
        max_attempts = self.settings.max_attempts

        last_exc: Exception | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                response = requests.get(
                    url,
                    headers=self._headers(),
                    cookies=self._cookies(),
                    params=params,
                    timeout=self.settings.timeout,
                )
            except requests.RequestException as exc:
                last_exc = exc
                if attempt >= max_attempts:
                    break
                wait = _retry_delay_seconds(attempt)
                _log(
                    f"  Console request failed ({type(exc).__name__}); retrying in {wait:.1f}s "
                    f"(attempt {attempt}/{max_attempts})"
                )
                time.sleep(wait)
                continue

            self._check_status(response, path)

            if response.status_code in _TRANSIENT_STATUSES:
                if attempt < max_attempts:
                    wait = _retry_after_seconds(response, attempt)
                    _log(
                        f"  Console API returned {response.status_code}; retrying in {wait:.1f}s "
                        f"(attempt {attempt}/{max_attempts})"
                    )
                    time.sleep(wait)
                    continue
                raise ConsoleAPIError(
                    "request_failed",
                    path=path,
                    status=response.status_code,
                    detail=_response_message(response),
                )

            if response.status_code >= 400:
                raise ConsoleAPIError(
                    "request_failed",
                    path=path,
                    status=response.status_code,
                    detail=_response_message(response),
                )
            return self._decode(response, path)

        raise ConsoleAPIError(
            "request_failed",
            path=path,
            detail=type(last_exc).__name__ if last_exc is not None else None,
        ) from last_exc

    def send(self, method: str, path: str, body: Any = None) -> Any:
        url = f"{self.settings.api_base}{path}"
        sender = requests.delete if method == "DELETE" else requests.post
        kwargs: dict[str, Any] = {
            "headers": self._headers(),
            "cookies": self._cookies(),
            "timeout": self.settings.timeout,
        }
        if body is not None:
            kwargs["json"] = body
        try:
            response = sender(url, **kwargs)
        except requests.RequestException as exc:
            raise ConsoleAPIError(
                "request_failed", path=path, detail=type(exc).__name__
            ) from exc

        self._check_status(response, path)
        if response.status_code == 400:
            payload = self._decode(response, path)
            if isinstance(payload, dict) and payload.get("errors"):
                return payload
            raise ConsoleAPIError(
                "validation",
                path=path,
                status=400,
                detail=_response_message(response),
            )
        if response.status_code >= 400:
            raise ConsoleAPIError(
                "request_failed",
                path=path,
                status=response.status_code,
                detail=_response_message(response),
            )
        return self._decode(response, path)

    # collaborator contract

    def fetch_directory_records(self, directory: str) -> tuple[list[IdentityRecord], bool]:
        """Return ``(records, fetched_realtime)`` for one directory."""
        try:
            path, list_key = _DIRECTORY_ENDPOINTS[directory]
        except KeyError:
            raise ValueError(f"Unknown directory: {directory!r}") from None
        payload = self.get(path)
        if not isinstance(payload, dict) or not payload.get("success"):
            detail = payload.get("message") if isinstance(payload, dict) else None
            raise ConsoleAPIError("request_failed", path=path, detail=detail)
        raw_records = payload.get(list_key)
        if not isinstance(raw_records, list):
            raise ConsoleAPIError("invalid_response", path=path)
        parse = (
            IdentityRecord.from_discord_member
            if directory == DISCORD_DIRECTORY
            else IdentityRecord.from_jellyseerr_user
        )
        records = [
            record
            for record in (parse(item) for item in raw_records if isinstance(item, dict))
            if record is not None
        ]
        return records, bool(payload.get("fetchedRealtime", True))

    def fetch_channels_for_guild(self, guild_id: str) -> list[Channel]:
        path = f"/api/discord/channels/{quote(guild_id, safe='')}"
        payload = self.get(path)
        if not isinstance(payload, dict) or not payload.get("success"):
            raise ConsoleAPIError("request_failed", path=path)
        channels = payload.get("channels")
        if not isinstance(channels, list):
            raise ConsoleAPIError("invalid_response", path=path)
        return [ch for ch in (Channel.from_payload(item) for item in channels) if ch]

    def load_libraries(self, url: str, api_key: str) -> list[Library]:
        path = "/api/jellyfin-libraries"
        payload = self.send("POST", path, {"url": url, "apiKey": api_key})
        if not isinstance(payload, dict) or not payload.get("success"):
            detail = payload.get("message") if isinstance(payload, dict) else None
            raise ConsoleAPIError("request_failed", path=path, detail=detail)
        libraries = payload.get("libraries") or []
        if not isinstance(libraries, list):
            raise ConsoleAPIError("invalid_response", path=path)
        return [lib for lib in (Library.from_payload(item) for item in libraries) if lib]

    def load_mappings(self) -> list[IdentityLink]:
        path = "/api/user-mappings"
        payload = self.get(path)
        if not isinstance(payload, list):
            raise ConsoleAPIError("invalid_response", path=path)
        return [link for link in (IdentityLink.from_payload(item) for item in payload) if link]

    def upsert_mapping(self, link: IdentityLink) -> ApiResult:
        payload = self.send("POST", "/api/user-mappings", link.to_payload())
        return _api_result(payload)

    def delete_mapping(self, primary_id: str) -> ApiResult:
        path = f"/api/user-mappings/{quote(primary_id, safe='')}"
        payload = self.send("DELETE", path)
        return _api_result(payload)

    def load_config(self) -> dict[str, Any]:
        path = "/api/config"
        payload = self.get(path)
        if not isinstance(payload, dict):
            raise ConsoleAPIError("invalid_response", path=path)
        return payload

    def save_config(self, document: dict[str, Any]) -> SaveResult:
        payload = self.send("POST", "/api/save-config", document)
        if not isinstance(payload, dict):
            return SaveResult(success=True)
        errors = payload.get("errors")
        if isinstance(errors, list) and errors:
            return SaveResult(
                success=False,
                message=payload.get("message"),
                errors=tuple(
                    FieldError(
                        field=str(item.get("field") or ""),
                        message=str(item.get("message") or ""),
                    )
                    for item in errors
                    if isinstance(item, dict)
                ),
            )
        success = payload.get("success", True) is not False
        return SaveResult(
            success=success,
            message=payload.get("message") or payload.get("error"),
        )


def _api_result(payload: Any) -> ApiResult:
    if not isinstance(payload, dict):
        return ApiResult(success=False, message="Unexpected response")
    return ApiResult(
        success=bool(payload.get("success")),
        message=payload.get("message"),
        data=payload,
    )
