"""HTTP client for a SupaControl management server."""
from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any
from urllib.parse import quote

import requests

from ..errors import AlreadyExistsError, ExternalCommandFailure, NotFoundError

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
API_PREFIX = "/api/v1"


class ControlPlaneClient:
    """Thin wrapper over the server's ``/api/v1`` endpoints.

    Every request carries ``Authorization: Bearer <api_key>``. Error bodies of
    the form ``{"error": ..., "message": ...}`` are surfaced as the exception
    message; 404 and 409 map onto :class:`NotFoundError` and
    :class:`AlreadyExistsError`.
    """

    def __init__(
        self,
        server_url: str,
        api_key: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    # ------------------------------------------------------------------
    def login_test(self) -> None:
        """Confirm that the API key is accepted by the server."""
        payload = self._request_json("GET", "/auth/me")
        if not isinstance(payload, Mapping) or payload.get("authenticated") is not True:
            raise ExternalCommandFailure(
                "GET /auth/me",
                "authentication failed",
                remediation="Check the API key configured for this context.",
            )

    def list_instances(self) -> list[dict[str, Any]]:
        """Return every instance known to the server."""
        payload = self._request_json("GET", "/instances")
        if isinstance(payload, Mapping):
            payload = payload.get("instances") or []
        if not isinstance(payload, list):
            raise ExternalCommandFailure("GET /instances", "unexpected response body")
        return [dict(item) for item in payload if isinstance(item, Mapping)]

    def get_instance(self, name: str) -> dict[str, Any]:
        """Return a single instance record."""
        return self._instance_record("GET", f"/instances/{_segment(name)}")

    def create_instance(self, name: str) -> dict[str, Any]:
        """Ask the server to create *name* and return the new record."""
        return self._instance_record("POST", "/instances", json={"name": name}, expected=(200, 201))

    def delete_instance(self, name: str) -> None:
        """Delete *name* on the server."""
        self._request("DELETE", f"/instances/{_segment(name)}", expected=(200, 204))

    def start_instance(self, name: str) -> None:
        """Start *name*."""
        self._instance_action(name, "start")

    def stop_instance(self, name: str) -> None:
        """Stop *name*."""
        self._instance_action(name, "stop")

    def restart_instance(self, name: str) -> None:
        """Restart *name*."""
        self._instance_action(name, "restart")

    def get_logs(self, name: str, lines: int) -> str:
        """Return the last *lines* log lines of *name* as plain text."""
        response = self._request(
            "GET",
            f"/instances/{_segment(name)}/logs",
            params={"lines": lines},
        )
        return response.text

    # ------------------------------------------------------------------
    def _instance_action(self, name: str, action: str) -> None:
        self._request("POST", f"/instances/{_segment(name)}/{action}", expected=(200, 202))

    def _instance_record(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        payload = self._request_json(method, path, **kwargs)
        if not isinstance(payload, Mapping):
            raise ExternalCommandFailure(f"{method} {path}", "unexpected response body")
        return dict(payload)

    def _request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise ExternalCommandFailure(
                f"{method} {path}",
                f"failed to parse response: {exc}",
            ) from exc

    def _request(
        self,
        method: str,
        path: str,
        *,
        expected: Sequence[int] = (200,),
        json: Mapping[str, Any] | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> requests.Response:
        url = f"{self.server_url}{API_PREFIX}{path}"
        operation = f"{method} {path}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }
        LOGGER.debug("%s %s", method, url)
        try:
            response = self.session.request(
                method,
                url,
                headers=headers,
                json=json,
                params=params,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as exc:
            raise ExternalCommandFailure(
                operation,
                f"timed out after {self.timeout:g}s",
                remediation=f"Check that {self.server_url} is reachable.",
            ) from exc
        except requests.exceptions.RequestException as exc:
            raise ExternalCommandFailure(
                operation,
                f"request failed: {exc}",
                remediation=f"Check that {self.server_url} is reachable.",
            ) from exc

        if response.status_code in expected:
            return response

        message = _error_message(response)
        if response.status_code == 404:
            raise NotFoundError(message)
        if response.status_code == 409:
            raise AlreadyExistsError(message)
        remediation = None
        if response.status_code in (401, 403):
            remediation = "Check the API key configured for this context."
        raise ExternalCommandFailure(
            operation,
            message,
            returncode=response.status_code,
            output=response.text,
            remediation=remediation,
        )


def _segment(name: str) -> str:
    return quote(name, safe="")


def _error_message(response: requests.Response) -> str:
    """Extract ``message`` or ``error`` from an error body, falling back to the status."""
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return f"HTTP {response.status_code}: {text}" if text else f"HTTP {response.status_code}"
    if isinstance(body, Mapping):
        for key in ("message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return f"HTTP {response.status_code}: request failed"


__all__ = ["API_PREFIX", "ControlPlaneClient", "DEFAULT_TIMEOUT"]
