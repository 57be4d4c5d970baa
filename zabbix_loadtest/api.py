"""
Zabbix JSON-RPC client
======================

Minimal synchronous client for the Zabbix API. Each call is a single POST of
a JSON-RPC 2.0 envelope; there is no retry and no shared HTTP session, so one
client can be used from several worker threads at once.

Authentication is either a Bearer token header (Zabbix 6.4 and newer) or the
token in the envelope's ``auth`` field (older servers, session tokens).
"""

import itertools
import logging
from typing import Any, Dict, Optional

import requests

from .exceptions import TransportError, ZabbixAPIError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30

# Methods the API rejects when credentials are attached
ANONYMOUS_METHODS = ('apiinfo.version', 'user.login', 'user.checkAuthentication')

_request_ids = itertools.count(1)


class ZabbixAPIClient:
    def __init__(self, url: str, token: Optional[str] = None, auth_in_body: bool = False,
                 timeout: float = DEFAULT_TIMEOUT, verify: bool = True):
        self.url = url
        self.token = token
        self.auth_in_body = auth_in_body
        self.timeout = timeout
        self.verify = verify
        self._session_opened = False

    def __getattr__(self, name):
        if name.startswith('_'):
            raise AttributeError(name)
        return _APIObject(self, name)

    def _build_request(self, method: str, params: Any):
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(_request_ids),
        }
        headers = {"Content-Type": "application/json-rpc"}

        if self.token and method not in ANONYMOUS_METHODS:
            if self.auth_in_body:
                payload["auth"] = self.token
            else:
                headers["Authorization"] = f"Bearer {self.token}"

        return payload, headers

    def call(self, method: str, params: Any = None) -> Any:
        """Send one API request and return its ``result`` payload."""
        if params is None:
            params = {}
        payload, headers = self._build_request(method, params)
        logger.debug(f"Request {payload['id']}: {method} {params}")

        try:
            r = requests.post(self.url, headers=headers, json=payload,
                              timeout=self.timeout, verify=self.verify)
            r.raise_for_status()
        except requests.RequestException as e:
            raise TransportError(f"{method}: request to {self.url} failed: {e}") from e

        try:
            resp = r.json()
        except ValueError as e:
            raise TransportError(f"{method}: could not decode response: {e}") from e

        if not isinstance(resp, dict):
            raise TransportError(f"{method}: unexpected response envelope: {resp!r}")

        error = resp.get("error")
        if error is not None:
            if not isinstance(error, dict):
                raise TransportError(f"{method}: malformed error in response: {error!r}")
            raise ZabbixAPIError(
                error.get("code"),
                error.get("message", ""),
                error.get("data"),
                method=method,
            )

        if "result" not in resp:
            raise TransportError(f"{method}: response has neither result nor error")

        return resp["result"]

    def api_version(self) -> str:
        return self.call('apiinfo.version', [])

    def login(self, user: str, password: str) -> str:
        """Open a session with user/password and use its token from now on."""
        self.token = self.call('user.login', {"username": user, "password": password})
        self._session_opened = True
        logger.info(f"Logged in to {self.url} as {user}")
        return self.token

    def logout(self):
        if not self._session_opened:
            return
        try:
            self.call('user.logout', [])
        finally:
            self._session_opened = False
            self.token = None


class _APIObject:
    """Allows ``client.host.get(filter=...)`` style calls."""

    def __init__(self, client: ZabbixAPIClient, name: str):
        self._client = client
        self._name = name

    def __getattr__(self, method):
        def fn(*args, **kwargs):
            if args and kwargs:
                raise TypeError("Pass either positional or keyword parameters, not both")
            params: Any = args[0] if len(args) == 1 else (list(args) if args else kwargs)
            return self._client.call(f"{self._name}.{method}", params)
        return fn


def extract_ids(result: Dict[str, Any], key: str):
    """Return the id list of a ``*.create`` result, e.g. ``result["hostids"]``."""
    if not isinstance(result, dict) or not isinstance(result.get(key), list):
        return None
    return result[key]
