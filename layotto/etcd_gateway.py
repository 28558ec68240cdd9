"""A small etcd v3 client speaking to the JSON gateway of an etcd server."""

from __future__ import annotations

import base64
import json
import logging
import ssl
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

import requests

logger = logging.getLogger(__name__)

_AUTHENTICATE_PATH = "/v3/auth/authenticate"


class EtcdError(Exception):
    """Raised when etcd cannot be reached or refuses a request."""


@dataclass
class KeyValue:
    """A key and its value as stored in etcd."""

    key: str
    value: str = ""
    create_revision: int = 0
    mod_revision: int = 0
    version: int = 0
    lease: int = 0


@dataclass
class WatchEvent:
    """A change seen by a watch: ``event_type`` is "PUT" or "DELETE"."""

    event_type: str
    kv: KeyValue


def _encode(text: str | bytes) -> str:
    raw = text.encode() if isinstance(text, str) else text
    return base64.b64encode(raw).decode("ascii")


def _decode(text: str) -> str:
    return base64.b64decode(text).decode("utf-8", errors="replace")


def prefix_range_end(prefix: bytes) -> bytes:
    """Return the end of the key range holding every key that starts with ``prefix``."""
    stripped = prefix.rstrip(b"\xff")
    if not stripped:
        return b"\x00"
    return stripped[:-1] + bytes([stripped[-1] + 1])


def _prefix_range(prefix: str) -> dict[str, str]:
    return {"key": _encode(prefix), "range_end": _encode(prefix_range_end(prefix.encode()))}


def _key_value(data: dict[str, Any]) -> KeyValue:
    return KeyValue(
        key=_decode(data.get("key", "")),
        value=_decode(data.get("value", "")),
        create_revision=int(data.get("create_revision", 0)),
        mod_revision=int(data.get("mod_revision", 0)),
        version=int(data.get("version", 0)),
        lease=int(data.get("lease", 0)),
    )


def _watch_event(data: dict[str, Any]) -> WatchEvent:
    return WatchEvent(event_type=data.get("type", "PUT"), kv=_key_value(data.get("kv", {})))


def _base_url(endpoint: str, scheme: str) -> str:
    endpoint = endpoint.rstrip("/")
    if "://" in endpoint:
        return endpoint
    return f"{scheme}://{endpoint}"


def _error_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict):
        return str(data.get("error") or data.get("message") or response.text)
    return response.text


def _check_tls(tls_ca: str, tls_cert: str, tls_cert_key: str) -> None:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    try:
        context.load_cert_chain(tls_cert, tls_cert_key)
    except OSError as exc:
        raise EtcdError(
            f"error reading tls certificate, cert: {tls_cert}, certKey: {tls_cert_key}, err: {exc}"
        ) from exc
    if not Path(tls_ca).is_file():
        raise EtcdError(f"error reading tls ca {tls_ca}, err: not a file")
    try:
        context.load_verify_locations(cafile=tls_ca)
    except OSError as exc:
        raise EtcdError(f"error reading tls ca {tls_ca}, err: {exc}") from exc


class EtcdGatewayClient:
    """Reads and writes etcd through its HTTP/JSON gateway.

    Endpoints are tried in order until one answers.
    """

    def __init__(
        self,
        endpoints: Sequence[str],
        timeout: float = 5.0,
        username: str = "",
        password: str = "",
        tls_ca: str = "",
        tls_cert: str = "",
        tls_cert_key: str = "",
        session: Optional[requests.Session] = None,
    ) -> None:
        if not endpoints:
            raise EtcdError("etcdclient: no available endpoints")
        self._session = session if session is not None else requests.Session()
        use_tls = bool(tls_ca or tls_cert or tls_cert_key)
        if use_tls:
            _check_tls(tls_ca, tls_cert, tls_cert_key)
            self._session.cert = (tls_cert, tls_cert_key)
            self._session.verify = tls_ca
        scheme = "https" if use_tls else "http"
        self._endpoints = [_base_url(endpoint, scheme) for endpoint in endpoints]
        self._timeout = timeout
        self._username = username
        self._password = password
        self._token: Optional[str] = None
        self._token_lock = threading.Lock()
        self._closed = False

    # -- transport -------------------------------------------------------

    def _auth_headers(self, path: str) -> dict[str, str]:
        if not self._username or path == _AUTHENTICATE_PATH:
            return {}
        with self._token_lock:
            if self._token is None:
                data = self._call(
                    _AUTHENTICATE_PATH,
                    {"name": self._username, "password": self._password},
                )
                token = data.get("token")
                if not token:
                    raise EtcdError("authentication returned no token")
                self._token = str(token)
            return {"Authorization": self._token}

    def _post(self, path: str, body: dict[str, Any], stream: bool = False) -> requests.Response:
        if self._closed:
            raise EtcdError("client is closed")
        headers = self._auth_headers(path)
        timeout: Any = (self._timeout, None) if stream else self._timeout
        last_error: Optional[Exception] = None
        for base in self._endpoints:
            try:
                response = self._session.post(
                    base + path, json=body, headers=headers, timeout=timeout, stream=stream
                )
            except requests.RequestException as exc:
                last_error = exc
                continue
            if response.status_code != 200:
                message = _error_message(response)
                response.close()
                raise EtcdError(f"{path} failed with status {response.status_code}: {message}")
            return response
        raise EtcdError(f"cannot reach etcd at {', '.join(self._endpoints)}: {last_error}")

    def _call(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        response = self._post(path, body)
        try:
            data = response.json()
        except ValueError as exc:
            raise EtcdError(f"{path} returned a body that is not JSON") from exc
        finally:
            response.close()
        if not isinstance(data, dict):
            raise EtcdError(f"{path} returned an unexpected body")
        return data

    # -- operations ------------------------------------------------------

    def ping(self) -> None:
        """Read the key "ping" to check that etcd answers."""
        self._call("/v3/kv/range", {"key": _encode("ping")})

    def get_prefix(self, prefix: str) -> list[KeyValue]:
        """Return every key-value whose key starts with ``prefix``, in key order."""
        data = self._call("/v3/kv/range", _prefix_range(prefix))
        return [_key_value(item) for item in data.get("kvs", [])]

    def put(self, key: str, value: str, lease: int = 0) -> None:
        """Store ``value`` under ``key``, attached to ``lease`` when it is not 0."""
        body: dict[str, Any] = {"key": _encode(key), "value": _encode(value)}
        if lease:
            body["lease"] = lease
        self._call("/v3/kv/put", body)

    def delete_prefix(self, prefix: str) -> int:
        """Delete every key that starts with ``prefix`` and return how many went."""
        data = self._call("/v3/kv/deleterange", _prefix_range(prefix))
        return int(data.get("deleted", 0))

    def grant_lease(self, ttl: int) -> int:
        """Create a lease of ``ttl`` seconds and return its id."""
        data = self._call("/v3/lease/grant", {"TTL": ttl, "ID": 0})
        if data.get("error"):
            raise EtcdError(str(data["error"]))
        if "ID" not in data:
            raise EtcdError("lease grant returned no id")
        return int(data["ID"])

    def put_if_absent(self, key: str, value: str, lease: int = 0) -> bool:
        """Store ``value`` only if ``key`` does not exist; return whether it was stored."""
        put: dict[str, Any] = {"key": _encode(key), "value": _encode(value)}
        if lease:
            put["lease"] = lease
        body = {
            "compare": [
                {"key": _encode(key), "result": "EQUAL", "target": "CREATE", "create_revision": 0}
            ],
            "success": [{"request_put": put}],
            "failure": [{"request_range": {"key": _encode(key)}}],
        }
        return bool(self._call("/v3/kv/txn", body).get("succeeded", False))

    def delete_if_value(self, key: str, value: str) -> tuple[bool, bool]:
        """Delete ``key`` only if it holds ``value``.

        Returns (deleted, present): whether the key was deleted, and
        whether it existed at all.
        """
        body = {
            "compare": [
                {"key": _encode(key), "result": "EQUAL", "target": "VALUE", "value": _encode(value)}
            ],
            "success": [{"request_delete_range": {"key": _encode(key)}}],
            "failure": [{"request_range": {"key": _encode(key)}}],
        }
        data = self._call("/v3/kv/txn", body)
        if data.get("succeeded"):
            return True, True
        responses = data.get("responses") or [{}]
        kvs = responses[0].get("response_range", {}).get("kvs", [])
        return False, bool(kvs)

    def watch_prefix(
        self, prefix: str, stop: Optional[threading.Event] = None
    ) -> Iterator[list[WatchEvent]]:
        """Yield the events of every watch response on keys starting with ``prefix``.

        The first response, which confirms the watch, has no events.
        Setting ``stop`` ends the watch.
        """
        stop = stop if stop is not None else threading.Event()
        response = self._post("/v3/watch", {"create_request": _prefix_range(prefix)}, stream=True)
        done = threading.Event()

        def close_on_stop() -> None:
            while not done.is_set():
                if stop.wait(0.1):
                    response.close()
                    return

        threading.Thread(target=close_on_stop, daemon=True).start()
        try:
            for line in response.iter_lines():
                if stop.is_set():
                    return
                if not line:
                    continue
                message = json.loads(line)
                if message.get("error"):
                    raise EtcdError(f"watch failed: {message['error']}")
                result = message.get("result", {})
                if result.get("canceled"):
                    return
                yield [_watch_event(event) for event in result.get("events", [])]
        except EtcdError:
            raise
        except Exception as exc:
            if stop.is_set():
                return
            raise EtcdError(f"watch on {prefix} failed: {exc}") from exc
        finally:
            done.set()
            response.close()

    def close(self) -> None:
        """Release the connections; the client cannot be used afterwards."""
        self._closed = True
        self._session.close()