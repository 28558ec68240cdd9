"""Distributed lock kept in etcd: a key per resource, bound to a lease."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

import requests

from layotto.etcd_gateway import EtcdError, EtcdGatewayClient
from layotto.lock import (
    Feature,
    LockMetadata,
    LockStatus,
    LockStore,
    TryLockRequest,
    TryLockResponse,
    UnlockRequest,
    UnlockResponse,
)

DEFAULT_DIAL_TIMEOUT = 5
DEFAULT_KEY_PREFIX = "/layotto/"

PREFIX_KEY = "keyPrefix"
USERNAME_KEY = "username"
PASSWORD_KEY = "password"
DIAL_TIMEOUT_KEY = "dialTimeout"
ENDPOINTS_KEY = "endpoints"
TLS_CERT_PATH_KEY = "tlsCert"
TLS_CERT_KEY_PATH_KEY = "tlsCertKey"
TLS_CA_PATH_KEY = "tlsCa"

_INTEGER = re.compile(r"[+-]?\d+")


@dataclass
class EtcdLockMetadata:
    """Connection settings of an etcd lock store."""

    key_prefix: str = DEFAULT_KEY_PREFIX
    dial_timeout: int = DEFAULT_DIAL_TIMEOUT
    endpoints: list[str] = field(default_factory=list)
    username: str = ""
    password: str = ""
    tls_ca: str = ""
    tls_cert: str = ""
    tls_cert_key: str = ""


def parse_etcd_metadata(metadata: LockMetadata) -> EtcdLockMetadata:
    """Read the lock settings from metadata properties; raise ValueError if invalid."""
    properties = metadata.properties
    endpoints = properties.get(ENDPOINTS_KEY, "")
    if not endpoints:
        raise ValueError("etcd lock error: missing endpoints address")
    result = EtcdLockMetadata(endpoints=endpoints.split(";"))
    dial_timeout = properties.get(DIAL_TIMEOUT_KEY, "")
    if dial_timeout:
        if not _INTEGER.fullmatch(dial_timeout):
            raise ValueError(f"etcd lock error: incorrect dialTimeout value {dial_timeout}")
        result.dial_timeout = int(dial_timeout)
    result.key_prefix = properties.get(PREFIX_KEY, "") or DEFAULT_KEY_PREFIX
    result.username = properties.get(USERNAME_KEY, "")
    result.password = properties.get(PASSWORD_KEY, "")
    result.tls_ca = properties.get(TLS_CA_PATH_KEY, "")
    result.tls_cert = properties.get(TLS_CERT_PATH_KEY, "")
    result.tls_cert_key = properties.get(TLS_CERT_KEY_PATH_KEY, "")
    return result


class EtcdLock(LockStore):
    """Locks a resource by creating its key, attached to a lease, only if absent."""

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._logger = logger or logging.getLogger(__name__)
        self._session = session
        self._features: list[Feature] = []
        self._client: Optional[EtcdGatewayClient] = None
        self.metadata = EtcdLockMetadata()

    def init(self, metadata: LockMetadata) -> None:
        meta = parse_etcd_metadata(metadata)
        self.metadata = meta
        client = EtcdGatewayClient(
            meta.endpoints,
            timeout=meta.dial_timeout,
            username=meta.username,
            password=meta.password,
            tls_ca=meta.tls_ca,
            tls_cert=meta.tls_cert,
            tls_cert_key=meta.tls_cert_key,
            session=self._session,
        )
        try:
            client.ping()
        except EtcdError as exc:
            client.close()
            raise EtcdError(
                f"etcd lock error: connect to etcd timeoout {meta.endpoints}"
            ) from exc
        self._client = client

    def features(self) -> list[Feature]:
        return self._features

    def _require_client(self) -> EtcdGatewayClient:
        if self._client is None:
            raise RuntimeError("lock store is not initialised")
        return self._client

    def _key(self, resource_id: str) -> str:
        return f"{self.metadata.key_prefix}{resource_id}"

    def try_lock(self, request: TryLockRequest) -> TryLockResponse:
        client = self._require_client()
        try:
            lease = client.grant_lease(request.expire)
        except EtcdError as exc:
            raise EtcdError(
                f"[etcdLock]: Create new lease returned error: {exc}.ResourceId: {request.resource_id}"
            ) from exc
        try:
            acquired = client.put_if_absent(self._key(request.resource_id), request.lock_owner, lease)
        except EtcdError as exc:
            raise EtcdError(
                f"[etcdLock]: Creat lock returned error: {exc}.ResourceId: {request.resource_id}"
            ) from exc
        return TryLockResponse(success=acquired)

    def unlock(self, request: UnlockRequest) -> UnlockResponse:
        client = self._require_client()
        try:
            deleted, present = client.delete_if_value(
                self._key(request.resource_id), request.lock_owner
            )
        except EtcdError as exc:
            raise EtcdError(
                f"[etcdLock]: Unlock returned error: {exc}.ResourceId: {request.resource_id}"
            ) from exc
        if deleted:
            return UnlockResponse(status=LockStatus.SUCCESS)
        if not present:
            return UnlockResponse(status=LockStatus.LOCK_UNEXIST)
        return UnlockResponse(status=LockStatus.LOCK_BELONG_TO_OTHERS)

    def close(self) -> None:
        """Release the connection to etcd."""
        if self._client is not None:
            self._client.close()
            self._client = None