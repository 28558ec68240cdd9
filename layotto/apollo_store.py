"""Configuration store backed by Apollo: reads through a repository, writes through the open API."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import replace
from typing import Any, Optional

import requests

from layotto.apollo_common import (
    COMMIT_URL_TPL,
    CONFIG_KEY_APP_ID,
    CREATE_NAMESPACE_URL_TPL,
    DEFAULT_DELIMITER,
    DEFAULT_ENV,
    DEFAULT_IS_BACKUP_CONFIG,
    DEFAULT_NAMESPACE,
    DEFAULT_TAGS_NAMESPACE,
    DELETE_URL_TPL,
    NO_CONFIG_MESSAGE,
    SET_URL_TPL,
    ApolloConfigError,
    config_missing_field,
    params_missing_field,
)
from layotto.apollo_health import get_liveness_indicator, get_readiness_indicator
from layotto.apollo_listener import ChangeListener, RepoForListener
from layotto.apollo_repository import HttpRepository, RepoConfig, Repository
from layotto.configstore import (
    ConfigurationItem,
    DeleteRequest,
    GetRequest,
    ResponseChannel,
    SetRequest,
    Store,
    StoreConfig,
    SubscribeRequest,
)

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_VALUES = {"0", "f", "F", "FALSE", "false", "False"}


def _parse_bool(text: str) -> bool:
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean value: {text!r}")


def _to_json(body: dict[str, str]) -> str:
    return json.dumps(body, sort_keys=True, separators=(",", ":"))


class ApolloConfigStore(Store, RepoForListener):
    """A configuration store on top of an Apollo config service.

    Items are read from ``kv_repo``; their tags are kept as JSON in a
    separate namespace read through ``tags_repo``. Writes, deletes and
    releases go to the Apollo open API.
    """

    def __init__(
        self,
        kv_repo: Optional[Repository] = None,
        tags_repo: Optional[Repository] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ) -> None:
        self.tags_namespace = DEFAULT_TAGS_NAMESPACE
        self.delimiter = DEFAULT_DELIMITER
        self.env = DEFAULT_ENV
        self._kv_repo = kv_repo if kv_repo is not None else HttpRepository()
        self._tags_repo = tags_repo if tags_repo is not None else HttpRepository()
        self._session = session if session is not None else requests.Session()
        self._timeout = timeout
        self._open_api_token = ""
        self._open_api_address = ""
        self._open_api_user = ""
        self._kv_config: Optional[RepoConfig] = None
        self._tags_config: Optional[RepoConfig] = None
        self._listener: Optional[ChangeListener] = None

    # -- Store interface -------------------------------------------------

    def default_group(self) -> str:
        return "application"

    def default_label(self) -> str:
        return ""

    def init(self, config: Optional[StoreConfig]) -> None:
        """Validate the configuration and connect; health indicators record the outcome."""
        try:
            self._do_init(config)
        except Exception as exc:
            get_readiness_indicator().report_error(str(exc))
            get_liveness_indicator().report_error(str(exc))
            raise
        finally:
            get_readiness_indicator().set_started()
            get_liveness_indicator().set_started()

    def get(self, request: GetRequest) -> list[ConfigurationItem]:
        group = request.group
        if request.keys and not group:
            group = DEFAULT_NAMESPACE
        if not group:
            return self._get_all_with_app_id()
        if not request.keys:
            return self._get_all_with_namespace(group)
        return self._get_keys(group, request.keys, request.label)

    def set(self, request: SetRequest) -> None:
        if not request.app_id:
            raise params_missing_field("AppId")
        if not request.items:
            raise params_missing_field("Items")
        kv_config = self._require_kv_config()
        tags_config = self._require_tags_config()
        groups: dict[str, None] = {}
        for item in request.items:
            self._set_item(request.app_id, item)
            groups[item.group] = None
            if not item.tags:
                continue
            tag_item = ConfigurationItem(
                key=self.concatenate_key_for_tag(item.group, item.key),
                group=self.tags_namespace,
                label=item.label,
                content=_to_json(item.tags),
            )
            try:
                self._set_item(request.app_id, tag_item)
            except requests.RequestException as exc:
                logger.error("error when saving tags of %s: %s", item.key, exc)
        self._commit(self.env, request.app_id, tags_config.cluster, self.tags_namespace)
        for group in groups:
            self._commit(self.env, request.app_id, kv_config.cluster, group)

    def delete(self, request: DeleteRequest) -> None:
        if not request.app_id:
            raise params_missing_field("AppId")
        if not request.keys:
            raise params_missing_field("Keys")
        kv_config = self._require_kv_config()
        tags_config = self._require_tags_config()
        group = request.group or DEFAULT_NAMESPACE
        for key in request.keys:
            self._delete_item(
                self.env, request.app_id, kv_config.cluster, group, key, request.label
            )
            self._delete_item(
                self.env,
                request.app_id,
                kv_config.cluster,
                self.tags_namespace,
                self.concatenate_key_for_tag(group, key),
                request.label,
            )
        self._commit(self.env, request.app_id, tags_config.cluster, self.tags_namespace)
        self._commit(self.env, request.app_id, kv_config.cluster, group)

    def subscribe(self, request: SubscribeRequest, channel: ResponseChannel) -> None:
        listener = self._require_listener()
        group = request.group
        if request.keys and not group:
            group = DEFAULT_NAMESPACE
        if not request.keys and not group:
            for namespace in self._require_kv_config().namespace_name.split(","):
                if namespace:
                    listener.add_by_topic(namespace, "", channel)
            return
        if not request.keys:
            listener.add_by_topic(group, "", channel)
            return
        for key in request.keys:
            listener.add_by_topic(group, self.concatenate_key(key, request.label), channel)

    def stop_subscribe(self) -> None:
        self._require_listener().reset()

    # -- what the change listener needs ----------------------------------

    def app_id(self) -> str:
        return self._kv_config.app_id if self._kv_config is not None else ""

    def split_key(self, key_with_label: str) -> tuple[str, str]:
        if not key_with_label:
            return "", ""
        parts = key_with_label.split(self.delimiter)
        if len(parts) < 2:
            return parts[0], ""
        return parts[0], parts[1]

    def get_all_tags(self, group: str, key_with_label: str) -> dict[str, str]:
        """Return the tags of an item; raise ValueError if they are not a JSON object of strings."""
        tag_key = self.concatenate_key_for_tag(group, key_with_label)
        try:
            value = self._tags_repo.get(self.tags_namespace, tag_key)
        except Exception:
            return {}
        if value is None or value == "":
            return {}
        decoded = json.loads(str(value))
        if not isinstance(decoded, dict) or not all(
            isinstance(tag, str) for tag in decoded.values()
        ):
            raise ValueError(f"tags of {tag_key} are not an object of strings")
        return decoded

    def concatenate_key(self, key: str, label: str) -> str:
        if not label:
            return key
        return f"{key}{self.delimiter}{label}"

    def concatenate_key_for_tag(self, group: str, key_with_label: str) -> str:
        if not key_with_label:
            return ""
        return f"{group}{self.delimiter}{key_with_label}"

    # -- initialisation --------------------------------------------------

    def _do_init(self, config: Optional[StoreConfig]) -> None:
        if config is None:
            raise ApolloConfigError(NO_CONFIG_MESSAGE)
        metadata = config.metadata
        if not metadata:
            raise config_missing_field("metadata")
        if not config.address or not config.address[0]:
            raise config_missing_field("address")
        addr = config.address[0]
        is_backup_config = DEFAULT_IS_BACKUP_CONFIG
        backup_text = metadata.get("is_backup_config", "")
        if backup_text:
            is_backup_config = _parse_bool(backup_text)
        app_id = metadata.get(CONFIG_KEY_APP_ID, "")
        if not app_id:
            raise config_missing_field(CONFIG_KEY_APP_ID)
        self._open_api_token = metadata.get("open_api_token", "")
        if not self._open_api_token:
            raise config_missing_field("open_api_token")
        self._open_api_address = metadata.get("open_api_address", "")
        if not self._open_api_address:
            raise config_missing_field("open_api_address")
        self._open_api_user = metadata.get("open_api_user", "")
        if not self._open_api_user:
            raise config_missing_field("open_api_user")

        kv_config = RepoConfig(
            addr=addr,
            app_id=app_id,
            env=self.env,
            cluster=metadata.get("cluster", ""),
            namespace_name=metadata.get("namespace_name", ""),
            is_backup_config=is_backup_config,
            secret=metadata.get("secret", ""),
        )
        self._kv_config = kv_config
        self._kv_repo.set_config(kv_config)
        self._kv_repo.connect()

        tags_config = replace(kv_config, namespace_name=self.tags_namespace)
        self._tags_config = tags_config
        self._init_tags_client(tags_config)

        listener = ChangeListener(self)
        self._listener = listener
        self._kv_repo.add_change_listener(listener)

    def _init_tags_client(self, tags_config: RepoConfig) -> None:
        try:
            self._create_namespace(
                self.env, tags_config.app_id, tags_config.cluster, self.tags_namespace
            )
        except requests.RequestException as exc:
            logger.error("error when creating the tags namespace: %s", exc)
        self._tags_repo.set_config(tags_config)
        self._tags_repo.connect()

    def _require_kv_config(self) -> RepoConfig:
        if self._kv_config is None:
            raise RuntimeError("store is not initialised")
        return self._kv_config

    def _require_tags_config(self) -> RepoConfig:
        if self._tags_config is None:
            raise RuntimeError("store is not initialised")
        return self._tags_config

    def _require_listener(self) -> ChangeListener:
        if self._listener is None:
            raise RuntimeError("store is not initialised")
        return self._listener

    # -- queries ---------------------------------------------------------

    def _get_keys(
        self, group: str, keys: list[str], label: str
    ) -> list[ConfigurationItem]:
        logger.debug("getKeys start.namespace : %s, keys : %s, label : %s", group, keys, label)
        suffix = f"{self.delimiter}{label}" if label else ""
        result = []
        for key in keys:
            key_with_label = key + suffix
            try:
                value = self._kv_repo.get(group, key_with_label)
            except Exception as exc:
                logger.error("error when querying configuration :%s", exc)
                continue
            item = ConfigurationItem(key=key, group=group, label=label, content=str(value))
            try:
                item.tags = self.get_all_tags(group, key_with_label)
            except ValueError as exc:
                logger.error("error when querying tags :%s", exc)
                item.tags = {}
            result.append(item)
        return result

    def _get_all_with_app_id(self) -> list[ConfigurationItem]:
        namespace_name = self._require_kv_config().namespace_name
        logger.debug("getAllWithAppId start.namespace:%s", namespace_name)
        result: list[ConfigurationItem] = []
        for namespace in namespace_name.split(","):
            result.extend(self._get_all_with_namespace(namespace))
        return result

    def _get_all_with_namespace(self, group: str) -> list[ConfigurationItem]:
        logger.debug("getAllWithNamespace start.namespace:%s", group)
        result = []
        for key, value in self._kv_repo.items(group):
            item = ConfigurationItem(group=group)
            if not key:
                logger.error(
                    "find configuration item with blank key under namespace:%s", group
                )
            else:
                parts = key.split(DEFAULT_DELIMITER)
                item.key = parts[0]
                if len(parts) > 1:
                    item.label = parts[1]
                try:
                    item.tags = self.get_all_tags(group, key)
                except ValueError as exc:
                    logger.error("error when querying tags :%s", exc)
            item.content = str(value)
            result.append(item)
        return result

    # -- open API --------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": self._open_api_token,
            "Content-Type": "application/json;charset=UTF-8",
        }

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        response = self._session.request(
            method, url, headers=self._headers(), timeout=self._timeout, **kwargs
        )
        response.close()
        return response

    def _set_item(self, app_id: str, item: ConfigurationItem) -> None:
        key_with_label = self.concatenate_key(item.key, item.label)
        url = SET_URL_TPL.format(
            self._open_api_address,
            self.env,
            app_id,
            self._require_kv_config().cluster,
            item.group,
            key_with_label,
        )
        body = {
            "key": key_with_label,
            "value": item.content,
            "dataChangeCreatedBy": self._open_api_user,
            "dataChangeLastModifiedBy": self._open_api_user,
        }
        self._request(
            "PUT", url, params={"createIfNotExists": "true"}, data=_to_json(body)
        )

    def _commit(self, env: str, app_id: str, cluster: str, namespace: str) -> None:
        url = COMMIT_URL_TPL.format(self._open_api_address, env, app_id, cluster, namespace)
        body = {
            "releaseTitle": time.strftime("%m-%d-%Y"),
            "releasedBy": self._open_api_user,
        }
        self._request("POST", url, data=_to_json(body))

    def _delete_item(
        self, env: str, app_id: str, cluster: str, group: str, key: str, label: str
    ) -> None:
        key_with_label = self.concatenate_key(key, label)
        url = DELETE_URL_TPL.format(
            self._open_api_address, env, app_id, cluster, group, key_with_label
        )
        self._request(
            "DELETE", url, params={"key": key_with_label, "operator": self._open_api_user}
        )

    def _create_namespace(
        self, env: str, app_id: str, cluster: str, namespace: str
    ) -> None:
        url = CREATE_NAMESPACE_URL_TPL.format(self._open_api_address, app_id)
        body = {
            "name": namespace,
            "appId": app_id,
            "format": "properties",
            "isPublic": "false",
            "dataChangeCreatedBy": self._open_api_user,
        }
        response = self._request("POST", url, data=_to_json(body))
        if response.status_code == 200:
            self._commit(env, app_id, cluster, namespace)