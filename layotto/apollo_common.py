"""Constants and errors shared by the Apollo configuration store."""

from __future__ import annotations

STORE_NAME = "apollo"
DEFAULT_TAGS_NAMESPACE = "sidecar_config_tags"
DEFAULT_DELIMITER = "@$"
DEFAULT_NAMESPACE = "application"
DEFAULT_ENV = "DEV"
DEFAULT_TIMEOUT_WHEN_RESPONSE = 2000  # milliseconds
DEFAULT_IS_BACKUP_CONFIG = True
CONFIG_KEY_APP_ID = "app_id"

SET_URL_TPL = "{}/openapi/v1/envs/{}/apps/{}/clusters/{}/namespaces/{}/items/{}"
COMMIT_URL_TPL = "{}/openapi/v1/envs/{}/apps/{}/clusters/{}/namespaces/{}/releases"
DELETE_URL_TPL = "{}/openapi/v1/envs/{}/apps/{}/clusters/{}/namespaces/{}/items/{}"
CREATE_NAMESPACE_URL_TPL = "{}/openapi/v1/apps/{}/appnamespaces"

NO_CONFIG_MESSAGE = "configuration illegal:no config data"


class ApolloConfigError(ValueError):
    """Raised when a configuration or a request lacks something required."""


def config_missing_field(field: str) -> ApolloConfigError:
    """Return the error for a configuration that lacks ``field``."""
    return ApolloConfigError(f"configuration illegal:no {field}")


def params_missing_field(field: str) -> ApolloConfigError:
    """Return the error for request parameters that lack ``field``."""
    return ApolloConfigError(f"params illegal:no {field}")