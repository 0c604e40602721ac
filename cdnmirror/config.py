# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Configuration for the mirror service.

Configuration is loaded from a YAML file.  The default location follows
the XDG Base Directory Specification:

    ``$XDG_CONFIG_HOME/cdnmirror/cdnmirror.yaml``
    (typically ``~/.config/cdnmirror/cdnmirror.yaml``)

``!env`` tags resolve values from environment variables.  ``.env`` files
are loaded first (see ``cdnmirror.dotenv_loader``).  When no config file
exists, a built-in mapping reads the classic environment variables
(``COS_BUCKET_NAME``, ``TENCENTCLOUD_SECRET_ID``, ...), so a bare
environment is enough to run the service.

The ``cos`` and ``cloud`` sections are optional at load time.  An
operation that needs one of them reports the missing fields when it runs,
without affecting the other endpoints.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar, overload
from urllib.parse import urlsplit

import yaml
from platformdirs import user_config_path

from cdnmirror.dotenv_loader import load_dotenv_once
from cdnmirror.errors import CdnMirrorError, SigningPreconditionError
from cdnmirror.logging import SecretFilter
from cdnmirror.signing.base import Credential
from cdnmirror.signing.cos import DEFAULT_TTL


logger = logging.getLogger(__name__)

#: Application name for XDG path resolution.
_APP_NAME = "cdnmirror"

_BOOL_TRUTHY = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSY = frozenset({"false", "0", "no", "off"})

DEFAULT_CDNJS_BASE_URL = "https://cdnjs.cloudflare.com/ajax/libs"
DEFAULT_CDNJS_API_URL = "https://api.cdnjs.com/libraries"


def get_config_path() -> Path:
    """Return the default config file path (XDG)."""
    return user_config_path(_APP_NAME) / "cdnmirror.yaml"


def get_dotenv_path() -> Path:
    """Return the default ``.env`` path inside the XDG config directory."""
    return user_config_path(_APP_NAME) / ".env"


class ConfigError(CdnMirrorError):
    """Invalid or incomplete configuration."""


# ---------------------------------------------------------------------------
# YAML tag placeholders
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)  # type: ignore[arg-type]
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


#: Used when no config file exists: the environment variables the
#: service has always been deployed with.
_ENV_DEFAULTS: dict[str, Any] = {
    "server": {"port": _EnvVar("PORT")},
    "cos": {
        "bucket": _EnvVar("COS_BUCKET_NAME"),
        "region": _EnvVar("COS_REGION"),
        "secret_id": _EnvVar("COS_SECRET_ID"),
        "secret_key": _EnvVar("COS_SECRET_KEY"),
        "custom_domain": _EnvVar("COS_CUSTOM_DOMAIN"),
        "lib_folder": _EnvVar("COS_LIB_FOLDER"),
    },
    "cloud": {
        "secret_id": _EnvVar("TENCENTCLOUD_SECRET_ID"),
        "secret_key": _EnvVar("TENCENTCLOUD_SECRET_KEY"),
    },
    "metrics": {"domain": _EnvVar("METRICS_DOMAIN")},
}


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------


def _coerce_bool(value: object) -> bool:
    """Coerce a value to bool, handling string representations."""
    if isinstance(value, bool):
        return value
    s = str(value).lower().strip()
    if s in _BOOL_TRUTHY:
        return True
    if s in _BOOL_FALSY:
        return False
    raise ConfigError(f"Cannot convert {value!r} to bool")


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None, or the env var is unset or empty.
    """
    if isinstance(value, _EnvVar):
        raw = os.environ.get(value.var_name)
        if not raw:
            return None
        return raw
    if value is None:
        return None
    return str(value)


_MISSING = object()

_T = TypeVar("_T")


@overload
def _resolve(value: object, coerce: type[_T], *, default: _T) -> _T: ...


@overload
def _resolve(value: object, coerce: type[_T]) -> _T | None: ...


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
) -> Any:
    """Resolve a YAML value, handling ``!env`` tags and type coercion.

    Args:
        value: Raw value from YAML (may be ``_EnvVar``, None, or a
            literal already parsed by PyYAML).
        coerce: Target type (``str``, ``int``, ``bool``).
        default: Default when the value is absent.

    Returns:
        The resolved, coerced value, or None when absent without default.

    Raises:
        ConfigError: If the value cannot be coerced.
    """
    if not isinstance(value, _EnvVar) and value is not None:
        if coerce is bool:
            return _coerce_bool(value)
        if isinstance(value, coerce):
            return value

    resolved = _raw_resolve(value)
    if resolved is None:
        if default is not _MISSING:
            return default
        return None

    if coerce is bool:
        return _coerce_bool(resolved)
    try:
        return coerce(resolved)
    except ValueError as e:
        raise ConfigError(
            f"Cannot convert {resolved!r} to {coerce.__name__}"
        ) from e


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a YAML mapping")
    return value


def _normalize_base_url(value: str) -> str:
    """Add an ``https://`` scheme when missing and drop trailing slashes."""
    value = value.strip().rstrip("/")
    if "://" not in value:
        value = f"https://{value}"
    return value


# ---------------------------------------------------------------------------
# Config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CosConfig:
    """Destination bucket and its public (CDN) domain.

    Attributes:
        bucket: Bucket name including the APPID suffix.
        region: COS region (e.g. ``ap-guangzhou``).
        credential: COS secret id/key.
        custom_domain: Public domain serving the bucket, used for the
            existence probe.  Scheme optional (``https`` assumed).
        lib_folder: Optional folder prefix on the public domain.
        sign_ttl: Upload signature validity window in seconds.
    """

    bucket: str
    region: str
    credential: Credential
    custom_domain: str
    lib_folder: str | None = None
    sign_ttl: int = DEFAULT_TTL

    def __post_init__(self) -> None:
        """Validate values and register credentials for log redaction.

        Raises:
            ConfigError: If a value is invalid.
        """
        SecretFilter.register_secret(self.credential.secret_id)
        SecretFilter.register_secret(self.credential.secret_key)

        if not self.bucket or not self.region:
            raise ConfigError("cos.bucket and cos.region cannot be empty")
        if not self.custom_domain:
            raise ConfigError("cos.custom_domain cannot be empty")
        if self.sign_ttl <= 0:
            raise ConfigError(
                f"cos.sign_ttl must be positive: {self.sign_ttl}"
            )

    @property
    def host(self) -> str:
        """Host of the bucket's XML API endpoint."""
        return f"{self.bucket}.cos.{self.region}.myqcloud.com"

    @property
    def public_base_url(self) -> str:
        """Public base URL, including the optional folder prefix."""
        base = _normalize_base_url(self.custom_domain)
        folder = (self.lib_folder or "").strip("/")
        return f"{base}/{folder}" if folder else base

    def public_url(self, storage_key: str) -> str:
        """Public URL of an object on the custom domain."""
        return f"{self.public_base_url}/{storage_key}"


@dataclass(frozen=True)
class CloudConfig:
    """Credentials for the Tencent Cloud API gateway."""

    credential: Credential

    def __post_init__(self) -> None:
        SecretFilter.register_secret(self.credential.secret_id)
        SecretFilter.register_secret(self.credential.secret_key)


@dataclass(frozen=True)
class MetricsConfig:
    """Analytics query settings.

    Attributes:
        domain: Domain whose traffic is reported.  Defaults to the host
            of ``cos.custom_domain`` when unset.
        host: API gateway host.
        service: Service name used in the TC3 credential scope.
        action: API action name.
        version: API version.
    """

    domain: str | None = None
    host: str = "teo.tencentcloudapi.com"
    service: str = "teo"
    action: str = "DescribeTopL7AnalysisData"
    version: str = "2022-09-01"


@dataclass(frozen=True)
class CdnjsConfig:
    """Source CDN endpoints."""

    base_url: str = DEFAULT_CDNJS_BASE_URL
    api_url: str = DEFAULT_CDNJS_API_URL


@dataclass(frozen=True)
class ServerConfig:
    """Complete service configuration.

    Attributes:
        host: Address the HTTP service binds to.
        port: Port the HTTP service binds to.
        cos: Destination store settings, or None when incomplete.
        cos_missing: Names of the missing ``cos`` fields.
        cloud: Cloud API settings, or None when incomplete.
        cloud_missing: Names of the missing ``cloud`` fields.
        metrics: Analytics query settings.
        cdnjs: Source CDN endpoints.
    """

    host: str = "127.0.0.1"
    port: int = 3000
    cos: CosConfig | None = None
    cos_missing: tuple[str, ...] = ()
    cloud: CloudConfig | None = None
    cloud_missing: tuple[str, ...] = ()
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    cdnjs: CdnjsConfig = field(default_factory=CdnjsConfig)

    def __post_init__(self) -> None:
        if not (1 <= self.port <= 65535):
            raise ConfigError(f"Invalid server port: {self.port}")

    def require_cos(self) -> CosConfig:
        """Return the COS settings.

        Raises:
            ConfigError: If the ``cos`` section is incomplete.
        """
        if self.cos is None:
            missing = ", ".join(self.cos_missing) or "cos"
            raise ConfigError(f"Missing COS configuration: {missing}")
        return self.cos

    def require_cloud(self) -> CloudConfig:
        """Return the cloud API settings.

        Raises:
            SigningPreconditionError: If the credentials are missing.
        """
        if self.cloud is None:
            missing = ", ".join(self.cloud_missing) or "cloud"
            raise SigningPreconditionError(
                f"Missing Tencent Cloud credentials: {missing}"
            )
        return self.cloud

    @property
    def metrics_domain(self) -> str:
        """Domain filter for analytics queries.

        Raises:
            ConfigError: If neither ``metrics.domain`` nor
                ``cos.custom_domain`` is set.
        """
        if self.metrics.domain:
            return self.metrics.domain
        if self.cos is not None:
            hostname = urlsplit(
                _normalize_base_url(self.cos.custom_domain)
            ).hostname
            if hostname:
                return hostname
        raise ConfigError("Missing metrics.domain")

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> "ServerConfig":
        """Load configuration from a YAML file.

        Args:
            config_path: Path to the YAML file.  Defaults to the XDG
                location.  When the default file does not exist, the
                built-in environment mapping is used instead.

        Returns:
            ServerConfig instance.

        Raises:
            ConfigError: If an explicit file is missing or malformed.
        """
        load_dotenv_once()

        explicit = config_path is not None
        if config_path is None:
            config_path = get_config_path()

        if not config_path.exists():
            if explicit:
                raise ConfigError(f"Config file not found: {config_path}")
            logger.debug(
                "No config file at %s, using environment variables",
                config_path,
            )
            return cls.from_raw(_ENV_DEFAULTS)

        with open(config_path) as f:
            try:
                raw = yaml.load(f, Loader=_make_loader())
            except yaml.YAMLError as e:
                raise ConfigError(
                    f"Cannot parse config file {config_path}: {e}"
                ) from e

        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )

        return cls.from_raw(raw)

    @classmethod
    def from_raw(cls, raw: dict) -> "ServerConfig":
        """Build config from a parsed (but unresolved) YAML mapping."""
        server = _section(raw, "server")
        metrics = _section(raw, "metrics")
        cdnjs = _section(raw, "cdnjs")

        cos, cos_missing = _parse_cos(_section(raw, "cos"))
        cloud, cloud_missing = _parse_cloud(_section(raw, "cloud"))

        config = cls(
            host=_resolve(server.get("host"), str, default="127.0.0.1"),
            port=_resolve(server.get("port"), int, default=3000),
            cos=cos,
            cos_missing=cos_missing,
            cloud=cloud,
            cloud_missing=cloud_missing,
            metrics=MetricsConfig(
                domain=_resolve(metrics.get("domain"), str),
                host=_resolve(
                    metrics.get("host"), str, default=MetricsConfig.host
                ),
                service=_resolve(
                    metrics.get("service"), str, default=MetricsConfig.service
                ),
                action=_resolve(
                    metrics.get("action"), str, default=MetricsConfig.action
                ),
                version=_resolve(
                    metrics.get("version"), str, default=MetricsConfig.version
                ),
            ),
            cdnjs=CdnjsConfig(
                base_url=_normalize_base_url(
                    _resolve(
                        cdnjs.get("base_url"),
                        str,
                        default=DEFAULT_CDNJS_BASE_URL,
                    )
                ),
                api_url=_normalize_base_url(
                    _resolve(
                        cdnjs.get("api_url"), str, default=DEFAULT_CDNJS_API_URL
                    )
                ),
            ),
        )

        logger.info(
            "Config loaded: cos=%s, cloud=%s",
            config.cos.bucket if config.cos else "unconfigured",
            "configured" if config.cloud else "unconfigured",
        )
        return config


def _parse_cos(raw: dict) -> tuple[CosConfig | None, tuple[str, ...]]:
    """Parse the ``cos`` section.

    Returns:
        Tuple of (config or None, names of missing required fields).
    """
    values = {
        name: _resolve(raw.get(name), str)
        for name in (
            "bucket",
            "region",
            "secret_id",
            "secret_key",
            "custom_domain",
        )
    }
    missing = tuple(name for name, value in values.items() if not value)
    if missing:
        logger.debug("COS configuration incomplete: %s", ", ".join(missing))
        return None, missing

    return (
        CosConfig(
            bucket=values["bucket"],
            region=values["region"],
            credential=Credential(values["secret_id"], values["secret_key"]),
            custom_domain=values["custom_domain"],
            lib_folder=_resolve(raw.get("lib_folder"), str),
            sign_ttl=_resolve(raw.get("sign_ttl"), int, default=DEFAULT_TTL),
        ),
        (),
    )


def _parse_cloud(raw: dict) -> tuple[CloudConfig | None, tuple[str, ...]]:
    """Parse the ``cloud`` section.

    Returns:
        Tuple of (config or None, names of missing required fields).
    """
    secret_id = _resolve(raw.get("secret_id"), str)
    secret_key = _resolve(raw.get("secret_key"), str)
    missing = tuple(
        name
        for name, value in (
            ("secret_id", secret_id),
            ("secret_key", secret_key),
        )
        if not value
    )
    if missing or secret_id is None or secret_key is None:
        return None, missing
    return CloudConfig(credential=Credential(secret_id, secret_key)), ()
