# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures used across multiple test modules."""

from collections.abc import Iterator
from pathlib import Path

import pytest

from cdnmirror.config import (
    CdnjsConfig,
    CloudConfig,
    CosConfig,
    MetricsConfig,
    ServerConfig,
)
from cdnmirror.dotenv_loader import reset_dotenv_state
from cdnmirror.logging import SecretFilter
from cdnmirror.signing import Credential


#: Environment variables read by the built-in configuration mapping.
_CONFIG_ENV_VARS = (
    "PORT",
    "COS_BUCKET_NAME",
    "COS_REGION",
    "COS_SECRET_ID",
    "COS_SECRET_KEY",
    "COS_CUSTOM_DOMAIN",
    "COS_LIB_FOLDER",
    "TENCENTCLOUD_SECRET_ID",
    "TENCENTCLOUD_SECRET_KEY",
    "METRICS_DOMAIN",
)


@pytest.fixture(autouse=True)
def _isolate_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Iterator[None]:
    """Keep tests away from the real config, .env files and secrets.

    XDG config points into ``tmp_path``, the working directory moves there
    and the configuration environment variables are unset.
    """
    xdg_config = tmp_path / "xdg-config"
    xdg_config.mkdir()
    monkeypatch.setenv("XDG_CONFIG_HOME", str(xdg_config))
    monkeypatch.chdir(tmp_path)
    for name in _CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)

    reset_dotenv_state()
    SecretFilter.clear_secrets()
    yield
    reset_dotenv_state()
    SecretFilter.clear_secrets()


@pytest.fixture
def cos_config() -> CosConfig:
    """Bucket settings for ``libs-1250000000`` in ``ap-guangzhou``."""
    return CosConfig(
        bucket="libs-1250000000",
        region="ap-guangzhou",
        credential=Credential("AKIDcosexample", "cos-secret-key"),
        custom_domain="https://cdn.example.com",
    )


@pytest.fixture
def cloud_config() -> CloudConfig:
    """Cloud API credentials."""
    return CloudConfig(
        credential=Credential("AKIDcloudexample", "cloud-secret-key")
    )


@pytest.fixture
def server_config(
    cos_config: CosConfig, cloud_config: CloudConfig
) -> ServerConfig:
    """Fully configured service."""
    return ServerConfig(
        cos=cos_config,
        cloud=cloud_config,
        metrics=MetricsConfig(),
        cdnjs=CdnjsConfig(),
    )
