from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel


class RedisConfig(BaseModel):
    """Configuration for the Redis notification transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class TransportConfig(BaseModel):
    """Notification transport settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class MonitorConfig(BaseModel):
    """Escalation monitor settings."""

    interval_seconds: float = 60.0
    system_user_id: str = "system"
    system_user_name: str = "Escalation Monitor"


class SigningConfig(BaseModel):
    """Settings for the bundled JWS signature adapter."""

    algorithm: Literal["HS256", "HS512", "ES256"] = "HS256"
    secret: Optional[str] = None
    key_id: str = "signflow-default"
    # PEM file holding the ES256 private key; without it a key is generated
    # per process and earlier signatures cannot be verified after a restart.
    private_key_path: Optional[str] = None


class SignflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    catalog_path: Optional[str] = None
    transport: TransportConfig = TransportConfig()
    monitor: MonitorConfig = MonitorConfig()
    signing: SigningConfig = SigningConfig()


def load_config(path: Optional[str] = None) -> SignflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to SIGNFLOW_CONFIG env
            variable or 'signflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("SIGNFLOW_CONFIG", "signflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = SignflowConfig(**data)
    else:
        config = SignflowConfig()

    env_db_url = os.getenv("SIGNFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_catalog = os.getenv("SIGNFLOW_CATALOG")
    if env_catalog:
        config.catalog_path = env_catalog
    env_secret = os.getenv("SIGNFLOW_SIGNING_SECRET")
    if env_secret:
        config.signing.secret = env_secret
    env_key_path = os.getenv("SIGNFLOW_SIGNING_KEY_PATH")
    if env_key_path:
        config.signing.private_key_path = env_key_path
    env_transport = os.getenv("SIGNFLOW_TRANSPORT")
    if env_transport:
        config.transport.backend = env_transport
    return config
