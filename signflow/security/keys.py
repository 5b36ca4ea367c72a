"""Key management utilities for signing."""

from __future__ import annotations

import logging
import secrets
from pathlib import Path
from typing import Any, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from ..config import SigningConfig
from ..errors import SigningFailed

logger = logging.getLogger(__name__)


class KeyProvider:
    """Provides the current signing key and its identifier."""

    algorithm: str = "HS256"

    async def get_signing_key(self) -> Tuple[str, Any]:  # pragma: no cover - interface
        """Return ``(kid, key)`` for the key used to sign new payloads."""
        raise NotImplementedError


class StaticKeyProvider(KeyProvider):
    """Serves a single key, either an HMAC secret or a private key object."""

    def __init__(self, key: Any, kid: str, algorithm: str = "HS256") -> None:
        self._key = key
        self.kid = kid
        self.algorithm = algorithm

    async def get_signing_key(self) -> Tuple[str, Any]:
        return self.kid, self._key


def generate_ec_key_provider(kid: str = "signflow-es256") -> StaticKeyProvider:
    """Create a provider backed by a fresh P-256 key pair."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    return StaticKeyProvider(private_key, kid=kid, algorithm="ES256")


def load_ec_key_provider(path: str | Path, kid: str = "signflow-es256") -> StaticKeyProvider:
    """Create a provider from an unencrypted PEM-encoded P-256 private key.

    Raises:
        SigningFailed: the file is missing, unreadable or not a P-256 key.
    """
    path = Path(path)
    try:
        private_key = serialization.load_pem_private_key(path.read_bytes(), password=None)
    except (OSError, ValueError, TypeError) as exc:
        raise SigningFailed(f"Cannot load ES256 signing key from {path}: {exc}") from exc
    if not isinstance(private_key, ec.EllipticCurvePrivateKey) or not isinstance(
        private_key.curve, ec.SECP256R1
    ):
        raise SigningFailed(f"Signing key in {path} is not a P-256 EC private key")
    return StaticKeyProvider(private_key, kid=kid, algorithm="ES256")


def key_provider_from_config(config: SigningConfig) -> StaticKeyProvider:
    if config.algorithm == "ES256":
        if config.private_key_path:
            return load_ec_key_provider(config.private_key_path, config.key_id)
        logger.warning(
            "No signing.private_key_path configured; generated an ES256 key that "
            "lives only as long as this process"
        )
        return generate_ec_key_provider(config.key_id)
    if not config.secret:
        logger.warning(
            f"No signing secret configured; generated a {config.algorithm} secret "
            "that lives only as long as this process"
        )
    secret = config.secret or secrets.token_hex(32)
    return StaticKeyProvider(secret, kid=config.key_id, algorithm=config.algorithm)
