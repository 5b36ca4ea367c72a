"""Hashing and JWS signing services consumed by the workflow engine."""

from __future__ import annotations

import abc
import hashlib
import uuid
from datetime import datetime, timezone
from typing import Protocol

import jwt

from ..errors import SigningFailed
from .context import SignatureRecord, SigningPayload
from .keys import KeyProvider


class Hasher(Protocol):
    """Turns bytes into a stable hex digest."""

    def digest(self, data: bytes) -> str:
        ...


class Sha256Hasher:
    name = "sha256"

    def digest(self, data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()


class SignatureAdapter(metaclass=abc.ABCMeta):
    """Produces a verifiable signature for a payload.

    The engine treats implementations as black boxes and never verifies what
    they return. Implementations raise :class:`SigningFailed` on failure.
    """

    @abc.abstractmethod
    async def sign(self, payload: SigningPayload) -> SignatureRecord:
        raise NotImplementedError


class JwsSignatureAdapter(SignatureAdapter):
    """Signs payloads as compact JSON Web Signatures.

    The claims are the payload fields including its digest, so the token
    binds instance, step, document and time together.
    """

    def __init__(self, key_provider: KeyProvider) -> None:
        self.key_provider = key_provider

    async def sign(self, payload: SigningPayload) -> SignatureRecord:
        kid, key = await self.key_provider.get_signing_key()
        algorithm = self.key_provider.algorithm
        signature_id = str(uuid.uuid4())
        claims = payload.model_dump(mode="json")
        claims["jti"] = signature_id
        try:
            token = jwt.encode(claims, key, algorithm=algorithm, headers={"kid": kid})
        except (jwt.PyJWTError, ValueError, TypeError) as exc:
            raise SigningFailed(f"JWS signing failed: {exc}") from exc
        return SignatureRecord(
            signature_id=signature_id,
            algorithm=algorithm,
            timestamp=datetime.now(timezone.utc),
            key_id=kid,
            value=token,
        )
