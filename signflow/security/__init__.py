"""Permission evaluation and signing collaborators."""

from __future__ import annotations

from .context import SignatureRecord, SigningPayload
from .jws import Hasher, JwsSignatureAdapter, Sha256Hasher, SignatureAdapter
from .keys import (
    KeyProvider,
    StaticKeyProvider,
    generate_ec_key_provider,
    key_provider_from_config,
    load_ec_key_provider,
)
from .policy import ROLE_CAPABILITIES, Capability, PermissionEvaluator, validate_capability_table

__all__ = [
    "Capability",
    "Hasher",
    "JwsSignatureAdapter",
    "KeyProvider",
    "PermissionEvaluator",
    "ROLE_CAPABILITIES",
    "Sha256Hasher",
    "SignatureAdapter",
    "SignatureRecord",
    "SigningPayload",
    "StaticKeyProvider",
    "generate_ec_key_provider",
    "key_provider_from_config",
    "load_ec_key_provider",
    "validate_capability_table",
]
