"""Payload and result models exchanged with the signature adapter."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class SigningPayload(BaseModel):
    """Binds a signature to one step of one instance of one document."""

    instance_id: str
    step_id: str
    document_id: str
    timestamp: datetime
    signer_user_id: str
    witness: bool = False
    digest: Optional[str] = Field(default=None, description="Hash of the canonical body")

    def body(self) -> Dict[str, Any]:
        """Fields covered by the digest."""
        return self.model_dump(mode="json", exclude={"digest"})

    def canonical_bytes(self) -> bytes:
        """Deterministic serialization used for hashing."""
        return json.dumps(self.body(), sort_keys=True, separators=(",", ":")).encode("utf-8")


class SignatureRecord(BaseModel):
    """Verifiable signature record returned by a signature adapter."""

    signature_id: str = Field(..., description="Opaque reference to the stored signature")
    algorithm: str = Field(..., description="Signing algorithm")
    timestamp: datetime
    key_id: Optional[str] = None
    value: Optional[str] = Field(default=None, description="Serialized signature, e.g. compact JWS")
