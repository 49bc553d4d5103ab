"""Signed upload receipts for dispute evidence.

``POST /disputes/evidence`` stores the file and hands back a receipt: a JWT
signed with the service secret that carries the stored URL, content type and
size. Filing accepts receipts only, so the evidence attached to a dispute is
always a file this service checked and uploaded, never client-supplied
metadata.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from jose import JWTError, jwt

from src.config import settings
from src.exceptions import ValidationException
from src.modules.dispute.domain import EvidenceFile

logger = logging.getLogger(__name__)

RECEIPT_PURPOSE = "dispute_evidence"


@dataclass(frozen=True)
class UploadedEvidence:
    file: EvidenceFile
    receipt: str


def issue_receipt(evidence: EvidenceFile, owner_id: str, now: datetime) -> str:
    claims = {
        "sub": owner_id,
        "purpose": RECEIPT_PURPOSE,
        "url": evidence.url,
        "content_type": evidence.content_type,
        "size_bytes": evidence.size_bytes,
        "file_name": evidence.file_name,
        "iat": now,
        "exp": now + timedelta(hours=settings.evidence_receipt_ttl_hours),
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def _redeem(receipt: str, owner_id: str, now: datetime) -> EvidenceFile:
    try:
        # Expiry is checked against the injected clock below
        claims = jwt.decode(
            receipt,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"verify_exp": False, "verify_iat": False},
        )
    except JWTError as exc:
        logger.warning("Rejected evidence receipt: %s", exc)
        raise ValueError("is not a valid upload receipt; upload the file again") from exc

    if claims.get("purpose") != RECEIPT_PURPOSE:
        raise ValueError("is not a valid upload receipt; upload the file again")
    if claims.get("sub") != owner_id:
        raise ValueError("was uploaded by another user")
    if int(claims.get("exp", 0)) < now.timestamp():
        raise ValueError("upload receipt has expired; upload the file again")

    try:
        return EvidenceFile(
            url=claims["url"],
            content_type=claims["content_type"],
            size_bytes=int(claims["size_bytes"]),
            file_name=claims.get("file_name"),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError("is not a valid upload receipt; upload the file again") from exc


def redeem_receipts(receipts: Sequence[str], owner_id: str, now: datetime) -> list[EvidenceFile]:
    """Turn upload receipts back into evidence files, rejecting any that fail verification."""
    files: list[EvidenceFile] = []
    details: list[dict] = []
    for index, receipt in enumerate(receipts):
        try:
            files.append(_redeem(receipt, owner_id, now))
        except ValueError as exc:
            details.append({"field": f"evidence.{index}", "message": f"Evidence {exc}"})

    if details:
        raise ValidationException("Evidence must be uploaded through the evidence endpoint", details=details)
    return files
