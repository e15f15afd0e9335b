"""
Verification request and result models.
"""

import re
from datetime import datetime
from typing import Optional, List, Dict
from pydantic import BaseModel, Field, field_validator

from .certificate import CertificatePublicView
from .college import CollegeSummary
from .ledger import LedgerVerification

CERTIFICATE_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")
CERTIFICATE_HASH_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")


class VerificationResult(BaseModel):
    """Outcome of verifying one certificate."""

    is_valid: bool = Field(..., description="Overall validity verdict")
    certificate: CertificatePublicView
    college: Optional[CollegeSummary] = None
    ledger_verification: Optional[LedgerVerification] = Field(
        None, description="Ledger cross-check, absent when the ledger could not be consulted"
    )
    verification_count: int
    last_verified: Optional[datetime] = None


class QRVerificationRequest(BaseModel):
    qr_data: str = Field(..., min_length=1, description="Scanned QR content: id, hash or verification URL")

    @field_validator("qr_data")
    @classmethod
    def strip_qr_data(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("QR code data is required")
        return v


class BatchVerificationRequest(BaseModel):
    certificates: List[str] = Field(..., min_length=1, max_length=20, description="Certificate ids or hashes")

    @field_validator("certificates")
    @classmethod
    def check_identifiers(cls, values: List[str]) -> List[str]:
        for value in values:
            if not (CERTIFICATE_ID_PATTERN.match(value) or CERTIFICATE_HASH_PATTERN.match(value)):
                raise ValueError(f"Invalid certificate identifier: {value}")
        return values


class BatchVerificationItem(BaseModel):
    identifier: str
    success: bool
    is_valid: bool = False
    result: Optional[VerificationResult] = None
    error: Optional[str] = None


class BatchVerificationResult(BaseModel):
    total: int
    verified_count: int
    failed_count: int
    results: List[BatchVerificationItem]


class VerificationStats(BaseModel):
    total_certificates: int = 0
    total_verifications: int = 0
    valid_certificates: int = 0
    revoked_certificates: int = 0
    pending_certificates: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
