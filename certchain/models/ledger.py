"""
Ledger anchoring models shared by the live and mock ledger clients.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class AcademicSummary(BaseModel):
    """Certificate summary written to the ledger next to the fingerprint."""

    student_name: str
    degree: str
    institution: str
    year: int


class AnchorReceipt(BaseModel):
    """Result of a confirmed anchor transaction."""

    token_id: int = Field(..., description="Ledger token / serial of the anchored certificate")
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[str] = None


class LedgerVerification(BaseModel):
    """Ledger view of a certificate looked up by token."""

    student_name: str
    degree: str
    institution: str
    year: int
    certificate_hash: str
    anchored_at: Optional[datetime] = None
    is_valid: bool
    owner: str


class LedgerHashVerification(BaseModel):
    """Ledger view of a certificate looked up by fingerprint."""

    token_id: Optional[int] = None
    student_name: Optional[str] = None
    degree: Optional[str] = None
    institution: Optional[str] = None
    year: Optional[int] = None
    is_valid: bool = False


class RevocationReceipt(BaseModel):
    transaction_hash: str
    block_number: int
