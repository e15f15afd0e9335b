"""
College (issuing organization) models. The core reads colleges, never writes them.
"""

from typing import Optional, Dict, Any
from pydantic import BaseModel, Field


class CollegeBlockchain(BaseModel):
    wallet_address: Optional[str] = Field(None, description="Wallet the college anchors certificates to")
    is_authorized: bool = Field(False, description="Whether the wallet is an authorized issuer on the ledger")


class CollegeInDB(BaseModel):
    """College as stored in the colleges collection."""

    id: str
    name: str
    code: Optional[str] = Field(None, description="Short uppercase code used as access code prefix")
    address: Optional[Dict[str, Any]] = None
    contact: Optional[Dict[str, Any]] = None
    blockchain: CollegeBlockchain = Field(default_factory=CollegeBlockchain)
    is_active: bool = True

    @property
    def access_code_prefix(self) -> str:
        return (self.code or "CERT").upper()


class CollegeSummary(BaseModel):
    """College fields shown next to a verified certificate."""

    id: str
    name: str
    code: Optional[str] = None
    address: Optional[Dict[str, Any]] = None

    @classmethod
    def from_college(cls, college: CollegeInDB) -> "CollegeSummary":
        return cls(id=college.id, name=college.name, code=college.code, address=college.address)
