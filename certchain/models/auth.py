"""
Principal model handed to the core by the identity collaborator.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class Role(str, Enum):
    ADMIN = "ADMIN"
    VERIFIER = "VERIFIER"
    STUDENT = "STUDENT"


class Principal(BaseModel):
    """Authenticated caller. The core trusts these values as already verified."""

    user_id: str = Field(..., description="Id of the authenticated user")
    role: Role
    college_id: Optional[str] = Field(None, description="College the user administers, if any")
