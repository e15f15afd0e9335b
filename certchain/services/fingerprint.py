"""
Certificate fingerprint and student access code generation.
"""

import hashlib
import json
import secrets
from datetime import datetime, timezone
from typing import Optional

from ..models.certificate import AcademicData, StudentData

BASE36_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
ACCESS_CODE_RANDOM_LENGTH = 6
DEFAULT_ACCESS_CODE_PREFIX = "CERT"


def canonical_timestamp(issued_at: datetime) -> str:
    """
    Render an issuance time as a millisecond-precision UTC ISO string.

    Naive datetimes are taken to be UTC already.
    """
    if issued_at.tzinfo is None:
        issued_at = issued_at.replace(tzinfo=timezone.utc)
    issued_at = issued_at.astimezone(timezone.utc)
    return issued_at.strftime("%Y-%m-%dT%H:%M:%S.") + f"{issued_at.microsecond // 1000:03d}Z"


def compute_fingerprint(student_data: StudentData, academic_data: AcademicData, issued_at: datetime) -> str:
    """
    Calculate the SHA-256 fingerprint of a certificate.

    Identity fields, the key academic metrics and the issuance time are
    serialised as sorted, compact JSON so that two different records can
    never produce the same input string.

    Args:
        student_data: Student personal data
        academic_data: Academic record
        issued_at: Issuance time (only millisecond precision is used)

    Returns:
        64 lowercase hex characters
    """
    hash_data = {
        "name": student_data.name,
        "email": str(student_data.email),
        "student_id": student_data.student_id,
        "degree": academic_data.degree,
        "specialization": academic_data.specialization or "",
        "classification": academic_data.classification,
        "admission_year": academic_data.admission_year,
        "graduation_year": academic_data.graduation_year,
        "overall_cgpa": academic_data.overall_cgpa,
        "overall_percentage": academic_data.overall_percentage,
        "issued_at": canonical_timestamp(issued_at),
    }
    sorted_data = json.dumps(hash_data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(sorted_data.encode("utf-8")).hexdigest()


def to_base36(value: int) -> str:
    """Encode a non-negative integer in uppercase base 36"""
    if value < 0:
        raise ValueError("base36 encoding needs a non-negative integer")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_access_code(org_code: Optional[str], year: int, now: Optional[datetime] = None) -> str:
    """
    Generate the code a student uses to fetch their certificate.

    Format: ``<ORG>-<YEAR>-<BASE36(epoch millis)>-<6 random base36 chars>``.

    Args:
        org_code: College code, falls back to ``CERT``
        year: Year of issuance (UTC)
        now: Clock reading to encode, defaults to the current time
    """
    now = now or datetime.now(timezone.utc)
    millis = int(now.timestamp() * 1000)
    suffix = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(ACCESS_CODE_RANDOM_LENGTH))
    prefix = (org_code or DEFAULT_ACCESS_CODE_PREFIX).upper()
    return f"{prefix}-{year}-{to_base36(millis)}-{suffix}".upper()
