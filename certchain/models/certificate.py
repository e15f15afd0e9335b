"""
Certificate models and schemas for issuance, anchoring and public verification.
"""

from datetime import date, datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, ConfigDict, EmailStr, field_validator
from enum import Enum


class CertificateStatus(str, Enum):
    """Certificate lifecycle states."""
    PENDING = "PENDING"
    MINTED = "MINTED"
    VERIFIED = "VERIFIED"
    REVOKED = "REVOKED"

    @property
    def is_valid(self) -> bool:
        """Whether a certificate in this state may be reported as valid"""
        return self in (CertificateStatus.MINTED, CertificateStatus.VERIFIED)

    def can_transition_to(self, target: "CertificateStatus") -> bool:
        """Check a status change against the lifecycle state machine"""
        return target in ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: Dict[CertificateStatus, frozenset] = {
    CertificateStatus.PENDING: frozenset({CertificateStatus.MINTED, CertificateStatus.REVOKED}),
    CertificateStatus.MINTED: frozenset({CertificateStatus.VERIFIED, CertificateStatus.REVOKED}),
    CertificateStatus.VERIFIED: frozenset({CertificateStatus.REVOKED}),
    CertificateStatus.REVOKED: frozenset(),
}


def sources_for(target: CertificateStatus) -> List[CertificateStatus]:
    """All states from which ``target`` may be entered"""
    return [status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets]


class Address(BaseModel):
    """Postal address of a student."""

    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None


class StudentData(BaseModel):
    """Student personal data. Students do not need an account."""

    name: str = Field(..., min_length=1, description="Student full name")
    email: EmailStr = Field(..., description="Student email")
    phone: Optional[str] = None
    student_id: str = Field(..., min_length=1, description="College-assigned student id")
    date_of_birth: Optional[date] = None
    address: Optional[Address] = None

    @field_validator("name", "student_id")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class Marks(BaseModel):
    obtained: float
    total: float


class Subject(BaseModel):
    subject_code: Optional[str] = None
    subject_name: str
    credits: float
    grade: str
    marks: Marks


class Semester(BaseModel):
    """Semester-wise result."""

    semester_number: int
    year: int
    subjects: List[Subject] = Field(default_factory=list)
    semester_cgpa: float
    semester_percentage: float
    result: str

    @field_validator("subjects", mode="before")
    @classmethod
    def default_subjects(cls, v):
        return v if v is not None else []


class CertificationEntry(BaseModel):
    name: Optional[str] = None
    issued_by: Optional[str] = None
    date_issued: Optional[date] = None
    valid_until: Optional[date] = None


class Project(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    technologies: List[str] = Field(default_factory=list)
    duration: Optional[str] = None
    role: Optional[str] = None


class Internship(BaseModel):
    company: Optional[str] = None
    position: Optional[str] = None
    duration: Optional[str] = None
    description: Optional[str] = None


class Achievement(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    achieved_on: Optional[date] = None
    category: Optional[str] = Field(None, description="Academic, Sports, Cultural, etc.")


class Thesis(BaseModel):
    title: Optional[str] = None
    guide: Optional[str] = None
    abstract: Optional[str] = None
    grade: Optional[str] = None


class Attendance(BaseModel):
    overall: Optional[float] = Field(None, ge=0, le=100, description="Overall attendance percentage")
    remarks: Optional[str] = None


class DisciplinaryRecord(BaseModel):
    clean: bool = True
    remarks: Optional[str] = None


_COLLECTION_FIELDS = (
    "semesters", "technical_skills", "soft_skills", "certifications",
    "projects", "internships", "achievements",
)


class AcademicData(BaseModel):
    """Complete academic record of a student."""

    degree: str = Field(..., min_length=1)
    specialization: Optional[str] = None
    duration: str = Field(..., min_length=1, description='e.g. "4 years"')
    admission_year: int = Field(..., ge=1900, le=2100)
    graduation_year: int = Field(..., ge=1900, le=2100)
    overall_cgpa: float = Field(..., ge=0, le=10)
    overall_percentage: float = Field(..., ge=0, le=100)
    classification: str = Field(..., min_length=1, description="First Class, Second Class, etc.")

    semesters: List[Semester] = Field(default_factory=list)
    technical_skills: List[str] = Field(default_factory=list)
    soft_skills: List[str] = Field(default_factory=list)
    certifications: List[CertificationEntry] = Field(default_factory=list)
    projects: List[Project] = Field(default_factory=list)
    internships: List[Internship] = Field(default_factory=list)
    achievements: List[Achievement] = Field(default_factory=list)

    thesis: Optional[Thesis] = None
    attendance: Optional[Attendance] = None
    disciplinary_record: DisciplinaryRecord = Field(default_factory=DisciplinaryRecord)

    @field_validator(*_COLLECTION_FIELDS, mode="before")
    @classmethod
    def default_collections(cls, v):
        # Explicit nulls from clients become empty containers
        return v if v is not None else []

    @field_validator("disciplinary_record", mode="before")
    @classmethod
    def default_disciplinary_record(cls, v):
        return v if v is not None else {"clean": True}


class BlockchainData(BaseModel):
    """Fingerprint and ledger anchoring state of a certificate."""

    certificate_hash: str = Field(..., description="SHA-256 fingerprint of the certificate content")
    token_id: Optional[int] = None
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None
    wallet_address: Optional[str] = None
    contract_address: Optional[str] = None

    anchor_attempts: int = 0
    next_anchor_attempt_at: Optional[datetime] = None
    last_anchor_error: Optional[str] = None
    revocation_pending: bool = False
    revocation_transaction_hash: Optional[str] = None


class CertificateMetadata(BaseModel):
    verification_link: Optional[str] = None
    qr_code: Optional[str] = Field(None, description="PNG data URL of the verification QR code")
    revocation_reason: Optional[str] = None
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None


class CertificateInDB(BaseModel):
    """Certificate as persisted in the store."""

    id: str
    student_data: StudentData
    academic_data: AcademicData
    college_id: str
    issued_by: str
    api_code: str
    blockchain: BlockchainData
    metadata: CertificateMetadata = Field(default_factory=CertificateMetadata)
    status: CertificateStatus = CertificateStatus.PENDING
    issued_at: datetime
    verification_count: int = 0
    last_verified: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_valid(self) -> bool:
        return self.status.is_valid

    @property
    def token_id(self) -> Optional[int]:
        return self.blockchain.token_id


class PublicBlockchainData(BaseModel):
    certificate_hash: str
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None


class CertificatePublicView(BaseModel):
    """Certificate fields that verification endpoints expose."""

    id: str
    student_data: StudentData
    academic_data: AcademicData
    token_id: Optional[int] = None
    issued_at: datetime
    status: CertificateStatus
    blockchain: PublicBlockchainData
    metadata: CertificateMetadata

    @classmethod
    def from_certificate(cls, certificate: CertificateInDB) -> "CertificatePublicView":
        return cls(
            id=certificate.id,
            student_data=certificate.student_data,
            academic_data=certificate.academic_data,
            token_id=certificate.blockchain.token_id,
            issued_at=certificate.issued_at,
            status=certificate.status,
            blockchain=PublicBlockchainData(
                certificate_hash=certificate.blockchain.certificate_hash,
                transaction_hash=certificate.blockchain.transaction_hash,
                block_number=certificate.blockchain.block_number,
            ),
            metadata=certificate.metadata,
        )


class IssueCertificateRequest(BaseModel):
    """Request body for issuing a certificate."""

    student_data: StudentData
    academic_data: AcademicData

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "student_data": {
                    "name": "Asha Verma",
                    "email": "asha@example.edu",
                    "student_id": "CS2020-041"
                },
                "academic_data": {
                    "degree": "B.Tech Computer Science",
                    "duration": "4 years",
                    "admission_year": 2020,
                    "graduation_year": 2024,
                    "overall_cgpa": 8.7,
                    "overall_percentage": 82.5,
                    "classification": "First Class with Distinction",
                    "technical_skills": ["Python", "MongoDB"]
                }
            }
        }
    )


class BatchIssueRequest(BaseModel):
    certificates: List[IssueCertificateRequest] = Field(..., min_length=1, max_length=50)


class RevokeCertificateRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500, description="Revocation reason")

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Revocation reason is required")
        return v


class StudentAccess(BaseModel):
    """What a student needs to retrieve their certificate without an account."""

    api_code: str
    verification_link: Optional[str] = None
    qr_code: Optional[str] = None


class IssuanceResult(BaseModel):
    success: bool = True
    message: str
    certificate: CertificateInDB
    student_access: StudentAccess
    warning: Optional[str] = None


class BatchIssueItem(BaseModel):
    index: int
    success: bool
    student_email: Optional[str] = None
    result: Optional[IssuanceResult] = None
    error: Optional[str] = None


class BatchIssueResult(BaseModel):
    total: int
    succeeded: int
    failed: int
    results: List[BatchIssueItem]


class RevocationResult(BaseModel):
    success: bool = True
    message: str
    certificate: CertificateInDB
    warning: Optional[str] = None


class Pagination(BaseModel):
    current: int
    pages: int
    total: int


class CertificatePage(BaseModel):
    certificates: List[CertificateInDB]
    pagination: Pagination


def new_certificate_document(
    student_data: StudentData,
    academic_data: AcademicData,
    college_id: str,
    issued_by: str,
    api_code: str,
    certificate_hash: str,
    issued_at: datetime,
    wallet_address: Optional[str] = None,
    contract_address: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build the storage document for a freshly issued certificate.

    Student and academic payloads are stored in JSON mode so that dates
    become ISO strings the store can hold.
    """
    return {
        "student_data": student_data.model_dump(mode="json"),
        "academic_data": academic_data.model_dump(mode="json"),
        "college_id": college_id,
        "issued_by": issued_by,
        "api_code": api_code,
        "blockchain": BlockchainData(
            certificate_hash=certificate_hash,
            wallet_address=wallet_address,
            contract_address=contract_address,
        ).model_dump(),
        "metadata": CertificateMetadata().model_dump(),
        "status": CertificateStatus.PENDING.value,
        "issued_at": issued_at,
        "verification_count": 0,
        "last_verified": None,
        "created_at": issued_at,
        "updated_at": issued_at,
    }
