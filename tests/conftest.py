"""Shared fixtures: in-memory stores, ledger fakes and ready-wired services."""

import asyncio
from typing import Optional

import pytest
from bson import ObjectId

from certchain.core.config import Settings
from certchain.core.exceptions import LedgerUnavailable
from certchain.db.memory_store import InMemoryCertificateStore, InMemoryCollegeStore
from certchain.models.auth import Principal, Role
from certchain.models.certificate import IssueCertificateRequest
from certchain.models.college import CollegeBlockchain, CollegeInDB
from certchain.models.ledger import AcademicSummary, AnchorReceipt
from certchain.services.anchoring_worker import AnchoringWorker
from certchain.services.certificate_service import CertificateService
from certchain.services.ledger_service import MockLedgerClient
from certchain.services.qr_service import QRCodeService
from certchain.services.verification_service import VerificationService

CLIENT_URL = "https://certs.example.edu"
WALLET_ADDRESS = "0x" + "ab" * 20


class FlakyLedgerClient(MockLedgerClient):
    """Mock ledger whose calls can be switched to fail, with call counters."""

    def __init__(self):
        super().__init__()
        self.fail_anchor = False
        self.fail_verify = False
        self.fail_revoke = False
        # The anchor transaction lands but the caller is told it failed
        self.anchor_lands_then_fails = False
        self.anchor_delay = 0.0
        self.anchor_calls = 0
        self.verify_calls = 0
        self.revoke_calls = 0

    async def anchor(self, wallet_address: Optional[str], summary: AcademicSummary, fingerprint: str) -> AnchorReceipt:
        self.anchor_calls += 1
        if self.anchor_delay:
            await asyncio.sleep(self.anchor_delay)
        if self.fail_anchor:
            raise LedgerUnavailable("rpc unreachable")
        receipt = await super().anchor(wallet_address, summary, fingerprint)
        if self.anchor_lands_then_fails:
            raise LedgerUnavailable("receipt wait timed out")
        return receipt

    async def verify(self, token_id: int):
        self.verify_calls += 1
        if self.fail_verify:
            raise LedgerUnavailable("rpc unreachable")
        return await super().verify(token_id)

    async def revoke(self, token_id: int):
        self.revoke_calls += 1
        if self.fail_revoke:
            raise LedgerUnavailable("rpc unreachable")
        return await super().revoke(token_id)


def build_request(**overrides) -> IssueCertificateRequest:
    """Issue request for a typical graduate; keyword overrides go into student or academic data."""
    student = {
        "name": "Asha Verma",
        "email": "asha@example.edu",
        "student_id": "CS2020-041",
    }
    academic = {
        "degree": "B.Tech Computer Science",
        "specialization": "Data Science",
        "duration": "4 years",
        "admission_year": 2020,
        "graduation_year": 2024,
        "overall_cgpa": 8.7,
        "overall_percentage": 82.5,
        "classification": "First Class with Distinction",
    }
    for key, value in overrides.items():
        if key in student or key in ("phone", "date_of_birth", "address"):
            student[key] = value
        else:
            academic[key] = value
    return IssueCertificateRequest(student_data=student, academic_data=academic)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        mongodb_url="memory://",
        client_url=CLIENT_URL,
        secret_key="test-secret",
        enable_anchor_worker=False,
        ledger_timeout_seconds=2.0,
        anchor_backoff_base_seconds=0,
        anchor_backoff_max_seconds=3600,
        anchor_max_attempts=5,
        rate_limit_calls=1000,
    )


@pytest.fixture
def college() -> CollegeInDB:
    return CollegeInDB(
        id=str(ObjectId()),
        name="Test University",
        code="test01",
        blockchain=CollegeBlockchain(wallet_address=WALLET_ADDRESS, is_authorized=True),
    )


@pytest.fixture
def store() -> InMemoryCertificateStore:
    return InMemoryCertificateStore()


@pytest.fixture
def colleges(college) -> InMemoryCollegeStore:
    colleges = InMemoryCollegeStore()
    colleges.add(college)
    return colleges


@pytest.fixture
def ledger() -> FlakyLedgerClient:
    return FlakyLedgerClient()


@pytest.fixture
def qr(settings) -> QRCodeService:
    return QRCodeService(settings.client_url)


@pytest.fixture
def certificate_service(store, colleges, ledger, qr, settings) -> CertificateService:
    return CertificateService(store, colleges, ledger, qr, settings)


@pytest.fixture
def verification_service(store, colleges, ledger, qr, settings) -> VerificationService:
    return VerificationService(store, colleges, ledger, qr, settings)


@pytest.fixture
def worker(store, colleges, ledger, certificate_service, settings) -> AnchoringWorker:
    return AnchoringWorker(store, colleges, ledger, certificate_service, settings)


@pytest.fixture
def admin(college) -> Principal:
    return Principal(user_id=str(ObjectId()), role=Role.ADMIN, college_id=college.id)


@pytest.fixture
def issue_request() -> IssueCertificateRequest:
    return build_request()
