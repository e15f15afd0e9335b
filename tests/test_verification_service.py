"""Tests for the verification engine."""

import asyncio

import pytest
import pytest_asyncio
from bson import ObjectId

from certchain.core.exceptions import InvalidPayload, NotFound
from certchain.models.certificate import CertificateStatus

from conftest import build_request


@pytest_asyncio.fixture
async def minted(certificate_service, admin, issue_request):
    return (await certificate_service.issue(admin, issue_request)).certificate


class TestVerifyById:
    """Tests for verification by certificate id."""

    @pytest.mark.asyncio
    async def test_ledger_confirmed_certificate_is_promoted(self, verification_service, minted, college):
        result = await verification_service.verify_by_id(minted.id)

        assert result.is_valid is True
        assert result.certificate.status == CertificateStatus.VERIFIED
        assert result.certificate.token_id == minted.token_id
        assert result.ledger_verification.is_valid is True
        assert result.ledger_verification.certificate_hash == minted.blockchain.certificate_hash
        assert result.college.name == college.name
        assert result.verification_count == 1
        assert result.last_verified is not None

    @pytest.mark.asyncio
    async def test_verified_stays_verified(self, verification_service, minted):
        await verification_service.verify_by_id(minted.id)
        result = await verification_service.verify_by_id(minted.id)
        assert result.certificate.status == CertificateStatus.VERIFIED
        assert result.verification_count == 2

    @pytest.mark.asyncio
    async def test_pending_is_not_valid(self, verification_service, certificate_service, admin, issue_request, ledger):
        ledger.fail_anchor = True
        pending = (await certificate_service.issue(admin, issue_request)).certificate

        result = await verification_service.verify_by_id(pending.id)
        assert result.is_valid is False
        assert result.ledger_verification is None
        assert result.certificate.status == CertificateStatus.PENDING
        assert result.verification_count == 1
        assert ledger.verify_calls == 0

    @pytest.mark.asyncio
    async def test_revoked_is_not_valid(self, verification_service, certificate_service, admin, minted):
        await certificate_service.revoke(admin, minted.id, "Fraud")
        result = await verification_service.verify_by_id(minted.id)

        assert result.is_valid is False
        assert result.certificate.status == CertificateStatus.REVOKED
        assert result.certificate.metadata.revocation_reason == "Fraud"

    @pytest.mark.asyncio
    async def test_ledger_failure_falls_back_to_store(self, verification_service, minted, ledger):
        ledger.fail_verify = True
        result = await verification_service.verify_by_id(minted.id)

        assert result.is_valid is True
        assert result.ledger_verification is None
        assert result.certificate.status == CertificateStatus.MINTED

    @pytest.mark.asyncio
    async def test_ledger_disagreement_is_not_valid(self, verification_service, minted, ledger, store):
        await ledger.revoke(minted.token_id)
        result = await verification_service.verify_by_id(minted.id)

        assert result.is_valid is False
        assert result.ledger_verification.is_valid is False
        assert (await store.find_by_id(minted.id)).status == CertificateStatus.MINTED

    @pytest.mark.asyncio
    async def test_unknown_id(self, verification_service):
        with pytest.raises(NotFound):
            await verification_service.verify_by_id(str(ObjectId()))

    @pytest.mark.asyncio
    async def test_concurrent_verifications_all_counted(self, verification_service, minted, store):
        results = await asyncio.gather(*(verification_service.verify_by_id(minted.id) for _ in range(20)))

        assert sorted(result.verification_count for result in results) == list(range(1, 21))
        assert (await store.find_by_id(minted.id)).verification_count == 20


class TestVerifyByFingerprint:
    """Tests for verification by certificate hash."""

    @pytest.mark.asyncio
    async def test_hash_is_case_insensitive(self, verification_service, minted):
        result = await verification_service.verify_by_fingerprint(minted.blockchain.certificate_hash.upper())
        assert result.certificate.id == minted.id
        assert result.is_valid is True

    @pytest.mark.asyncio
    async def test_unknown_hash(self, verification_service):
        with pytest.raises(NotFound, match="hash"):
            await verification_service.verify_by_fingerprint("e" * 64)


class TestVerifyQR:
    """Tests for QR payload verification."""

    @pytest.mark.asyncio
    async def test_verification_url(self, verification_service, minted):
        result = await verification_service.verify_qr(minted.metadata.verification_link)
        assert result.certificate.id == minted.id

    @pytest.mark.asyncio
    async def test_hash_url(self, verification_service, qr, minted):
        result = await verification_service.verify_qr(qr.encode_hash_url(minted.blockchain.certificate_hash))
        assert result.certificate.id == minted.id

    @pytest.mark.asyncio
    async def test_bare_id(self, verification_service, minted):
        result = await verification_service.verify_qr(minted.id)
        assert result.certificate.id == minted.id

    @pytest.mark.asyncio
    async def test_garbage(self, verification_service):
        with pytest.raises(InvalidPayload):
            await verification_service.verify_qr("definitely not a certificate")


class TestBatchVerify:
    """Tests for batch verification."""

    @pytest.mark.asyncio
    async def test_order_and_isolation(self, verification_service, certificate_service, admin, minted, ledger):
        ledger.fail_anchor = True
        pending = (await certificate_service.issue(admin, build_request(student_id="P1"))).certificate
        missing = str(ObjectId())

        identifiers = [minted.id, missing, minted.blockchain.certificate_hash, pending.id]
        result = await verification_service.batch_verify(identifiers)

        assert [item.identifier for item in result.results] == identifiers
        assert [item.success for item in result.results] == [True, False, True, True]
        assert [item.is_valid for item in result.results] == [True, False, True, False]
        assert result.results[1].error == "Certificate not found"
        assert result.total == 4
        assert result.verified_count == 2
        assert result.failed_count == 2


class TestStatistics:
    """Tests for get_statistics."""

    @pytest.mark.asyncio
    async def test_statistics(self, verification_service, certificate_service, admin, minted, ledger):
        revoked = (await certificate_service.issue(admin, build_request(student_id="R1"))).certificate
        await certificate_service.revoke(admin, revoked.id, "Issued in error")
        ledger.fail_anchor = True
        await certificate_service.issue(admin, build_request(student_id="P1"))
        await verification_service.verify_by_id(minted.id)
        await verification_service.verify_by_id(minted.id)

        stats = await verification_service.get_statistics()
        assert stats.total_certificates == 3
        assert stats.valid_certificates == 1
        assert stats.revoked_certificates == 1
        assert stats.pending_certificates == 1
        assert stats.total_verifications == 2
        assert stats.by_status["VERIFIED"] == 1
