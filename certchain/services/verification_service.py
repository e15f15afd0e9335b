"""
Certificate verification service.
Cross-checks stored certificates against the ledger and counts verifications.
"""

import asyncio
from typing import Optional, List

from ..core.config import Settings
from ..core.exceptions import NotFound
from ..db.certificate_store import CertificateStore, utcnow
from ..db.college_store import CollegeStore
from ..models.certificate import CertificateInDB, CertificatePublicView, CertificateStatus
from ..models.college import CollegeSummary
from ..models.ledger import LedgerVerification
from ..models.verification import (
    CERTIFICATE_ID_PATTERN, BatchVerificationItem, BatchVerificationResult,
    VerificationResult, VerificationStats,
)
from .ledger_service import LedgerAnchorClient, with_ledger_timeout
from .qr_service import PAYLOAD_CERTIFICATE_HASH, QRCodeService
from ..utils.logger import get_logger

logger = get_logger("verification_service")


class VerificationService:
    """Verification engine behind the public verify endpoints"""

    def __init__(
        self,
        store: CertificateStore,
        colleges: CollegeStore,
        ledger: LedgerAnchorClient,
        qr: QRCodeService,
        settings: Settings,
    ):
        self.store = store
        self.colleges = colleges
        self.ledger = ledger
        self.qr = qr
        self.settings = settings

    async def _ledger_signal(self, certificate: CertificateInDB) -> Optional[LedgerVerification]:
        if certificate.token_id is None:
            return None
        try:
            return await with_ledger_timeout(
                self.ledger.verify(certificate.token_id), self.settings.ledger_timeout_seconds
            )
        except Exception as e:
            logger.warning(f"Ledger verification of token {certificate.token_id} failed: {e}")
            return None

    async def _college_summary(self, college_id: str) -> Optional[CollegeSummary]:
        college = await self.colleges.find_by_id(college_id)
        return CollegeSummary.from_college(college) if college else None

    async def _verify(self, certificate: CertificateInDB) -> VerificationResult:
        """
        Shared verification routine.

        A certificate is valid when it is MINTED or VERIFIED and the ledger,
        if it answered, agrees. A ledger-confirmed MINTED certificate is
        promoted to VERIFIED.
        """
        ledger = await self._ledger_signal(certificate)
        is_valid = certificate.status.is_valid and (ledger is None or ledger.is_valid)

        verified_at = utcnow()
        count = await self.store.increment_verification(certificate.id, verified_at)
        if count is None:
            raise NotFound("Certificate not found")

        if ledger is not None and ledger.is_valid and certificate.status == CertificateStatus.MINTED:
            promoted = await self.store.transition_status(
                certificate.id, [CertificateStatus.MINTED], CertificateStatus.VERIFIED
            )
            if promoted is not None:
                logger.info(f"Certificate {certificate.id} confirmed on ledger, status VERIFIED")
                certificate = promoted

        return VerificationResult(
            is_valid=is_valid,
            certificate=CertificatePublicView.from_certificate(certificate),
            college=await self._college_summary(certificate.college_id),
            ledger_verification=ledger,
            verification_count=count,
            last_verified=verified_at,
        )

    async def verify_by_id(self, certificate_id: str) -> VerificationResult:
        certificate = await self.store.find_by_id(certificate_id)
        if certificate is None:
            raise NotFound("Certificate not found")
        return await self._verify(certificate)

    async def verify_by_fingerprint(self, certificate_hash: str) -> VerificationResult:
        certificate = await self.store.find_by_fingerprint(certificate_hash.lower())
        if certificate is None:
            raise NotFound("Certificate not found with this hash")
        return await self._verify(certificate)

    async def verify_qr(self, qr_data: str) -> VerificationResult:
        """Verify whatever a scanned QR code contains: id, hash or verification URL"""
        payload = self.qr.decode_payload(qr_data)
        if payload.kind == PAYLOAD_CERTIFICATE_HASH:
            return await self.verify_by_fingerprint(payload.value)
        return await self.verify_by_id(payload.value)

    async def _verify_identifier(self, identifier: str) -> BatchVerificationItem:
        try:
            if CERTIFICATE_ID_PATTERN.match(identifier):
                result = await self.verify_by_id(identifier)
            else:
                result = await self.verify_by_fingerprint(identifier)
            return BatchVerificationItem(
                identifier=identifier, success=True, is_valid=result.is_valid, result=result
            )
        except NotFound:
            return BatchVerificationItem(identifier=identifier, success=False, error="Certificate not found")
        except Exception as e:
            logger.error(f"Batch verification of {identifier} failed: {e}")
            return BatchVerificationItem(identifier=identifier, success=False, error=str(e))

    async def batch_verify(self, identifiers: List[str]) -> BatchVerificationResult:
        """
        Verify several certificates at once.

        Results keep the input order and one failing identifier never
        affects the others.
        """
        results = await asyncio.gather(*(self._verify_identifier(identifier) for identifier in identifiers))
        verified_count = sum(1 for item in results if item.success and item.is_valid)
        return BatchVerificationResult(
            total=len(results),
            verified_count=verified_count,
            failed_count=len(results) - verified_count,
            results=list(results),
        )

    async def get_statistics(self) -> VerificationStats:
        return await self.store.aggregate_stats()
