"""
Certificate issuance and revocation service.
Persists certificates, renders their QR codes and anchors them on the ledger.
"""

import math
from datetime import timedelta
from typing import Optional, List, Dict, Any, Tuple

from ..core.config import Settings
from ..core.exceptions import (
    AlreadyRevoked, DuplicateAccessCode, DuplicateFingerprint, IssuanceFailed, NotAssociated, NotFound
)
from ..db.certificate_store import CertificateStore, utcnow
from ..db.college_store import CollegeStore
from ..models.auth import Principal
from ..models.certificate import (
    BatchIssueItem, BatchIssueResult, CertificateInDB, CertificatePage, CertificateStatus,
    IssuanceResult, IssueCertificateRequest, Pagination, RevocationResult, StudentAccess,
    new_certificate_document, sources_for,
)
from ..models.college import CollegeInDB
from ..models.ledger import AcademicSummary, AnchorReceipt
from .fingerprint import compute_fingerprint, generate_access_code
from .ledger_service import LedgerAnchorClient, with_ledger_timeout
from .qr_service import QRCodeService
from ..utils.logger import get_logger

logger = get_logger("certificate_service")

ANCHOR_FAILED_WARNING = "Blockchain minting failed, certificate saved and will be anchored automatically"
LEDGER_REVOKE_FAILED_WARNING = "Blockchain revocation failed, it will be retried automatically"


def academic_summary(certificate: CertificateInDB, college: Optional[CollegeInDB]) -> AcademicSummary:
    """Summary written to the ledger next to the fingerprint"""
    return AcademicSummary(
        student_name=certificate.student_data.name,
        degree=certificate.academic_data.degree,
        institution=college.name if college else "",
        year=certificate.academic_data.graduation_year,
    )


class CertificateService:
    """Lifecycle manager for certificates: issue, anchor, revoke and list"""

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

    # Anchoring helpers shared with the anchoring worker

    def anchor_backoff(self, attempts: int) -> timedelta:
        """Delay before the next anchor attempt after ``attempts`` failures"""
        delay = self.settings.anchor_backoff_base_seconds * (2 ** attempts)
        return timedelta(seconds=min(delay, self.settings.anchor_backoff_max_seconds))

    def anchor_lease(self) -> timedelta:
        """How long an in-flight anchor attempt keeps other attempts away"""
        return timedelta(seconds=self.settings.ledger_timeout_seconds + self.settings.anchor_backoff_base_seconds)

    async def anchor_certificate(
        self, certificate: CertificateInDB, college: Optional[CollegeInDB]
    ) -> AnchorReceipt:
        wallet_address = college.blockchain.wallet_address if college else None
        return await with_ledger_timeout(
            self.ledger.anchor(
                wallet_address,
                academic_summary(certificate, college),
                certificate.blockchain.certificate_hash,
            ),
            self.settings.ledger_timeout_seconds,
        )

    async def finalize_anchor(self, certificate_id: str, receipt: AnchorReceipt) -> Optional[CertificateInDB]:
        """
        Store a confirmed anchor and move the certificate PENDING -> MINTED.

        If the certificate was revoked while the anchor was in flight, the
        anchoring fields are still stored, the status stays REVOKED and the
        ledger revocation is queued.
        """
        fields = {
            "blockchain.token_id": receipt.token_id,
            "blockchain.transaction_hash": receipt.transaction_hash,
            "blockchain.block_number": receipt.block_number,
            "blockchain.next_anchor_attempt_at": None,
            "blockchain.last_anchor_error": None,
        }
        updated = await self.store.transition_status(
            certificate_id, [CertificateStatus.PENDING], CertificateStatus.MINTED, fields
        )
        if updated is not None:
            logger.info(f"Certificate {certificate_id} minted as token {receipt.token_id}")
            return updated

        current = await self.store.find_by_id(certificate_id)
        if current is None:
            logger.error(f"Certificate {certificate_id} disappeared while anchoring")
            return None
        if current.status == CertificateStatus.REVOKED:
            logger.warning(f"Certificate {certificate_id} was revoked while anchoring, queueing ledger revocation")
            return await self.store.update(certificate_id, {**fields, "blockchain.revocation_pending": True})

        logger.warning(f"Certificate {certificate_id} already {current.status.value}, anchor receipt not applied")
        return current

    async def record_anchor_failure(self, certificate: CertificateInDB, error: Exception) -> Optional[CertificateInDB]:
        next_attempt_at = utcnow() + self.anchor_backoff(certificate.blockchain.anchor_attempts)
        return await self.store.record_anchor_failure(certificate.id, str(error), next_attempt_at)

    # Issuance

    async def resolve_college(self, principal: Principal) -> CollegeInDB:
        """
        Resolve the college the principal issues for.

        Raises:
            NotAssociated: the principal has no college or it does not exist
        """
        if not principal.college_id:
            raise NotAssociated("Issuer must be associated with a college")
        college = await self.colleges.find_by_id(principal.college_id)
        if college is None:
            raise NotAssociated("Issuer must be associated with a college")
        return college

    async def _create_record(
        self, principal: Principal, college: CollegeInDB, request: IssueCertificateRequest
    ) -> Tuple[str, str]:
        """Insert the certificate, retrying uniqueness conflicts with fresh values"""
        student_data = request.student_data
        academic_data = request.academic_data

        issued_at = utcnow()
        certificate_hash = compute_fingerprint(student_data, academic_data, issued_at)
        api_code = generate_access_code(college.access_code_prefix, issued_at.year, issued_at)

        for attempt in range(1, self.settings.issuance_max_attempts + 1):
            document = new_certificate_document(
                student_data=student_data,
                academic_data=academic_data,
                college_id=college.id,
                issued_by=principal.user_id,
                api_code=api_code,
                certificate_hash=certificate_hash,
                issued_at=issued_at,
                wallet_address=college.blockchain.wallet_address,
                contract_address=self.settings.contract_address,
            )
            # The issuing request owns the first anchor attempt
            document["blockchain"]["next_anchor_attempt_at"] = issued_at + self.anchor_lease()
            try:
                certificate_id = await self.store.create(document)
                return certificate_id, api_code
            except DuplicateFingerprint:
                logger.warning(f"Certificate hash collision on attempt {attempt}, re-stamping issuance time")
                issued_at = max(utcnow(), issued_at + timedelta(milliseconds=1))
                certificate_hash = compute_fingerprint(student_data, academic_data, issued_at)
            except DuplicateAccessCode:
                logger.warning(f"API code collision on attempt {attempt}, generating a new code")
                api_code = generate_access_code(college.access_code_prefix, utcnow().year)

        raise IssuanceFailed(
            f"Could not store certificate after {self.settings.issuance_max_attempts} attempts"
        )

    async def issue(self, principal: Principal, request: IssueCertificateRequest) -> IssuanceResult:
        """
        Issue a certificate for the principal's college.

        The record is persisted first; the QR code and the ledger anchor are
        best effort and only add warnings when they fail.

        Args:
            principal: Issuing admin
            request: Student and academic data

        Returns:
            Issued certificate and the student's access details
        """
        college = await self.resolve_college(principal)
        certificate_id, api_code = await self._create_record(principal, college, request)
        logger.info(f"Certificate {certificate_id} stored for college {college.id}")

        warnings: List[str] = []
        verification_link = self.qr.encode_certificate_url(certificate_id)
        metadata: Dict[str, Any] = {"metadata.verification_link": verification_link}
        try:
            metadata["metadata.qr_code"] = self.qr.render_qr_data_url(verification_link)
        except Exception as e:
            logger.warning(f"QR code generation failed for certificate {certificate_id}: {e}")
            warnings.append("QR code generation failed")

        certificate = await self.store.update(certificate_id, metadata)
        if certificate is None:
            raise IssuanceFailed(f"Certificate {certificate_id} vanished during issuance")

        try:
            receipt = await self.anchor_certificate(certificate, college)
        except Exception as e:
            logger.error(f"Anchoring certificate {certificate_id} failed: {e}")
            certificate = await self.record_anchor_failure(certificate, e) or certificate
            warnings.append(ANCHOR_FAILED_WARNING)
        else:
            certificate = await self.finalize_anchor(certificate_id, receipt) or certificate

        if certificate.status == CertificateStatus.MINTED:
            message = "Certificate issued successfully"
        else:
            message = "Certificate created, blockchain minting pending"

        return IssuanceResult(
            message=message,
            certificate=certificate,
            student_access=StudentAccess(
                api_code=api_code,
                verification_link=certificate.metadata.verification_link,
                qr_code=certificate.metadata.qr_code,
            ),
            warning="; ".join(warnings) or None,
        )

    async def issue_batch(self, principal: Principal, requests: List[IssueCertificateRequest]) -> BatchIssueResult:
        """Issue several certificates, isolating failures and keeping input order"""
        await self.resolve_college(principal)

        results = []
        for index, request in enumerate(requests):
            email = str(request.student_data.email)
            try:
                issued = await self.issue(principal, request)
                results.append(BatchIssueItem(index=index, success=True, student_email=email, result=issued))
            except Exception as e:
                logger.error(f"Batch issuance item {index} failed: {e}")
                results.append(BatchIssueItem(index=index, success=False, student_email=email, error=str(e)))

        succeeded = sum(1 for item in results if item.success)
        logger.info(f"Batch issuance completed: {succeeded} successful, {len(results) - succeeded} failed")
        return BatchIssueResult(
            total=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            results=results,
        )

    # Revocation

    async def _revoke_on_ledger(self, token_id: int) -> Tuple[Dict[str, Any], Optional[str]]:
        """Revoke a token on the ledger, returning the fields to store and an optional warning"""
        try:
            receipt = await with_ledger_timeout(self.ledger.revoke(token_id), self.settings.ledger_timeout_seconds)
        except Exception as e:
            logger.error(f"Ledger revocation of token {token_id} failed: {e}")
            return {"blockchain.revocation_pending": True}, LEDGER_REVOKE_FAILED_WARNING
        return {
            "blockchain.revocation_transaction_hash": receipt.transaction_hash,
            "blockchain.revocation_pending": False,
        }, None

    async def revoke(self, principal: Principal, certificate_id: str, reason: str) -> RevocationResult:
        """
        Revoke a certificate.

        A failed ledger revocation does not block the local revocation; it is
        flagged and retried by the anchoring worker.

        Raises:
            NotFound: no certificate with this id
            AlreadyRevoked: the certificate is already revoked
        """
        certificate = await self.store.find_by_id(certificate_id)
        if certificate is None:
            raise NotFound("Certificate not found")
        if certificate.status == CertificateStatus.REVOKED:
            raise AlreadyRevoked("Certificate is already revoked")

        fields: Dict[str, Any] = {
            "metadata.revocation_reason": reason,
            "metadata.revoked_at": utcnow(),
            "metadata.revoked_by": principal.user_id,
        }

        warning = None
        if certificate.token_id is not None:
            ledger_fields, warning = await self._revoke_on_ledger(certificate.token_id)
            fields.update(ledger_fields)

        updated = await self.store.transition_status(
            certificate.id, sources_for(CertificateStatus.REVOKED), CertificateStatus.REVOKED, fields
        )
        if updated is None:
            current = await self.store.find_by_id(certificate.id)
            if current is None:
                raise NotFound("Certificate not found")
            raise AlreadyRevoked("Certificate is already revoked")

        if certificate.token_id is None and updated.token_id is not None:
            # The anchor landed between the read and the status change
            logger.warning(f"Certificate {certificate.id} was minted while revoking, revoking token {updated.token_id}")
            ledger_fields, warning = await self._revoke_on_ledger(updated.token_id)
            updated = await self.store.update(certificate.id, ledger_fields) or updated

        logger.info(f"Certificate {certificate.id} revoked by {principal.user_id}")
        return RevocationResult(message="Certificate revoked successfully", certificate=updated, warning=warning)

    # Reads

    async def get_by_id(self, certificate_id: str) -> CertificateInDB:
        certificate = await self.store.find_by_id(certificate_id)
        if certificate is None:
            raise NotFound("Certificate not found")
        return certificate

    async def get_by_access_code(self, api_code: str) -> CertificateInDB:
        """Student access by API code; every lookup counts as a verification"""
        certificate = await self.store.find_by_access_code(api_code.strip().upper())
        if certificate is None:
            raise NotFound("Certificate not found with this API code")

        verified_at = utcnow()
        count = await self.store.increment_verification(certificate.id, verified_at)
        if count is not None:
            certificate = certificate.model_copy(update={"verification_count": count, "last_verified": verified_at})
        return certificate

    async def list_issued_by(self, principal: Principal) -> List[CertificateInDB]:
        return await self.store.list_by_issuer(principal.user_id)

    async def list_college_certificates(
        self,
        principal: Principal,
        status: Optional[CertificateStatus] = None,
        page: int = 1,
        limit: int = 10,
    ) -> CertificatePage:
        college = await self.resolve_college(principal)
        page = max(page, 1)
        skip = (page - 1) * limit

        certificates = await self.store.list_by_college(college.id, status, skip, limit)
        total = await self.store.count_by_college(college.id, status)
        return CertificatePage(
            certificates=certificates,
            pagination=Pagination(current=page, pages=math.ceil(total / limit) if limit else 0, total=total),
        )
