"""
Background retry of ledger anchoring and ledger revocation.

Certificates whose anchor failed at issuance stay PENDING with a scheduled
``next_anchor_attempt_at``. The worker picks them up, checks whether an
earlier attempt landed after all, and otherwise anchors them again with
exponential backoff between attempts.
"""

import asyncio
from typing import Optional

from ..core.config import Settings
from ..db.certificate_store import CertificateStore, utcnow
from ..db.college_store import CollegeStore
from ..models.certificate import CertificateInDB
from ..models.ledger import AnchorReceipt
from .certificate_service import CertificateService
from .ledger_service import LedgerAnchorClient, with_ledger_timeout
from ..utils.logger import get_logger

logger = get_logger("anchoring_worker")


class AnchoringWorker:
    """Periodic task that finishes anchors and ledger revocations that failed in-request"""

    def __init__(
        self,
        store: CertificateStore,
        colleges: CollegeStore,
        ledger: LedgerAnchorClient,
        certificates: CertificateService,
        settings: Settings,
    ):
        self.store = store
        self.colleges = colleges
        self.ledger = ledger
        self.certificates = certificates
        self.settings = settings
        self._task: Optional[asyncio.Task] = None

    async def _existing_anchor(self, certificate: CertificateInDB) -> Optional[AnchorReceipt]:
        """Token of an earlier attempt that reached the ledger despite reporting failure"""
        try:
            found = await with_ledger_timeout(
                self.ledger.verify_by_fingerprint(certificate.blockchain.certificate_hash),
                self.settings.ledger_timeout_seconds,
            )
        except Exception as e:
            logger.warning(f"Ledger lookup of {certificate.blockchain.certificate_hash} failed: {e}")
            return None
        if found is None or found.token_id is None:
            return None
        # Transaction details of the earlier attempt are not recoverable from the lookup
        return AnchorReceipt(token_id=found.token_id)

    async def retry_anchor(self, certificate: CertificateInDB) -> bool:
        """
        Make one more anchor attempt for a pending certificate.

        Returns:
            True when the certificate ended up anchored
        """
        seen = certificate.blockchain.next_anchor_attempt_at
        lease_until = utcnow() + self.certificates.anchor_lease()
        if seen is None or not await self.store.claim_anchor_attempt(certificate.id, seen, lease_until):
            logger.debug(f"Certificate {certificate.id} claimed elsewhere, skipping")
            return False

        receipt = await self._existing_anchor(certificate)
        if receipt is not None:
            logger.info(f"Certificate {certificate.id} already on ledger as token {receipt.token_id}, adopting it")
        else:
            college = await self.colleges.find_by_id(certificate.college_id)
            try:
                receipt = await self.certificates.anchor_certificate(certificate, college)
            except Exception as e:
                attempts = certificate.blockchain.anchor_attempts + 1
                logger.error(f"Anchor retry {attempts} for certificate {certificate.id} failed: {e}")
                await self.certificates.record_anchor_failure(certificate, e)
                if attempts >= self.settings.anchor_max_attempts:
                    logger.error(f"Certificate {certificate.id} reached {attempts} anchor attempts, giving up")
                return False

        await self.certificates.finalize_anchor(certificate.id, receipt)
        return True

    async def retry_revocation(self, certificate: CertificateInDB) -> bool:
        try:
            receipt = await with_ledger_timeout(
                self.ledger.revoke(certificate.token_id), self.settings.ledger_timeout_seconds
            )
        except Exception as e:
            logger.error(f"Ledger revocation retry for token {certificate.token_id} failed: {e}")
            return False

        await self.store.update(certificate.id, {
            "blockchain.revocation_pending": False,
            "blockchain.revocation_transaction_hash": receipt.transaction_hash,
        })
        logger.info(f"Token {certificate.token_id} revoked on ledger")
        return True

    async def run_once(self) -> int:
        """
        Run one retry cycle.

        Returns:
            Number of anchors and revocations completed
        """
        completed = 0
        batch_size = self.settings.anchor_retry_batch_size

        pending = await self.store.find_pending_anchors(utcnow(), self.settings.anchor_max_attempts, batch_size)
        for certificate in pending:
            if await self.retry_anchor(certificate):
                completed += 1

        for certificate in await self.store.find_pending_revocations(batch_size):
            if await self.retry_revocation(certificate):
                completed += 1

        if pending or completed:
            logger.info(f"Anchoring cycle: {len(pending)} pending anchors, {completed} completed")
        return completed

    async def _run_forever(self):
        while True:
            await asyncio.sleep(self.settings.anchor_retry_interval_seconds)
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Anchoring cycle error: {e}")

    def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self._run_forever())
            logger.info(f"Anchoring worker started (interval: {self.settings.anchor_retry_interval_seconds}s)")

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Anchoring worker stopped")
