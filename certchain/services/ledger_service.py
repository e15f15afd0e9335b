"""
Ledger anchoring for CertChain backend.
Anchors certificate fingerprints on the certificate NFT contract and reads them back.
"""

import asyncio
import itertools
import secrets
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

from web3 import Web3
from web3.exceptions import ContractLogicError
from web3.middleware import ExtraDataToPOAMiddleware
from eth_account import Account

from ..core.config import Settings
from ..core.exceptions import LedgerUnavailable
from ..models.ledger import (
    AcademicSummary, AnchorReceipt, LedgerHashVerification, LedgerVerification, RevocationReceipt
)
from ..utils.logger import get_logger

logger = get_logger("ledger_service")

T = TypeVar("T")

POA_CHAIN_IDS = (80001, 80002, 137)


async def with_ledger_timeout(call: Awaitable[T], timeout: float) -> T:
    """
    Await a ledger call, turning a timeout into LedgerUnavailable.

    Args:
        call: Awaitable returned by a LedgerAnchorClient method
        timeout: Seconds to wait before giving up
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise LedgerUnavailable(f"ledger call timed out after {timeout}s") from e


class LedgerAnchorClient(ABC):
    """Capability to anchor, verify and revoke certificates on a ledger."""

    @abstractmethod
    async def anchor(self, wallet_address: Optional[str], summary: AcademicSummary, fingerprint: str) -> AnchorReceipt:
        """
        Anchor a certificate fingerprint.

        Raises:
            LedgerUnavailable: the transaction was not confirmed
        """

    @abstractmethod
    async def verify(self, token_id: int) -> LedgerVerification: ...

    @abstractmethod
    async def verify_by_fingerprint(self, fingerprint: str) -> Optional[LedgerHashVerification]:
        """Look a fingerprint up on the ledger; None when it was never anchored"""

    @abstractmethod
    async def revoke(self, token_id: int) -> RevocationReceipt: ...

    @property
    def mode(self) -> str:
        return "live"


class Web3LedgerClient(LedgerAnchorClient):
    """Ledger client talking to the deployed certificate contract through web3."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.w3 = self._setup_web3()
        self.account = Account.from_key(settings.blockchain_private_key)
        self.contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(settings.contract_address),
            abi=self._get_certificate_abi(),
        )
        # Nonces come from the same account, so submissions are serialised
        self._tx_lock = threading.Lock()
        logger.info(
            f"Ledger client configured for {settings.blockchain_network} "
            f"(chain {settings.blockchain_chain_id}), contract {settings.contract_address}"
        )

    def _setup_web3(self) -> Web3:
        """Setup Web3 connection"""
        w3 = Web3(Web3.HTTPProvider(
            self.settings.blockchain_rpc_url,
            request_kwargs={"timeout": self.settings.ledger_timeout_seconds},
        ))

        # Add PoA middleware for Polygon networks
        if self.settings.blockchain_chain_id in POA_CHAIN_IDS:
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        return w3

    @staticmethod
    def _get_certificate_abi() -> List[Dict[str, Any]]:
        """ABI of the certificate NFT contract (only the functions the backend calls)"""
        return [
            {
                "inputs": [
                    {"internalType": "address", "name": "to", "type": "address"},
                    {"internalType": "string", "name": "studentName", "type": "string"},
                    {"internalType": "string", "name": "degree", "type": "string"},
                    {"internalType": "string", "name": "institution", "type": "string"},
                    {"internalType": "uint256", "name": "year", "type": "uint256"},
                    {"internalType": "string", "name": "certificateHash", "type": "string"}
                ],
                "name": "mintCertificate",
                "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
                "stateMutability": "nonpayable",
                "type": "function"
            },
            {
                "inputs": [{"internalType": "uint256", "name": "tokenId", "type": "uint256"}],
                "name": "verifyCertificate",
                "outputs": [
                    {"internalType": "string", "name": "studentName", "type": "string"},
                    {"internalType": "string", "name": "degree", "type": "string"},
                    {"internalType": "string", "name": "institution", "type": "string"},
                    {"internalType": "uint256", "name": "year", "type": "uint256"},
                    {"internalType": "string", "name": "certificateHash", "type": "string"},
                    {"internalType": "uint256", "name": "timestamp", "type": "uint256"},
                    {"internalType": "bool", "name": "isValid", "type": "bool"},
                    {"internalType": "address", "name": "owner", "type": "address"}
                ],
                "stateMutability": "view",
                "type": "function"
            },
            {
                "inputs": [{"internalType": "string", "name": "certificateHash", "type": "string"}],
                "name": "verifyCertificateByHash",
                "outputs": [
                    {"internalType": "uint256", "name": "tokenId", "type": "uint256"},
                    {"internalType": "string", "name": "studentName", "type": "string"},
                    {"internalType": "string", "name": "degree", "type": "string"},
                    {"internalType": "string", "name": "institution", "type": "string"},
                    {"internalType": "uint256", "name": "year", "type": "uint256"},
                    {"internalType": "bool", "name": "isValid", "type": "bool"}
                ],
                "stateMutability": "view",
                "type": "function"
            },
            {
                "inputs": [{"internalType": "uint256", "name": "tokenId", "type": "uint256"}],
                "name": "revokeCertificate",
                "outputs": [],
                "stateMutability": "nonpayable",
                "type": "function"
            },
            {
                "anonymous": False,
                "inputs": [
                    {"indexed": True, "internalType": "uint256", "name": "tokenId", "type": "uint256"},
                    {"indexed": True, "internalType": "address", "name": "recipient", "type": "address"},
                    {"indexed": False, "internalType": "string", "name": "certificateHash", "type": "string"}
                ],
                "name": "CertificateIssued",
                "type": "event"
            }
        ]

    def _send_transaction(self, function) -> Any:
        """Sign and send a contract transaction and wait for its receipt"""
        with self._tx_lock:
            transaction = function.build_transaction({
                'from': self.account.address,
                'gas': self.settings.blockchain_gas_limit,
                'gasPrice': self.w3.eth.gas_price,
                'nonce': self.w3.eth.get_transaction_count(self.account.address, 'pending'),
                'chainId': self.settings.blockchain_chain_id,
            })
            signed_txn = self.w3.eth.account.sign_transaction(transaction, self.account.key)
            tx_hash = self.w3.eth.send_raw_transaction(signed_txn.raw_transaction)

        receipt = self.w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.settings.ledger_timeout_seconds
        )
        if receipt.status != 1:
            raise LedgerUnavailable(f"transaction {tx_hash.hex()} reverted")
        return receipt

    def _anchor_sync(self, wallet_address: Optional[str], summary: AcademicSummary, fingerprint: str) -> AnchorReceipt:
        recipient = Web3.to_checksum_address(wallet_address or self.account.address)
        receipt = self._send_transaction(
            self.contract.functions.mintCertificate(
                recipient,
                summary.student_name,
                summary.degree,
                summary.institution,
                summary.year,
                fingerprint,
            )
        )

        events = self.contract.events.CertificateIssued().process_receipt(receipt)
        if not events:
            raise LedgerUnavailable("CertificateIssued event missing from mint receipt")

        tx_hash = receipt.transactionHash.hex()
        logger.info(f"Certificate {fingerprint} anchored with tx hash: {tx_hash}")
        return AnchorReceipt(
            token_id=int(events[0]["args"]["tokenId"]),
            transaction_hash=tx_hash if tx_hash.startswith("0x") else f"0x{tx_hash}",
            block_number=receipt.blockNumber,
            gas_used=str(receipt.gasUsed),
        )

    def _verify_sync(self, token_id: int) -> LedgerVerification:
        result = self.contract.functions.verifyCertificate(token_id).call()
        (student_name, degree, institution, year, certificate_hash, timestamp, is_valid, owner) = result
        return LedgerVerification(
            student_name=student_name,
            degree=degree,
            institution=institution,
            year=int(year),
            certificate_hash=certificate_hash,
            anchored_at=datetime.fromtimestamp(int(timestamp), tz=timezone.utc),
            is_valid=is_valid,
            owner=owner,
        )

    def _verify_by_fingerprint_sync(self, fingerprint: str) -> Optional[LedgerHashVerification]:
        try:
            result = self.contract.functions.verifyCertificateByHash(fingerprint).call()
        except ContractLogicError:
            # The contract reverts for unknown hashes
            return None
        (token_id, student_name, degree, institution, year, is_valid) = result
        if int(token_id) == 0 and not student_name:
            return None
        return LedgerHashVerification(
            token_id=int(token_id),
            student_name=student_name,
            degree=degree,
            institution=institution,
            year=int(year),
            is_valid=is_valid,
        )

    def _revoke_sync(self, token_id: int) -> RevocationReceipt:
        receipt = self._send_transaction(self.contract.functions.revokeCertificate(token_id))
        tx_hash = receipt.transactionHash.hex()
        logger.info(f"Token {token_id} revoked on ledger with tx hash: {tx_hash}")
        return RevocationReceipt(
            transaction_hash=tx_hash if tx_hash.startswith("0x") else f"0x{tx_hash}",
            block_number=receipt.blockNumber,
        )

    async def _run(self, operation: str, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except LedgerUnavailable:
            raise
        except Exception as e:
            logger.error(f"Ledger {operation} failed: {e}")
            raise LedgerUnavailable(f"{operation} failed: {e}") from e

    async def anchor(self, wallet_address: Optional[str], summary: AcademicSummary, fingerprint: str) -> AnchorReceipt:
        return await self._run("anchor", self._anchor_sync, wallet_address, summary, fingerprint)

    async def verify(self, token_id: int) -> LedgerVerification:
        return await self._run("verify", self._verify_sync, token_id)

    async def verify_by_fingerprint(self, fingerprint: str) -> Optional[LedgerHashVerification]:
        return await self._run("verify_by_fingerprint", self._verify_by_fingerprint_sync, fingerprint)

    async def revoke(self, token_id: int) -> RevocationReceipt:
        return await self._run("revoke", self._revoke_sync, token_id)


class MockLedgerClient(LedgerAnchorClient):
    """
    In-process ledger used when no contract is configured.

    Identifiers are synthetic but well formed, and every anchored token is
    remembered so that verify, verify_by_fingerprint and revoke agree with
    what anchor returned.
    """

    ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

    def __init__(self, first_block: int = 1_000_000):
        self._tokens: Dict[int, Dict[str, Any]] = {}
        self._by_fingerprint: Dict[str, int] = {}
        self._token_ids = itertools.count(1)
        self._blocks = itertools.count(first_block)

    @property
    def mode(self) -> str:
        return "mock"

    @staticmethod
    def _tx_hash() -> str:
        return "0x" + secrets.token_hex(32)

    async def anchor(self, wallet_address: Optional[str], summary: AcademicSummary, fingerprint: str) -> AnchorReceipt:
        token_id = next(self._token_ids)
        self._tokens[token_id] = {
            "summary": summary,
            "fingerprint": fingerprint,
            "owner": wallet_address or self.ZERO_ADDRESS,
            "anchored_at": datetime.now(timezone.utc),
            "revoked": False,
        }
        self._by_fingerprint[fingerprint] = token_id
        receipt = AnchorReceipt(
            token_id=token_id,
            transaction_hash=self._tx_hash(),
            block_number=next(self._blocks),
            gas_used="21000",
        )
        logger.info(f"Mock-anchored certificate {fingerprint} as token {token_id}")
        return receipt

    def _token(self, token_id: int) -> Dict[str, Any]:
        token = self._tokens.get(token_id)
        if token is None:
            raise LedgerUnavailable(f"token {token_id} is unknown to the mock ledger")
        return token

    async def verify(self, token_id: int) -> LedgerVerification:
        token = self._token(token_id)
        summary: AcademicSummary = token["summary"]
        return LedgerVerification(
            student_name=summary.student_name,
            degree=summary.degree,
            institution=summary.institution,
            year=summary.year,
            certificate_hash=token["fingerprint"],
            anchored_at=token["anchored_at"],
            is_valid=not token["revoked"],
            owner=token["owner"],
        )

    async def verify_by_fingerprint(self, fingerprint: str) -> Optional[LedgerHashVerification]:
        token_id = self._by_fingerprint.get(fingerprint)
        if token_id is None:
            return None
        token = self._tokens[token_id]
        summary: AcademicSummary = token["summary"]
        return LedgerHashVerification(
            token_id=token_id,
            student_name=summary.student_name,
            degree=summary.degree,
            institution=summary.institution,
            year=summary.year,
            is_valid=not token["revoked"],
        )

    async def revoke(self, token_id: int) -> RevocationReceipt:
        self._token(token_id)["revoked"] = True
        return RevocationReceipt(transaction_hash=self._tx_hash(), block_number=next(self._blocks))


def create_ledger_client(settings: Settings) -> LedgerAnchorClient:
    """
    Select the ledger implementation once at startup.

    The live client is used only when the RPC URL, the private key and the
    contract address are all configured; otherwise the mock client is used.
    """
    if settings.ledger_configured:
        return Web3LedgerClient(settings)

    logger.warning("Ledger not configured - anchoring certificates on the in-process mock ledger")
    return MockLedgerClient()
