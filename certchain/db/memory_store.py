"""
In-process certificate and college stores.

Used by the test-suite and by local runs with ``MONGODB_URL=memory://``.
A single asyncio lock serialises writes, which gives the same atomicity
the MongoDB store gets from single-document updates.
"""

import asyncio
import copy
from datetime import datetime
from typing import Optional, List, Dict, Any, Iterable

from bson import ObjectId

from ..core.exceptions import DuplicateAccessCode, DuplicateFingerprint
from ..models.certificate import CertificateInDB, CertificateStatus
from ..models.college import CollegeInDB
from ..models.verification import VerificationStats
from ..utils.serialization import prepare_certificate_document
from .certificate_store import CertificateStore, build_stats, check_transition, utcnow
from .college_store import CollegeStore


def _set_path(document: Dict[str, Any], path: str, value: Any) -> None:
    keys = path.split(".")
    target = document
    for key in keys[:-1]:
        if target.get(key) is None:
            target[key] = {}
        target = target[key]
    target[keys[-1]] = copy.deepcopy(value)


def _get_path(document: Dict[str, Any], path: str) -> Any:
    value: Any = document
    for key in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


class InMemoryCertificateStore(CertificateStore):
    """Dictionary-backed certificate store with the same guarantees as MongoDB."""

    def __init__(self) -> None:
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    def _to_model(self, document: Optional[Dict[str, Any]]) -> Optional[CertificateInDB]:
        if document is None:
            return None
        return CertificateInDB.model_validate(prepare_certificate_document(copy.deepcopy(document)))

    async def create(self, document: Dict[str, Any]) -> str:
        async with self._lock:
            fingerprint = _get_path(document, "blockchain.certificate_hash")
            api_code = document.get("api_code")
            for existing in self._documents.values():
                if _get_path(existing, "blockchain.certificate_hash") == fingerprint:
                    raise DuplicateFingerprint(f"certificate hash {fingerprint} already exists")
                if existing.get("api_code") == api_code:
                    raise DuplicateAccessCode(f"api code {api_code} already exists")
            certificate_id = str(ObjectId())
            stored = copy.deepcopy(document)
            stored["_id"] = certificate_id
            self._documents[certificate_id] = stored
        return certificate_id

    async def find_by_id(self, certificate_id: str) -> Optional[CertificateInDB]:
        return self._to_model(self._documents.get(str(certificate_id).lower()))

    async def find_by_fingerprint(self, certificate_hash: str) -> Optional[CertificateInDB]:
        wanted = certificate_hash.lower()
        for document in self._documents.values():
            if _get_path(document, "blockchain.certificate_hash") == wanted:
                return self._to_model(document)
        return None

    async def find_by_access_code(self, api_code: str) -> Optional[CertificateInDB]:
        for document in self._documents.values():
            if document.get("api_code") == api_code:
                return self._to_model(document)
        return None

    async def update(self, certificate_id: str, fields: Dict[str, Any]) -> Optional[CertificateInDB]:
        async with self._lock:
            document = self._documents.get(str(certificate_id).lower())
            if document is None:
                return None
            for path, value in {**fields, "updated_at": utcnow()}.items():
                _set_path(document, path, value)
            return self._to_model(document)

    async def transition_status(
        self,
        certificate_id: str,
        from_statuses: Iterable[CertificateStatus],
        to: CertificateStatus,
        fields: Optional[Dict[str, Any]] = None,
    ) -> Optional[CertificateInDB]:
        sources = check_transition(from_statuses, to)
        async with self._lock:
            document = self._documents.get(str(certificate_id).lower())
            if document is None or document.get("status") not in sources:
                return None
            for path, value in {**(fields or {}), "status": to.value, "updated_at": utcnow()}.items():
                _set_path(document, path, value)
            return self._to_model(document)

    async def increment_verification(self, certificate_id: str, verified_at: datetime) -> Optional[int]:
        async with self._lock:
            document = self._documents.get(str(certificate_id).lower())
            if document is None:
                return None
            document["verification_count"] = document.get("verification_count", 0) + 1
            document["last_verified"] = verified_at
            return document["verification_count"]

    async def record_anchor_failure(
        self, certificate_id: str, error: str, next_attempt_at: Optional[datetime]
    ) -> Optional[CertificateInDB]:
        async with self._lock:
            document = self._documents.get(str(certificate_id).lower())
            if document is None:
                return None
            attempts = _get_path(document, "blockchain.anchor_attempts") or 0
            _set_path(document, "blockchain.anchor_attempts", attempts + 1)
            _set_path(document, "blockchain.last_anchor_error", error)
            _set_path(document, "blockchain.next_anchor_attempt_at", next_attempt_at)
            document["updated_at"] = utcnow()
            return self._to_model(document)

    async def claim_anchor_attempt(
        self, certificate_id: str, seen_next_attempt_at: datetime, lease_until: datetime
    ) -> bool:
        async with self._lock:
            document = self._documents.get(str(certificate_id).lower())
            if document is None or document.get("status") != CertificateStatus.PENDING.value:
                return False
            if _get_path(document, "blockchain.next_anchor_attempt_at") != seen_next_attempt_at:
                return False
            _set_path(document, "blockchain.next_anchor_attempt_at", lease_until)
            return True

    async def find_pending_anchors(self, now: datetime, max_attempts: int, limit: int) -> List[CertificateInDB]:
        pending = []
        for document in self._documents.values():
            next_attempt_at = _get_path(document, "blockchain.next_anchor_attempt_at")
            if (
                document.get("status") == CertificateStatus.PENDING.value
                and _get_path(document, "blockchain.token_id") is None
                and (_get_path(document, "blockchain.anchor_attempts") or 0) < max_attempts
                and next_attempt_at is not None
                and next_attempt_at <= now
            ):
                pending.append(document)
        pending.sort(key=lambda doc: _get_path(doc, "blockchain.next_anchor_attempt_at"))
        return [self._to_model(doc) for doc in pending[:limit]]

    async def find_pending_revocations(self, limit: int) -> List[CertificateInDB]:
        pending = [
            document for document in self._documents.values()
            if document.get("status") == CertificateStatus.REVOKED.value
            and _get_path(document, "blockchain.revocation_pending")
            and _get_path(document, "blockchain.token_id") is not None
        ]
        return [self._to_model(doc) for doc in pending[:limit]]

    def _college_documents(self, college_id: str, status: Optional[CertificateStatus]) -> List[Dict[str, Any]]:
        documents = [
            document for document in self._documents.values()
            if document.get("college_id") == college_id
            and (status is None or document.get("status") == status.value)
        ]
        documents.sort(key=lambda doc: doc.get("created_at"), reverse=True)
        return documents

    async def list_by_college(
        self, college_id: str, status: Optional[CertificateStatus], skip: int, limit: int
    ) -> List[CertificateInDB]:
        documents = self._college_documents(college_id, status)[skip:skip + limit]
        return [self._to_model(doc) for doc in documents]

    async def count_by_college(self, college_id: str, status: Optional[CertificateStatus]) -> int:
        return len(self._college_documents(college_id, status))

    async def list_by_issuer(self, issuer_id: str) -> List[CertificateInDB]:
        documents = [doc for doc in self._documents.values() if doc.get("issued_by") == issuer_id]
        documents.sort(key=lambda doc: doc.get("created_at"), reverse=True)
        return [self._to_model(doc) for doc in documents]

    async def aggregate_stats(self) -> VerificationStats:
        rows: Dict[str, Dict[str, Any]] = {}
        for document in self._documents.values():
            row = rows.setdefault(document["status"], {"_id": document["status"], "count": 0, "verifications": 0})
            row["count"] += 1
            row["verifications"] += document.get("verification_count", 0)
        return build_stats(rows.values())


class InMemoryCollegeStore(CollegeStore):
    """Dictionary-backed college lookup."""

    def __init__(self) -> None:
        self._colleges: Dict[str, CollegeInDB] = {}

    def add(self, college: CollegeInDB) -> CollegeInDB:
        self._colleges[college.id] = college
        return college

    async def find_by_id(self, college_id: str) -> Optional[CollegeInDB]:
        return self._colleges.get(college_id)
