"""
Certificate store: create/read/update of certificate records.

The store owns the uniqueness guarantees (fingerprint, access code) and the
atomic primitives the lifecycle manager and verification engine rely on:
the verification counter increment and compare-and-set status transitions.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Iterable

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from ..core.exceptions import (
    DuplicateAccessCode, DuplicateFingerprint, InvalidTransition, StoreUnavailable
)
from ..models.certificate import CertificateInDB, CertificateStatus
from ..models.verification import VerificationStats
from ..utils.serialization import prepare_certificate_document
from ..utils.logger import get_logger

logger = get_logger("certificate_store")

FINGERPRINT_FIELD = "blockchain.certificate_hash"
ACCESS_CODE_FIELD = "api_code"


def utcnow() -> datetime:
    """Current UTC time truncated to the millisecond precision the store keeps"""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def check_transition(from_statuses: Iterable[CertificateStatus], to: CertificateStatus) -> List[str]:
    """Validate a compare-and-set transition and return the source values for the filter"""
    sources = list(from_statuses)
    for source in sources:
        if not source.can_transition_to(to):
            raise InvalidTransition(f"{source.value} -> {to.value} is not allowed")
    return [source.value for source in sources]


def build_stats(rows: Iterable[Dict[str, Any]]) -> VerificationStats:
    """Fold per-status aggregation rows into the statistics model"""
    by_status = {status.value: 0 for status in CertificateStatus}
    total_verifications = 0
    for row in rows:
        by_status[str(row["_id"])] = row.get("count", 0)
        total_verifications += row.get("verifications", 0) or 0

    return VerificationStats(
        total_certificates=sum(by_status.values()),
        total_verifications=total_verifications,
        valid_certificates=by_status[CertificateStatus.MINTED.value] + by_status[CertificateStatus.VERIFIED.value],
        revoked_certificates=by_status[CertificateStatus.REVOKED.value],
        pending_certificates=by_status[CertificateStatus.PENDING.value],
        by_status=by_status,
    )


class CertificateStore(ABC):
    """Persistence capability consumed by the certificate core."""

    @abstractmethod
    async def create(self, document: Dict[str, Any]) -> str:
        """
        Insert a new certificate.

        Returns:
            The store-assigned identifier

        Raises:
            DuplicateFingerprint: certificate hash already stored
            DuplicateAccessCode: access code already stored
        """

    @abstractmethod
    async def find_by_id(self, certificate_id: str) -> Optional[CertificateInDB]: ...

    @abstractmethod
    async def find_by_fingerprint(self, certificate_hash: str) -> Optional[CertificateInDB]: ...

    @abstractmethod
    async def find_by_access_code(self, api_code: str) -> Optional[CertificateInDB]: ...

    @abstractmethod
    async def update(self, certificate_id: str, fields: Dict[str, Any]) -> Optional[CertificateInDB]:
        """Set the given (dotted) fields and return the updated certificate"""

    @abstractmethod
    async def transition_status(
        self,
        certificate_id: str,
        from_statuses: Iterable[CertificateStatus],
        to: CertificateStatus,
        fields: Optional[Dict[str, Any]] = None,
    ) -> Optional[CertificateInDB]:
        """
        Atomically move a certificate to ``to`` if its current status is one of
        ``from_statuses``, setting ``fields`` in the same write.

        Returns:
            The updated certificate, or None when the status did not match
        """

    @abstractmethod
    async def increment_verification(self, certificate_id: str, verified_at: datetime) -> Optional[int]:
        """Atomically increment the verification counter and return the new count"""

    @abstractmethod
    async def record_anchor_failure(
        self, certificate_id: str, error: str, next_attempt_at: Optional[datetime]
    ) -> Optional[CertificateInDB]:
        """Increment the anchor attempt counter and schedule the next attempt"""

    @abstractmethod
    async def claim_anchor_attempt(
        self, certificate_id: str, seen_next_attempt_at: datetime, lease_until: datetime
    ) -> bool:
        """Take a lease on a pending anchor so concurrent workers do not both submit it"""

    @abstractmethod
    async def find_pending_anchors(self, now: datetime, max_attempts: int, limit: int) -> List[CertificateInDB]: ...

    @abstractmethod
    async def find_pending_revocations(self, limit: int) -> List[CertificateInDB]: ...

    @abstractmethod
    async def list_by_college(
        self, college_id: str, status: Optional[CertificateStatus], skip: int, limit: int
    ) -> List[CertificateInDB]: ...

    @abstractmethod
    async def count_by_college(self, college_id: str, status: Optional[CertificateStatus]) -> int: ...

    @abstractmethod
    async def list_by_issuer(self, issuer_id: str) -> List[CertificateInDB]: ...

    @abstractmethod
    async def aggregate_stats(self) -> VerificationStats: ...

    async def ensure_indexes(self) -> None:
        """Create the indices the store relies on; no-op for stores without indices"""
        return None


@asynccontextmanager
async def _store_errors(operation: str):
    """Translate driver failures into StoreUnavailable"""
    try:
        yield
    except PyMongoError as e:
        logger.error(f"Store operation {operation} failed: {e}")
        raise StoreUnavailable(f"{operation} failed: {e}") from e


def _object_id(certificate_id: str) -> Optional[ObjectId]:
    if isinstance(certificate_id, ObjectId):
        return certificate_id
    if isinstance(certificate_id, str) and ObjectId.is_valid(certificate_id):
        return ObjectId(certificate_id)
    return None


def _to_model(document: Optional[Dict[str, Any]]) -> Optional[CertificateInDB]:
    if document is None:
        return None
    return CertificateInDB.model_validate(prepare_certificate_document(document))


class MongoCertificateStore(CertificateStore):
    """Certificate store backed by a MongoDB collection."""

    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "certificates"):
        self.collection = db[collection_name]

    async def ensure_indexes(self) -> None:
        async with _store_errors("ensure_indexes"):
            await self.collection.create_index([(FINGERPRINT_FIELD, ASCENDING)], unique=True)
            await self.collection.create_index([(ACCESS_CODE_FIELD, ASCENDING)], unique=True)
            await self.collection.create_index([("college_id", ASCENDING), ("issued_by", ASCENDING)])
            await self.collection.create_index([("status", ASCENDING), ("blockchain.next_anchor_attempt_at", ASCENDING)])
        logger.info("Certificate indexes ensured")

    async def create(self, document: Dict[str, Any]) -> str:
        async with _store_errors("create"):
            try:
                result = await self.collection.insert_one(dict(document))
            except DuplicateKeyError as e:
                raise self._duplicate_error(e) from e
        return str(result.inserted_id)

    @staticmethod
    def _duplicate_error(error: DuplicateKeyError):
        details = error.details or {}
        key_pattern = details.get("keyPattern") or details.get("keyValue") or {}
        if ACCESS_CODE_FIELD in key_pattern or ACCESS_CODE_FIELD in str(error):
            return DuplicateAccessCode(str(error))
        return DuplicateFingerprint(str(error))

    async def find_by_id(self, certificate_id: str) -> Optional[CertificateInDB]:
        oid = _object_id(certificate_id)
        if oid is None:
            return None
        async with _store_errors("find_by_id"):
            document = await self.collection.find_one({"_id": oid})
        return _to_model(document)

    async def find_by_fingerprint(self, certificate_hash: str) -> Optional[CertificateInDB]:
        async with _store_errors("find_by_fingerprint"):
            document = await self.collection.find_one({FINGERPRINT_FIELD: certificate_hash.lower()})
        return _to_model(document)

    async def find_by_access_code(self, api_code: str) -> Optional[CertificateInDB]:
        async with _store_errors("find_by_access_code"):
            document = await self.collection.find_one({ACCESS_CODE_FIELD: api_code})
        return _to_model(document)

    async def update(self, certificate_id: str, fields: Dict[str, Any]) -> Optional[CertificateInDB]:
        oid = _object_id(certificate_id)
        if oid is None:
            return None
        async with _store_errors("update"):
            document = await self.collection.find_one_and_update(
                {"_id": oid},
                {"$set": {**fields, "updated_at": utcnow()}},
                return_document=ReturnDocument.AFTER,
            )
        return _to_model(document)

    async def transition_status(
        self,
        certificate_id: str,
        from_statuses: Iterable[CertificateStatus],
        to: CertificateStatus,
        fields: Optional[Dict[str, Any]] = None,
    ) -> Optional[CertificateInDB]:
        sources = check_transition(from_statuses, to)
        oid = _object_id(certificate_id)
        if oid is None:
            return None
        update = {**(fields or {}), "status": to.value, "updated_at": utcnow()}
        async with _store_errors("transition_status"):
            document = await self.collection.find_one_and_update(
                {"_id": oid, "status": {"$in": sources}},
                {"$set": update},
                return_document=ReturnDocument.AFTER,
            )
        return _to_model(document)

    async def increment_verification(self, certificate_id: str, verified_at: datetime) -> Optional[int]:
        oid = _object_id(certificate_id)
        if oid is None:
            return None
        async with _store_errors("increment_verification"):
            document = await self.collection.find_one_and_update(
                {"_id": oid},
                {"$inc": {"verification_count": 1}, "$set": {"last_verified": verified_at}},
                projection={"verification_count": 1},
                return_document=ReturnDocument.AFTER,
            )
        if document is None:
            return None
        return document["verification_count"]

    async def record_anchor_failure(
        self, certificate_id: str, error: str, next_attempt_at: Optional[datetime]
    ) -> Optional[CertificateInDB]:
        oid = _object_id(certificate_id)
        if oid is None:
            return None
        async with _store_errors("record_anchor_failure"):
            document = await self.collection.find_one_and_update(
                {"_id": oid},
                {
                    "$inc": {"blockchain.anchor_attempts": 1},
                    "$set": {
                        "blockchain.last_anchor_error": error,
                        "blockchain.next_anchor_attempt_at": next_attempt_at,
                        "updated_at": utcnow(),
                    },
                },
                return_document=ReturnDocument.AFTER,
            )
        return _to_model(document)

    async def claim_anchor_attempt(
        self, certificate_id: str, seen_next_attempt_at: datetime, lease_until: datetime
    ) -> bool:
        oid = _object_id(certificate_id)
        if oid is None:
            return False
        async with _store_errors("claim_anchor_attempt"):
            result = await self.collection.update_one(
                {
                    "_id": oid,
                    "status": CertificateStatus.PENDING.value,
                    "blockchain.next_anchor_attempt_at": seen_next_attempt_at,
                },
                {"$set": {"blockchain.next_anchor_attempt_at": lease_until}},
            )
        return result.modified_count == 1

    async def find_pending_anchors(self, now: datetime, max_attempts: int, limit: int) -> List[CertificateInDB]:
        query = {
            "status": CertificateStatus.PENDING.value,
            "blockchain.token_id": None,
            "blockchain.anchor_attempts": {"$lt": max_attempts},
            "blockchain.next_anchor_attempt_at": {"$lte": now},
        }
        async with _store_errors("find_pending_anchors"):
            cursor = self.collection.find(query).sort("blockchain.next_anchor_attempt_at", ASCENDING).limit(limit)
            documents = await cursor.to_list(length=limit)
        return [_to_model(doc) for doc in documents]

    async def find_pending_revocations(self, limit: int) -> List[CertificateInDB]:
        query = {
            "status": CertificateStatus.REVOKED.value,
            "blockchain.revocation_pending": True,
            "blockchain.token_id": {"$ne": None},
        }
        async with _store_errors("find_pending_revocations"):
            documents = await self.collection.find(query).limit(limit).to_list(length=limit)
        return [_to_model(doc) for doc in documents]

    @staticmethod
    def _college_query(college_id: str, status: Optional[CertificateStatus]) -> Dict[str, Any]:
        query: Dict[str, Any] = {"college_id": college_id}
        if status is not None:
            query["status"] = status.value
        return query

    async def list_by_college(
        self, college_id: str, status: Optional[CertificateStatus], skip: int, limit: int
    ) -> List[CertificateInDB]:
        async with _store_errors("list_by_college"):
            cursor = (
                self.collection.find(self._college_query(college_id, status))
                .sort("created_at", DESCENDING)
                .skip(skip)
                .limit(limit)
            )
            documents = await cursor.to_list(length=limit)
        return [_to_model(doc) for doc in documents]

    async def count_by_college(self, college_id: str, status: Optional[CertificateStatus]) -> int:
        async with _store_errors("count_by_college"):
            return await self.collection.count_documents(self._college_query(college_id, status))

    async def list_by_issuer(self, issuer_id: str) -> List[CertificateInDB]:
        async with _store_errors("list_by_issuer"):
            documents = await self.collection.find({"issued_by": issuer_id}).sort("created_at", DESCENDING).to_list(length=None)
        return [_to_model(doc) for doc in documents]

    async def aggregate_stats(self) -> VerificationStats:
        pipeline = [
            {
                "$group": {
                    "_id": "$status",
                    "count": {"$sum": 1},
                    "verifications": {"$sum": "$verification_count"},
                }
            }
        ]
        async with _store_errors("aggregate_stats"):
            rows = await self.collection.aggregate(pipeline).to_list(length=None)
        return build_stats(rows)
