"""
Public certificate verification API endpoints.
"""

from typing import Dict, Any
from fastapi import APIRouter, Depends, Path

from ...core.dependencies import get_qr_service, get_verification_service
from ...models.verification import (
    BatchVerificationRequest, BatchVerificationResult, QRVerificationRequest,
    VerificationResult, VerificationStats,
)
from ...services.qr_service import QRCodeService
from ...services.verification_service import VerificationService
from ...utils.logger import get_logger

logger = get_logger("verify_api")

CERTIFICATE_ID_PATH = r"^[0-9a-fA-F]{24}$"
CERTIFICATE_HASH_PATH = r"^[0-9a-fA-F]{64}$"

router = APIRouter(
    prefix="/api/v1/verify",
    tags=["verification"],
    responses={
        400: {"description": "Bad Request"},
        404: {"description": "Not Found"},
        422: {"description": "Validation Error"},
        500: {"description": "Internal Server Error"}
    }
)


@router.get(
    "/certificate/{certificate_id}",
    response_model=VerificationResult,
    summary="Verify certificate by id",
    description="Verify a certificate and cross-check it against the blockchain"
)
async def verify_certificate_by_id(
    certificate_id: str = Path(..., pattern=CERTIFICATE_ID_PATH, description="Certificate ID"),
    service: VerificationService = Depends(get_verification_service),
):
    result = await service.verify_by_id(certificate_id.lower())
    logger.info(f"Certificate {certificate_id} verified: valid={result.is_valid}")
    return result


@router.get(
    "/hash/{certificate_hash}",
    response_model=VerificationResult,
    summary="Verify certificate by hash"
)
async def verify_certificate_by_hash(
    certificate_hash: str = Path(..., pattern=CERTIFICATE_HASH_PATH, description="Certificate hash"),
    service: VerificationService = Depends(get_verification_service),
):
    return await service.verify_by_fingerprint(certificate_hash.lower())


@router.post(
    "/qr-code",
    response_model=VerificationResult,
    summary="Verify scanned QR code",
    description="Accepts a certificate id, a certificate hash or a verification URL"
)
async def verify_qr_code(
    request: QRVerificationRequest,
    service: VerificationService = Depends(get_verification_service),
):
    return await service.verify_qr(request.qr_data)


@router.post(
    "/batch",
    response_model=BatchVerificationResult,
    summary="Batch verify certificates",
    description="Verify up to 20 certificate ids or hashes; results keep the request order"
)
async def batch_verify_certificates(
    request: BatchVerificationRequest,
    service: VerificationService = Depends(get_verification_service),
):
    result = await service.batch_verify(request.certificates)
    logger.info(f"Batch verification: {result.verified_count}/{result.total} valid")
    return result


@router.get(
    "/statistics",
    response_model=VerificationStats,
    summary="Verification statistics"
)
async def get_verification_statistics(
    service: VerificationService = Depends(get_verification_service),
):
    return await service.get_statistics()


@router.get(
    "/qr/hash/{certificate_hash}",
    summary="QR code for a certificate hash",
    description="PNG data URL of a QR code that opens the hash verification page"
)
async def get_hash_qr_code(
    certificate_hash: str = Path(..., pattern=CERTIFICATE_HASH_PATH, description="Certificate hash"),
    qr: QRCodeService = Depends(get_qr_service),
) -> Dict[str, Any]:
    return qr.generate_hash_qr(certificate_hash)
