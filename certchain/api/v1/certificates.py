"""
Certificate issuance, retrieval and revocation API endpoints.
"""

from typing import Optional, List
from fastapi import APIRouter, Depends, HTTPException, status, Query, Path

from ...core.dependencies import get_certificate_service, require_admin
from ...core.exceptions import CertificateError
from ...models.auth import Principal
from ...models.certificate import (
    BatchIssueRequest, BatchIssueResult, CertificateInDB, CertificatePage, CertificateStatus,
    IssuanceResult, IssueCertificateRequest, RevocationResult, RevokeCertificateRequest,
)
from ...services.certificate_service import CertificateService
from ...utils.logger import get_logger

logger = get_logger("certificates_api")

router = APIRouter(
    prefix="/api/v1/certificates",
    tags=["certificates"],
    responses={
        400: {"description": "Bad Request"},
        401: {"description": "Unauthorized"},
        403: {"description": "Forbidden"},
        404: {"description": "Not Found"},
        500: {"description": "Internal Server Error"}
    }
)


@router.post(
    "/issue",
    response_model=IssuanceResult,
    status_code=status.HTTP_201_CREATED,
    summary="Issue certificate",
    description="Issue a certificate for the admin's college and anchor it on the blockchain"
)
async def issue_certificate(
    request: IssueCertificateRequest,
    principal: Principal = Depends(require_admin),
    service: CertificateService = Depends(get_certificate_service),
):
    """
    Issue a new certificate.

    The certificate is always stored; if blockchain minting fails it stays
    PENDING and the response carries a warning.
    """
    try:
        result = await service.issue(principal, request)
        logger.info(f"Certificate {result.certificate.id} issued by {principal.user_id}")
        return result

    except CertificateError:
        raise
    except Exception as e:
        logger.error(f"Error in issue_certificate endpoint: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Certificate issuance failed"
        )


@router.post(
    "/batch/issue",
    response_model=BatchIssueResult,
    status_code=status.HTTP_201_CREATED,
    summary="Batch issue certificates",
    description="Issue up to 50 certificates; each item succeeds or fails on its own"
)
async def batch_issue_certificates(
    request: BatchIssueRequest,
    principal: Principal = Depends(require_admin),
    service: CertificateService = Depends(get_certificate_service),
):
    result = await service.issue_batch(principal, request.certificates)
    logger.info(f"Batch issuance of {result.total} certificates by {principal.user_id}")
    return result


@router.get(
    "/my-certificates",
    response_model=List[CertificateInDB],
    summary="Certificates I issued"
)
async def get_my_certificates(
    principal: Principal = Depends(require_admin),
    service: CertificateService = Depends(get_certificate_service),
):
    return await service.list_issued_by(principal)


@router.get(
    "/college/all",
    response_model=CertificatePage,
    summary="College certificates",
    description="Paginated certificates of the admin's college, newest first"
)
async def get_college_certificates(
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(10, ge=1, le=100, description="Certificates per page"),
    status_filter: Optional[CertificateStatus] = Query(None, alias="status", description="Filter by status"),
    principal: Principal = Depends(require_admin),
    service: CertificateService = Depends(get_certificate_service),
):
    return await service.list_college_certificates(principal, status_filter, page, limit)


@router.get(
    "/api-code/{code}",
    response_model=CertificateInDB,
    summary="Certificate by API code",
    description="Public student access; every lookup is counted as a verification"
)
async def get_certificate_by_api_code(
    code: str = Path(..., min_length=1, description="Student API code"),
    service: CertificateService = Depends(get_certificate_service),
):
    return await service.get_by_access_code(code)


@router.get(
    "/{certificate_id}",
    response_model=CertificateInDB,
    summary="Certificate by id"
)
async def get_certificate(
    certificate_id: str = Path(..., pattern=r"^[0-9a-fA-F]{24}$", description="Certificate ID"),
    service: CertificateService = Depends(get_certificate_service),
):
    return await service.get_by_id(certificate_id.lower())


@router.put(
    "/{certificate_id}/revoke",
    response_model=RevocationResult,
    summary="Revoke certificate",
    description="Revoke a certificate locally and on the blockchain"
)
async def revoke_certificate(
    request: RevokeCertificateRequest,
    certificate_id: str = Path(..., pattern=r"^[0-9a-fA-F]{24}$", description="Certificate ID"),
    principal: Principal = Depends(require_admin),
    service: CertificateService = Depends(get_certificate_service),
):
    """
    Revoke a certificate with a reason.

    Revoking an already revoked certificate is rejected with 409.
    """
    try:
        return await service.revoke(principal, certificate_id.lower(), request.reason)

    except CertificateError:
        raise
    except Exception as e:
        logger.error(f"Error in revoke_certificate endpoint: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Certificate revocation failed"
        )
