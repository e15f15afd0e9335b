"""
Service and authentication dependencies for FastAPI routes.
"""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .config import Settings
from .security import decode_access_token
from ..models.auth import Principal, Role
from ..services.certificate_service import CertificateService
from ..services.qr_service import QRCodeService
from ..services.verification_service import VerificationService
from ..utils.logger import get_logger

logger = get_logger("dependencies")

# HTTP Bearer token scheme
security = HTTPBearer()


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_certificate_service(request: Request) -> CertificateService:
    return request.app.state.certificate_service


def get_verification_service(request: Request) -> VerificationService:
    return request.app.state.verification_service


def get_qr_service(request: Request) -> QRCodeService:
    return request.app.state.qr_service


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    settings: Settings = Depends(get_app_settings),
) -> Principal:
    """
    Get the authenticated principal from the bearer token.

    Raises:
        HTTPException: If the token is missing or invalid
    """
    return decode_access_token(credentials.credentials, settings)


async def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    """
    Restrict a route to college admins.

    Raises:
        HTTPException: If the principal is not an ADMIN
    """
    if principal.role != Role.ADMIN:
        logger.warning(f"User {principal.user_id} with role {principal.role.value} denied admin route")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only college admins can perform this action"
        )
    return principal
