"""
QR code service for certificate verification.
Encodes verification links, renders them as PNG data URLs and classifies scanned payloads.
"""

import base64
import re
from dataclasses import dataclass
from io import BytesIO
from typing import Dict, Any

import qrcode

from ..core.exceptions import InvalidPayload
from ..models.verification import CERTIFICATE_HASH_PATTERN, CERTIFICATE_ID_PATTERN
from ..utils.logger import get_logger

logger = get_logger("qr_service")

VERIFICATION_URL_PATTERN = re.compile(r"/verify/(?:hash/(?P<hash>[0-9a-fA-F]{64})|(?P<id>[0-9a-fA-F]{24}))$")

PAYLOAD_CERTIFICATE_ID = "certificate_id"
PAYLOAD_CERTIFICATE_HASH = "certificate_hash"


@dataclass(frozen=True)
class DecodedPayload:
    """Classified QR content"""
    kind: str
    value: str


class QRCodeService:
    """Service for building and reading certificate verification QR codes"""

    def __init__(self, client_url: str = "http://localhost:3000", box_size: int = 10, border: int = 4):
        self.client_url = client_url.rstrip("/")
        self.box_size = box_size
        self.border = border

    def encode_certificate_url(self, certificate_id: str) -> str:
        return f"{self.client_url}/verify/{certificate_id}"

    def encode_hash_url(self, certificate_hash: str) -> str:
        return f"{self.client_url}/verify/hash/{certificate_hash}"

    def decode_payload(self, text: str) -> DecodedPayload:
        """
        Classify scanned QR content.

        Checked in order: bare certificate id (24 hex), bare certificate
        hash (64 hex), verification URL ending in ``/verify/<id>`` or
        ``/verify/hash/<hash>``. Values come back lowercased.

        Raises:
            InvalidPayload: content matches none of the forms
        """
        text = (text or "").strip()

        if CERTIFICATE_ID_PATTERN.match(text):
            return DecodedPayload(PAYLOAD_CERTIFICATE_ID, text.lower())

        if CERTIFICATE_HASH_PATTERN.match(text):
            return DecodedPayload(PAYLOAD_CERTIFICATE_HASH, text.lower())

        match = VERIFICATION_URL_PATTERN.search(text)
        if match:
            if match.group("hash"):
                return DecodedPayload(PAYLOAD_CERTIFICATE_HASH, match.group("hash").lower())
            return DecodedPayload(PAYLOAD_CERTIFICATE_ID, match.group("id").lower())

        raise InvalidPayload("Invalid QR code format")

    def render_qr_data_url(self, data: str) -> str:
        """
        Render text as a QR code PNG data URL.

        Args:
            data: Text to encode, usually a verification link

        Returns:
            ``data:image/png;base64,...`` string
        """
        try:
            qr = qrcode.QRCode(
                version=1,
                error_correction=qrcode.constants.ERROR_CORRECT_M,
                box_size=self.box_size,
                border=self.border,
            )
            qr.add_data(data)
            qr.make(fit=True)

            img = qr.make_image(fill_color="black", back_color="white")

            buffer = BytesIO()
            img.save(buffer, format='PNG')
            img_str = base64.b64encode(buffer.getvalue()).decode()
            return f"data:image/png;base64,{img_str}"

        except Exception as e:
            logger.error(f"Error generating QR code: {e}")
            raise

    def generate_hash_qr(self, certificate_hash: str) -> Dict[str, Any]:
        """QR code pointing at the hash verification page"""
        verification_url = self.encode_hash_url(certificate_hash.lower())
        return {
            "data_url": self.render_qr_data_url(verification_url),
            "verification_url": verification_url,
            "hash": certificate_hash.lower(),
            "format": "png",
        }
