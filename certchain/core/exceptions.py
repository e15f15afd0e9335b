"""Certificate lifecycle and verification exceptions."""


class CertificateError(Exception):
    """Base exception for certificate issuance, anchoring and verification."""

    pass


class NotAssociated(CertificateError):
    """Issuing principal is not associated with exactly one college."""

    pass


class DuplicateKey(CertificateError):
    """Store rejected a record because a unique index already holds the value."""

    pass


class DuplicateFingerprint(DuplicateKey):
    """Certificate hash already exists in the store."""

    pass


class DuplicateAccessCode(DuplicateKey):
    """Access code already exists in the store."""

    pass


class IssuanceFailed(CertificateError):
    """Certificate could not be persisted after the bounded retries."""

    pass


class LedgerUnavailable(CertificateError):
    """Ledger call failed, timed out or was rejected."""

    pass


class NotFound(CertificateError):
    """No certificate matches the given identifier, hash or access code."""

    pass


class InvalidPayload(CertificateError):
    """QR payload is neither an identifier, a hash nor a verification URL."""

    pass


class AlreadyRevoked(CertificateError):
    """Certificate is already revoked."""

    pass


class InvalidTransition(CertificateError):
    """Requested status change is not allowed by the certificate state machine."""

    pass


class StoreUnavailable(CertificateError):
    """Persistent store could not be reached or timed out."""

    pass
