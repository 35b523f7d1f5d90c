"""DocVault Errors - One taxonomy for every pipeline failure

Self-Explanatory: Orchestrators translate boto3/SQLAlchemy/cryptography
exceptions into these before anything reaches the HTTP layer.
Each kind carries a stable status code so the boundary renders consistently.
"""


class DocVaultError(Exception):
    """Base class; `code` is the machine-readable kind"""

    status_code = 500
    code = "internal_error"
    retryable = False

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class ValidationError(DocVaultError):
    status_code = 400
    code = "validation_error"


class AuthenticationError(DocVaultError):
    status_code = 401
    code = "unauthenticated"


class Forbidden(DocVaultError):
    status_code = 403
    code = "forbidden"


class NotFound(DocVaultError):
    status_code = 404
    code = "not_found"


class Unauthorized(NotFound):
    """Read denied. Subclasses NotFound so the boundary cannot tell them apart."""


class ClientDisconnected(DocVaultError):
    status_code = 499
    code = "client_disconnected"
    retryable = True


class CodecError(DocVaultError):
    code = "integrity_error"


class CatalogWriteError(DocVaultError):
    code = "catalog_write_error"
    retryable = True


class StoreUnavailable(DocVaultError):
    status_code = 503
    code = "store_unavailable"
    retryable = True


class CatalogUnavailable(DocVaultError):
    status_code = 503
    code = "catalog_unavailable"
    retryable = True


def to_response_body(error: DocVaultError) -> dict:
    """Stable error body; NotFound and Unauthorized share one shape"""
    if isinstance(error, NotFound):
        return {"error": NotFound.code, "detail": "Document not found"}
    return {"error": error.code, "detail": error.message}
