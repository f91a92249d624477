from typing import Optional, Dict, Any


class AppException(Exception):
    """Base application exception"""
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "APP_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationError(AppException):
    """Authentication related errors"""
    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=401,
            error_code="AUTH_ERROR",
            details=details
        )


class AuthorizationError(AppException):
    """Authorization related errors"""
    def __init__(self, message: str = "Insufficient permissions", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=403,
            error_code="AUTHZ_ERROR",
            details=details
        )


class NotFoundError(AppException):
    """Resource not found errors"""
    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=404,
            error_code="NOT_FOUND",
            details=details
        )


class ValidationError(AppException):
    """Validation errors"""
    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details=details
        )


class InvalidStatusError(AppException):
    """Unknown consultation status string"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=422,
            error_code="INVALID_STATUS",
            details=details
        )


class InvalidTransitionError(AppException):
    """Status edge that does not exist in the workflow"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=400,
            error_code="INVALID_STATUS_TRANSITION",
            details=details
        )


class RolePermissionError(AppException):
    """Edge or action exists but the caller's role may not perform it"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=403,
            error_code="ROLE_NOT_PERMITTED",
            details=details
        )


class PaymentAmountMismatchError(AppException):
    """Payment amount differs from the consultation cost"""
    def __init__(self, message: str = "Payment amount does not match consultation cost", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=400,
            error_code="PAYMENT_AMOUNT_MISMATCH",
            details=details
        )


class PaymentGatewayError(AppException):
    """Payment provider rejected or failed the request"""
    def __init__(self, message: str = "Payment gateway error", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=502,
            error_code="PAYMENT_GATEWAY_ERROR",
            details=details
        )
