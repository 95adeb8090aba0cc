class AppError(Exception):
    """Base class for all application exceptions."""
    code = "server_error"

    def __init__(self, message: str, status_code: int = 500, details: dict = None, code: str = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        if code is not None:
            self.code = code
        super().__init__(self.message)

    @property
    def headers(self) -> dict[str, str] | None:
        return None


class InvalidInputError(AppError):
    """Malformed identifier, OTP or password shape. Nothing was touched."""
    code = "invalid_input"

    def __init__(self, message: str = "Invalid input", details: dict = None):
        super().__init__(message, status_code=400, details=details)


class InvalidCredentialsError(AppError):
    """Wrong identifier/password pair; deliberately identical to an unknown account."""
    code = "invalid_credentials"

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message, status_code=401)


class AccountSuspendedError(AppError):
    code = "account_suspended"

    def __init__(self, message: str = "This account has been suspended"):
        super().__init__(message, status_code=403)


class RateLimitedError(AppError):
    """Raised when a cooldown or rate-limit window is exhausted."""
    code = "too_many_requests"

    def __init__(self, retry_after: int, message: str | None = None):
        self.retry_after = max(1, int(retry_after))
        super().__init__(
            message or f"Too many requests. Try again in {self.retry_after} second(s).",
            status_code=429,
            details={"retry_after": self.retry_after},
        )

    @property
    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class OtpNotFoundError(AppError):
    code = "otp_not_found"

    def __init__(self, message: str = "OTP expired or not found. Please request a new OTP."):
        super().__init__(message, status_code=400)


class OtpExpiredError(AppError):
    code = "otp_expired"

    def __init__(self, message: str = "OTP expired. Please request a new OTP."):
        super().__init__(message, status_code=400)


class OtpExhaustedError(AppError):
    code = "too_many_attempts"

    def __init__(self, message: str = "Too many failed attempts. Please request a new OTP."):
        super().__init__(message, status_code=429)


class OtpInvalidError(AppError):
    code = "invalid_otp"

    def __init__(self, remaining_attempts: int):
        super().__init__(
            f"Invalid OTP. {remaining_attempts} attempt(s) remaining.",
            status_code=400,
            details={"remaining_attempts": remaining_attempts},
        )


class SessionInvalidError(AppError):
    """Expired, absent or malformed session token."""
    code = "unauthorized"

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message, status_code=401)


class UnauthorizedError(AppError):
    """Valid session acting on a resource it does not own."""
    code = "forbidden"

    def __init__(self, message: str = "Cannot act on another user's session"):
        super().__init__(message, status_code=403)


class SessionNotFoundError(AppError):
    code = "session_not_found"

    def __init__(self, message: str = "Session not found"):
        super().__init__(message, status_code=404)


class DeliveryFailedError(AppError):
    """The notification provider refused or failed to deliver an OTP."""
    code = "otp_failed"

    def __init__(self, channel: str):
        super().__init__(f"Failed to send OTP via {channel}", status_code=502, details={"channel": channel})


class InternalError(AppError):
    code = "server_error"

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message, status_code=500)
