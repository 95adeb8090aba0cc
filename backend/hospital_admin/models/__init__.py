from hospital_admin.models.auth_log import AuthAction, AuthLog  # noqa: F401
from hospital_admin.models.otp_request import OtpChannel, OtpRequest  # noqa: F401
from hospital_admin.models.session import AuthSession  # noqa: F401
from hospital_admin.models.session_log import SessionLog  # noqa: F401
from hospital_admin.models.user import User, UserRole, UserStatus  # noqa: F401
