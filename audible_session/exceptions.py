"""
Audible Session Exception Classes
"""


class AudibleError(Exception):
    """Base Audible error class"""

    def __init__(self, message: str = "", status_code: int = 0, response: dict = None):
        self.message = message
        self.status_code = status_code
        self.response = response or {}
        super().__init__(self.message)


class LoginError(AudibleError):
    """Login page gave neither a success redirect nor a recognizable challenge"""
    pass


class CaptchaError(LoginError):
    """CAPTCHA guess rejected by the sign-in page"""
    pass


class MfaError(LoginError):
    """One-time password rejected by the sign-in page"""
    pass


class RegistrationError(AudibleError):
    """Device register/deregister call failed"""
    pass


class TokenRefreshError(AudibleError):
    """Access token refresh failed"""
    pass


class FatalSessionError(AudibleError):
    """Both token refresh and device re-registration failed, login again"""
    pass


class TransportError(AudibleError):
    """Network-level failure (connection, timeout, TLS)"""
    pass
