"""
audible_session: Audible private API authentication and signed requests.

Usage:
    from audible_session import AudibleClient, SessionStore

    client = AudibleClient.login("me@example.com", "secret", locale="us",
                                 store=SessionStore("audible_session.json"))
    profile = client.user_profile()
    library = client.get("/1.0/library").json()
"""

from .challenge import CallbackChallenges, ChallengeCallbacks, ChallengeKind, ConsoleCallbacks
from .client import AudibleClient
from .config import Settings
from .crypto import CryptoProvider, DefaultCryptoProvider
from .exceptions import (
    AudibleError,
    CaptchaError,
    FatalSessionError,
    LoginError,
    MfaError,
    RegistrationError,
    TokenRefreshError,
    TransportError,
)
from .localization import LOCALES, Locale, LocaleConfig, get_locale
from .log_config import LogConfig, TokenRedactor
from .login import LoginFlow, LoginResult, LoginState
from .register import DeviceRegistrar
from .session import Session, SessionStore, merge_cookies
from .tokens import TokenLifecycle
from .transport import Transport

__version__ = "0.1.0"

__all__ = [
    "AudibleClient",
    "AudibleError",
    "CallbackChallenges",
    "CaptchaError",
    "ChallengeCallbacks",
    "ChallengeKind",
    "ConsoleCallbacks",
    "CryptoProvider",
    "DefaultCryptoProvider",
    "DeviceRegistrar",
    "FatalSessionError",
    "LOCALES",
    "Locale",
    "LocaleConfig",
    "LogConfig",
    "LoginError",
    "LoginFlow",
    "LoginResult",
    "LoginState",
    "MfaError",
    "RegistrationError",
    "Session",
    "SessionStore",
    "Settings",
    "TokenLifecycle",
    "TokenRedactor",
    "TokenRefreshError",
    "Transport",
    "TransportError",
    "get_locale",
    "merge_cookies",
]
