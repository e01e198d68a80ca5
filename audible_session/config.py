"""
Audible API Configuration and Constants
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# ============================================================
# Virtual device identity (registered as an Audible iOS app)
# ============================================================
APP_NAME = "Audible"
APP_VERSION = "3.7"
OS_VERSION = "12.3.1"
DEVICE_MODEL = "iPhone"
DEVICE_TYPE = "A2CZJZGLK2JJVM"
DEVICE_SERIAL = "AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"
DEVICE_NAME = (
    "%FIRST_NAME%%FIRST_NAME_POSSESSIVE_STRING%%DUPE_STRATEGY_1ST%"
    "Audible for iPhone"
)

# OAuth client id of the device above
OAUTH_CLIENT_ID = (
    "device:6a52316c62706d53427a5735505a76477a45375959566674327959465a"
    "6374424a53497069546d45234132435a4a5a474c4b324a4a564d"
)

REQUESTED_EXTENSIONS = ["device_info", "customer_info"]
REQUESTED_TOKEN_TYPES = ["bearer", "mac_dms", "website_cookies"]

# ============================================================
# User-Agents
# ============================================================
# Mobile Safari, used for the web sign-in pages
LOGIN_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 12_3_1 like Mac OS X) "
    "AppleWebKit/605.1.15 (KHTML, like Gecko) Mobile/15E148"
)
# In-app web view, used for the auth API
API_USER_AGENT = f"AmazonWebView/{APP_NAME}/{APP_VERSION}/iOS/{OS_VERSION}/{DEVICE_MODEL}"

# curl_cffi TLS fingerprint
IMPERSONATE = "safari15_5"

# ============================================================
# Login flow
# ============================================================
SESSION_COOKIE = "session-token"
ACCESS_TOKEN_PARAM = "openid.oa2.access_token"
MFA_PATH = "/ap/mfa"
SIGNIN_PATH = "/ap/signin"
MAX_LANDING_ATTEMPTS = 10

# ============================================================
# Request signing
# ============================================================
SIGNATURE_ALGORITHM = "SHA256withRSA:1.0"

# ============================================================
# Timeouts (seconds)
# ============================================================
REQUEST_TIMEOUT = 30
CONNECT_TIMEOUT = 30

# Sentinel expiry of an unset session (1990-01-01T00:00:00Z)
UNSET_EXPIRES = 631152000

DEFAULT_LOCALE = "us"
DEFAULT_SESSION_FILE = "audible_session.json"


@dataclass
class Settings:
    """
    Runtime settings, read from the environment (and an optional .env file).

    Variables:
        AUDIBLE_EMAIL, AUDIBLE_PASSWORD   login credentials
        AUDIBLE_LOCALE                    marketplace key (default: us)
        AUDIBLE_SESSION_FILE              persisted session path
        AUDIBLE_TIMEOUT                   request timeout in seconds
    """

    email: str = ""
    password: str = ""
    locale: str = DEFAULT_LOCALE
    session_file: str = DEFAULT_SESSION_FILE
    timeout: float = REQUEST_TIMEOUT

    @classmethod
    def from_env(cls, env_path: Optional[str] = ".env") -> "Settings":
        if env_path:
            env_file = Path(env_path)
            if env_file.exists():
                load_dotenv(env_file, override=True)

        timeout = os.getenv("AUDIBLE_TIMEOUT", "")
        return cls(
            email=os.getenv("AUDIBLE_EMAIL", ""),
            password=os.getenv("AUDIBLE_PASSWORD", ""),
            locale=os.getenv("AUDIBLE_LOCALE", "") or DEFAULT_LOCALE,
            session_file=os.getenv("AUDIBLE_SESSION_FILE", "") or DEFAULT_SESSION_FILE,
            timeout=float(timeout) if timeout else REQUEST_TIMEOUT,
        )
