"""
Pytest fixtures for audible_session tests.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from curl_cffi.requests import Headers

from audible_session.session import Session

NOW = 1_700_000_000


# ─── Fakes ───────────────────────────────────────────────────

class FakeResponse:
    """Stand-in for a curl_cffi response."""

    def __init__(
        self,
        status_code: int = 200,
        text: str = "",
        json_data: Any = None,
        headers: Optional[List[tuple]] = None,
        cookies: Optional[Dict[str, str]] = None,
        chunks: Optional[List[bytes]] = None,
    ):
        header_list = list(headers or [])
        for name, value in (cookies or {}).items():
            header_list.append(("set-cookie", f"{name}={value}; Path=/; Secure"))
        self.status_code = status_code
        self.text = text
        self.headers = Headers(header_list)
        self._json = json_data
        self._chunks = chunks or []
        self.closed = False

    def json(self):
        if self._json is None:
            raise ValueError("No JSON")
        return self._json

    def iter_content(self):
        yield from self._chunks

    def close(self):
        self.closed = True


@dataclass
class RecordedRequest:
    method: str
    url: str
    headers: Dict[str, str]
    data: Any = None
    stream: bool = False


class FakeTransport:
    """
    Transport double: replays queued responses (or asks a handler) and
    records every request.
    """

    def __init__(self, responses=None, handler: Optional[Callable[..., FakeResponse]] = None):
        self._responses = list(responses or [])
        self._handler = handler
        self.requests: List[RecordedRequest] = []
        self.closed = False

    def request(self, method, url, headers=None, params=None, data=None, stream=False):
        request = RecordedRequest(method, url, dict(headers or {}), data, stream)
        self.requests.append(request)
        if self._handler is not None:
            return self._handler(request)
        if not self._responses:
            raise AssertionError(f"Unexpected request: {method} {url}")
        return self._responses.pop(0)

    def close(self):
        self.closed = True


class FakeCrypto:
    """CryptoProvider double; keys pass through untouched."""

    def __init__(self):
        self.metadata: List[str] = []

    def load_private_key(self, encoded):
        if not encoded:
            raise ValueError("empty key")
        return encoded

    def encode_private_key(self, key):
        return key

    def sign(self, key, data):
        return "c2lnbmF0dXJl"

    def encrypt_metadata(self, metadata):
        self.metadata.append(metadata)
        return "ECdITeCs:fake"


@dataclass
class RecordingChallenges:
    """ChallengeCallbacks double with scripted answers."""

    captcha_answers: List[str] = field(default_factory=list)
    otp_answers: List[str] = field(default_factory=list)
    captcha_urls: List[str] = field(default_factory=list)
    otp_calls: int = 0

    def solve_captcha(self, image_url):
        self.captcha_urls.append(image_url)
        return self.captcha_answers.pop(0)

    def get_otp_code(self):
        self.otp_calls += 1
        return self.otp_answers.pop(0)


# ─── Fixtures ────────────────────────────────────────────────

@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def fake_crypto():
    return FakeCrypto()


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_pem(rsa_key):
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture
def registered_session(rsa_pem):
    """Session as it looks right after a successful registration."""
    return Session(
        login_cookies={"session-token": "tok", "ubid-main": "131-000"},
        adp_token="{enc:adp}{key:k}{iv:i}{name:n}{serial:Mg==}",
        access_token="Atna|access",
        refresh_token="Atnr|refresh",
        device_private_key=rsa_pem,
        expires=NOW + 3600,
        locale="us",
    )


@pytest.fixture
def registration_payload():
    """Body of a successful /auth/register response."""
    return {
        "response": {
            "success": {
                "tokens": {
                    "mac_dms": {
                        "adp_token": "{enc:new-adp}",
                        "device_private_key": "MIIEpAIBAAKCAQEA-new-key",
                    },
                    "bearer": {
                        "access_token": "Atna|registered",
                        "refresh_token": "Atnr|registered",
                        "expires_in": "3600",
                    },
                    "website_cookies": [
                        {"Name": "session-id", "Value": "139-1"},
                        {"Name": "at-main", "Value": "Atza|cookie"},
                    ],
                },
                "extensions": {"device_info": {"device_name": "Audible for iPhone"}},
            }
        }
    }
