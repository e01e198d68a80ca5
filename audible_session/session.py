"""
Session Store
=============
The persistable Audible session record and its file storage.

Session record (JSON):
    login_cookies       {name: value}
    adp_token           device-scoped API credential
    access_token        bearer token
    refresh_token       bearer refresh token
    device_private_key  PEM-wrapped RSA private key (plaintext)
    expires             unix seconds
    locale              marketplace key, "us" if absent

The device private key is stored unencrypted, same as every other token
in the record. Keep the file private.
"""

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .config import DEFAULT_LOCALE, UNSET_EXPIRES

logger = logging.getLogger("audible_session.session")

# Set-Cookie values that mean "no value" and must not clobber a known cookie
EMPTY_COOKIE_VALUES = ("", '""')


def string_field(data: Mapping[str, Any], key: str, allow_empty: bool = True) -> str:
    """
    `data[key]` if it is a str.

    Raises:
        KeyError: `key` is missing
        ValueError: The value is not a str, or is empty while `allow_empty` is False
    """
    value = data[key]
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string, got {type(value).__name__}")
    if not value and not allow_empty:
        raise ValueError(f"{key} is empty")
    return value


@dataclass
class Session:
    """Credentials and cookies for one registered device/account pairing."""

    login_cookies: Dict[str, str] = field(default_factory=dict)
    adp_token: str = ""
    access_token: str = ""
    refresh_token: str = ""
    device_private_key: str = ""
    expires: int = UNSET_EXPIRES
    locale: str = DEFAULT_LOCALE

    @property
    def is_registered(self) -> bool:
        return bool(self.adp_token and self.device_private_key)

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (time.time() if now is None else now) >= self.expires

    @property
    def cookie_string(self) -> str:
        return cookie_header(self.login_cookies)

    # ─── Serialization ──────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {
            "login_cookies": dict(self.login_cookies),
            "adp_token": self.adp_token,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "device_private_key": self.device_private_key,
            "expires": int(self.expires),
            "locale": self.locale,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Session":
        """
        Build a Session from a persisted record.

        Raises:
            KeyError: A required key is missing
            ValueError: A value has the wrong type
        """
        cookies = data["login_cookies"]
        if not isinstance(cookies, Mapping):
            raise ValueError("login_cookies must be an object")
        for name, value in cookies.items():
            if not isinstance(name, str) or not isinstance(value, str):
                raise ValueError(f"login_cookies[{name!r}] must map a string to a string")
        expires = data["expires"]
        # bool is an int subclass; true/false in the file is still corrupt
        if not isinstance(expires, int) or isinstance(expires, bool):
            raise ValueError(f"expires must be an integer, got {type(expires).__name__}")
        locale = data.get("locale")
        if locale is not None and not isinstance(locale, str):
            raise ValueError(f"locale must be a string, got {type(locale).__name__}")
        return cls(
            login_cookies=dict(cookies),
            adp_token=string_field(data, "adp_token"),
            access_token=string_field(data, "access_token"),
            refresh_token=string_field(data, "refresh_token"),
            device_private_key=string_field(data, "device_private_key"),
            expires=expires,
            locale=locale or DEFAULT_LOCALE,
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def to_pretty_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    @classmethod
    def from_json(cls, body: str) -> "Session":
        return cls.from_dict(json.loads(body))


class SessionStore:
    """
    JSON file persistence for a Session.

    Usage:
        store = SessionStore("audible_session.json")
        store.save(session)
        session = store.load()
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> Session:
        with open(self.path, "r", encoding="utf-8") as f:
            session = Session.from_dict(json.load(f))
        logger.debug(f"[Session] Loaded from {self.path} (locale={session.locale})")
        return session

    def save(self, session: Session) -> None:
        """Write the session atomically (temp file + rename)."""
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".session-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(session.to_pretty_json())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.info(f"[Session] Saved to {self.path}")


# ─── Cookie helpers ─────────────────────────────────────────

def merge_cookies(jar: Dict[str, str], new: Mapping[str, str]) -> Dict[str, str]:
    """
    Merge response cookies into `jar` in place and return it.

    An empty value never overwrites a cookie already in the jar; any other
    value overwrites or adds.
    """
    for name, value in new.items():
        if name in jar and value in EMPTY_COOKIE_VALUES:
            continue
        jar[name] = value
    return jar


def cookie_header(jar: Mapping[str, str]) -> str:
    """Render a cookie jar as a Cookie request header value."""
    return "; ".join(f"{name}={value}" for name, value in jar.items())
