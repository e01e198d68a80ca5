"""
Audible Client
==============
Signed requests against the Audible API with a self-maintaining session.

Every call goes through exec():
    1. expires reached?  → TokenLifecycle.refresh_or_register (+ auto-save)
    2. sign              → x-adp-token / x-adp-alg / x-adp-signature
    3. dispatch          → Transport, against the locale's Audible API host

Steps 1-2 run under one lock per client, so concurrent callers never
refresh twice or sign with a token that another thread just replaced.
Nothing is retried: a failed dispatch is returned/raised as-is.

Usage:
    client = AudibleClient.login("me@example.com", "secret", locale="us",
                                 store=SessionStore("audible_session.json"))
    client = AudibleClient.from_file("audible_session.json")
    library = client.get("/1.0/library", params={"num_results": "50"}).json()

    with client.stream("GET", "/1.0/content/B0.../licenserequest") as resp:
        for chunk in resp.iter_content():
            ...
"""

import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Tuple, Union
from urllib.parse import urlencode

from .challenge import ChallengeCallbacks
from .config import API_USER_AGENT, SIGNATURE_ALGORITHM
from .crypto import CryptoProvider, DefaultCryptoProvider
from .exceptions import AudibleError
from .localization import LocaleConfig, get_locale
from .login import LoginFlow
from .register import DeviceRegistrar
from .session import Session, SessionStore
from .tokens import TokenLifecycle
from .transport import Transport, response_json

logger = logging.getLogger("audible_session.client")

Body = Optional[Union[str, bytes]]
Form = Optional[Union[str, Mapping[str, Any]]]

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class AudibleClient:
    """
    Request executor bound to one Session.

    Args:
        session: Credentials (default: unset session; any request will try
                 to re-register and most likely fail, so log in first)
        crypto: Signing capability
        transport: HTTP transport shared by all components
        lifecycle: Token refresh/re-registration strategy
        store: Where to persist the session after it changes
    """

    def __init__(
        self,
        session: Optional[Session] = None,
        crypto: Optional[CryptoProvider] = None,
        transport: Optional[Transport] = None,
        lifecycle: Optional[TokenLifecycle] = None,
        store: Optional[SessionStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._session = session or Session()
        self._crypto = crypto or DefaultCryptoProvider()
        self._transport = transport or Transport()
        self._lifecycle = lifecycle or TokenLifecycle(
            registrar=DeviceRegistrar(crypto=self._crypto, transport=self._transport, clock=clock),
            transport=self._transport,
            clock=clock,
        )
        self._store = store
        self._clock = clock
        self._lock = threading.RLock()
        self._key_cache: Optional[Tuple[str, Any]] = None

    # ─── Construction ───────────────────────────────────────

    @classmethod
    def login(
        cls,
        email: str,
        password: str,
        locale: str = "us",
        challenges: Optional[ChallengeCallbacks] = None,
        store: Optional[SessionStore] = None,
        crypto: Optional[CryptoProvider] = None,
        transport: Optional[Transport] = None,
    ) -> "AudibleClient":
        """
        Interactive sign-in followed by device registration.

        Raises:
            LoginError / CaptchaError / MfaError: Sign-in failed
            RegistrationError: Device registration failed
        """
        locale = locale.lower()
        crypto = crypto or DefaultCryptoProvider()
        transport = transport or Transport()

        result = LoginFlow(
            email, password,
            locale=locale,
            challenges=challenges,
            crypto=crypto,
            transport=transport,
        ).run()

        session = Session(
            login_cookies=result.cookies,
            access_token=result.access_token,
            locale=locale,
        )
        client = cls(session=session, crypto=crypto, transport=transport, store=store)
        client.registrar.register(session)
        client._persist()
        return client

    @classmethod
    def from_file(cls, path: str, **kwargs) -> "AudibleClient":
        """Load a persisted session; later changes are saved back to `path`."""
        store = SessionStore(path)
        return cls(session=store.load(), store=store, **kwargs)

    # ─── Properties ─────────────────────────────────────────

    @property
    def session(self) -> Session:
        return self._session

    @property
    def locale(self) -> LocaleConfig:
        return get_locale(self._session.locale)

    @property
    def registrar(self) -> DeviceRegistrar:
        return self._lifecycle.registrar

    # ─── Session maintenance ────────────────────────────────

    def ensure_valid(self) -> bool:
        """
        Refresh (or re-register) if the access token has expired.

        Returns:
            bool: True if a refresh happened
        """
        with self._lock:
            if not self._session.is_expired(self._clock()):
                return False
            logger.info("[Client] Session expired, refreshing")
            self._lifecycle.refresh_or_register(self._session)
            self._persist()
            return True

    def refresh(self) -> None:
        """Force an access token refresh (with re-registration fallback)."""
        with self._lock:
            self._lifecycle.refresh_or_register(self._session)
            self._persist()

    def deregister(self) -> None:
        """Deregister the device. The session needs a new login afterwards."""
        with self._lock:
            self.registrar.deregister(self._session)
            self._persist()

    def save(self, path: Optional[str] = None) -> None:
        """Persist the session to `path` (default: the configured store)."""
        store = SessionStore(path) if path else self._store
        if store is None:
            raise ValueError("No session file configured")
        with self._lock:
            store.save(self._session)

    def _persist(self) -> None:
        if self._store is not None:
            self._store.save(self._session)

    # ─── Signing ────────────────────────────────────────────

    def _private_key(self) -> Any:
        encoded = self._session.device_private_key
        if self._key_cache is None or self._key_cache[0] != encoded:
            self._key_cache = (encoded, self._crypto.load_private_key(encoded))
        return self._key_cache[1]

    def sign_headers(self, method: str, path: str, body: Body = None) -> Dict[str, str]:
        """ADP signature headers for one request (path includes the query)."""
        if body is None:
            body = b""
        elif isinstance(body, str):
            body = body.encode("utf-8")
        date = datetime.fromtimestamp(self._clock(), tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        adp_token = self._session.adp_token
        # Signed over the exact body bytes sent on the wire
        data = f"{method}\n{path}\n{date}\n".encode("utf-8") + body + f"\n{adp_token}".encode("utf-8")
        signature = self._crypto.sign(self._private_key(), data)
        return {
            "x-adp-token": adp_token,
            "x-adp-alg": SIGNATURE_ALGORITHM,
            "x-adp-signature": f"{signature}:{date}",
        }

    def _prepare(
        self,
        method: str,
        path: str,
        headers: Optional[Mapping[str, str]],
        body: Body,
        params: Optional[Mapping[str, Any]],
    ) -> Tuple[str, Dict[str, str]]:
        method = method.upper()
        if not path.startswith("/"):
            path = f"/{path}"
        if params:
            path = f"{path}{'&' if '?' in path else '?'}{urlencode(params)}"

        request_headers = {
            "Accept": "application/json",
            "User-Agent": API_USER_AGENT,
        }
        request_headers.update(headers or {})

        with self._lock:
            self.ensure_valid()
            request_headers.update(self.sign_headers(method, path, body))
            url = f"{self.locale.audible_api_url}{path}"

        logger.debug(f"[Client] {method} {path}")
        return url, request_headers

    # ─── Dispatch ───────────────────────────────────────────

    def exec(
        self,
        method: str,
        path: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Body = None,
        params: Optional[Mapping[str, Any]] = None,
        form: Form = None,
    ):
        """
        Send one signed request to the Audible API.

        Args:
            method: HTTP verb
            path: API path ("/1.0/library")
            headers: Extra headers
            body: Raw body
            params: Query parameters (signed as part of the path)
            form: Form body (dict or encoded string), sets the form content type

        Raises:
            FatalSessionError: Session could not be refreshed
            TransportError: Network failure
        """
        body, headers = _apply_form(body, headers, form)
        url, request_headers = self._prepare(method, path, headers, body, params)
        return self._transport.request(method.upper(), url, headers=request_headers, data=body)

    @contextmanager
    def stream(
        self,
        method: str,
        path: str,
        headers: Optional[Mapping[str, str]] = None,
        body: Body = None,
        params: Optional[Mapping[str, Any]] = None,
        form: Form = None,
    ) -> Iterator[Any]:
        """Like exec(), but the response body is read incrementally (iter_content)."""
        body, headers = _apply_form(body, headers, form)
        url, request_headers = self._prepare(method, path, headers, body, params)
        response = self._transport.request(
            method.upper(), url, headers=request_headers, data=body, stream=True,
        )
        try:
            yield response
        finally:
            response.close()

    def get(self, path: str, headers=None, body: Body = None, params=None, form: Form = None):
        return self.exec("GET", path, headers, body, params, form)

    def post(self, path: str, headers=None, body: Body = None, params=None, form: Form = None):
        return self.exec("POST", path, headers, body, params, form)

    def put(self, path: str, headers=None, body: Body = None, params=None, form: Form = None):
        return self.exec("PUT", path, headers, body, params, form)

    def patch(self, path: str, headers=None, body: Body = None, params=None, form: Form = None):
        return self.exec("PATCH", path, headers, body, params, form)

    def delete(self, path: str, headers=None, body: Body = None, params=None, form: Form = None):
        return self.exec("DELETE", path, headers, body, params, form)

    def head(self, path: str, headers=None, params=None):
        return self.exec("HEAD", path, headers, None, params)

    def options(self, path: str, headers=None, params=None):
        return self.exec("OPTIONS", path, headers, None, params)

    # ─── Amazon account ─────────────────────────────────────

    def user_profile(self) -> Dict[str, Any]:
        """Amazon customer profile (bearer-authenticated, not signed)."""
        self.ensure_valid()
        locale = self.locale
        response = self._transport.request(
            "GET",
            f"{locale.api_url}/user/profile",
            headers={
                "Accept-Charset": "utf-8",
                "Accept-Language": locale.accept_language,
                "User-Agent": API_USER_AGENT,
                "Cookie": self._session.cookie_string,
                "Authorization": f"Bearer {self._session.access_token}",
            },
        )
        payload = response_json(response)
        if response.status_code != 200:
            raise AudibleError(
                str(payload.get("error_description") or f"HTTP {response.status_code}"),
                status_code=response.status_code,
                response=payload,
            )
        return payload

    # ─── Lifecycle ──────────────────────────────────────────

    def close(self) -> None:
        self._transport.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self) -> str:
        return (
            f"AudibleClient(locale={self._session.locale!r}, "
            f"registered={self._session.is_registered}, expires={self._session.expires})"
        )


def _apply_form(body: Body, headers: Optional[Mapping[str, str]], form: Form):
    if form is None:
        return body, headers
    if body is not None:
        raise ValueError("Pass either body or form, not both")
    encoded = form if isinstance(form, str) else urlencode(form)
    merged = dict(headers or {})
    merged["Content-Type"] = FORM_CONTENT_TYPE
    return encoded, merged
