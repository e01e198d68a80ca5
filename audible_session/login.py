"""
Login Flow
==========
Amazon web sign-in for the Audible iOS app. Produces an access token
and the sign-in cookie jar.

State machine:
    INIT
      → SESSION_ESTABLISHED    landing page GET until "session-token" is set
      → CHALLENGE_SUBMITTED    OAuth page GET + credentials/metadata1 POST
      → CAPTCHA_PENDING        page shows a CAPTCHA → guess → POST again
      → MFA_PENDING            redirect to /ap/mfa → OTP → POST
      → AUTHORIZED             redirect carrying openid.oa2.access_token
      → FAILED                 anything else (error banner text raised)

The only blocking waits are the CAPTCHA and OTP callbacks. Nothing is
written to a Session here: the caller hands the LoginResult to
DeviceRegistrar.

Usage:
    result = LoginFlow("me@example.com", "secret", locale="us").run()
    result.access_token, result.cookies
"""

import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional
from urllib.parse import parse_qs, urlencode, urljoin, urlparse

from .challenge import ChallengeCallbacks, ChallengeKind, ConsoleCallbacks
from .config import (
    ACCESS_TOKEN_PARAM,
    LOGIN_USER_AGENT,
    MAX_LANDING_ATTEMPTS,
    MFA_PATH,
    OAUTH_CLIENT_ID,
    SESSION_COOKIE,
    SIGNIN_PATH,
)
from .crypto import CryptoProvider, DefaultCryptoProvider
from .exceptions import AudibleError, CaptchaError, LoginError, MfaError
from .html_forms import find_captcha_url, find_error_message, parse_hidden_inputs
from .localization import LocaleConfig, get_locale
from .session import cookie_header, merge_cookies
from .transport import Transport, response_cookies

logger = logging.getLogger("audible_session.login")

OPENID_SELECT = "http://specs.openid.net/auth/2.0/identifier_select"
DEFAULT_ERROR = "Unable to login."

# Script inventory of the iOS sign-in page as fwcim reports it
_SCRIPT_URLS = [
    "https://images-na.ssl-images-amazon.com/images/I/61HHaoAEflL._RC|11-BZEJ8lnL.js,01qkmZhGmAL.js,"
    "71qOHv6nKaL.js_.js?AUIClients/AudibleiOSMobileWhiteAuthSkin#mobile",
    "https://images-na.ssl-images-amazon.com/images/I/21T7I7qVEeL._RC|21T1XtqIBZL.js,21WEJWRAQlL.js,"
    "31DwnWh8lFL.js,21VKEfzET-L.js,01fHQhWQYWL.js,51TfwrUQAQL.js_.js?AUIClients/AuthenticationPortalAssets#mobile",
    "https://images-na.ssl-images-amazon.com/images/I/0173Lf6yxEL.js?AUIClients/AuthenticationPortalInlineAssets",
    "https://images-na.ssl-images-amazon.com/images/I/211S6hvLW6L.js?AUIClients/CVFAssets",
    "https://images-na.ssl-images-amazon.com/images/G/01/x-locale/common/login/fwcim._CB454428048_.js",
]
_INLINE_HASHES = [
    -1746719145, 1334687281, -314038750, 1184642547, -137736901, 318224283, 585973559,
    1103694443, 11288800, -1611905557, 1800521327, -1171760960, -898892073,
]
# (collector name, elapsed ms) in the order fwcim runs them
_COLLECTOR_TIMINGS = (
    ("mercury", 0), ("instant", 0), ("element-telemetry", 2), ("script-version", 0),
    ("local-storage-identifier", 0), ("timezone", 0), ("script", 1), ("plugin", 0),
    ("capability", 1), ("browser", 0), ("history", 0), ("gpu", 1), ("battery", 0),
    ("dnt", 0), ("math-fingerprint", 0), ("performance", 0), ("timer", 0),
    ("time-to-submit", 0), ("form-input-telemetry", 4), ("canvas", 2),
    ("captcha-telemetry", 0), ("proof-of-work", 1), ("ubf", 0), ("timer", 0),
)


class LoginState(str, Enum):
    INIT = "init"
    SESSION_ESTABLISHED = "session_established"
    CHALLENGE_SUBMITTED = "challenge_submitted"
    CAPTCHA_PENDING = "captcha_pending"
    MFA_PENDING = "mfa_pending"
    AUTHORIZED = "authorized"
    FAILED = "failed"


TERMINAL_STATES = (LoginState.AUTHORIZED, LoginState.FAILED)


@dataclass
class LoginChallenge:
    """Working state of one LoginFlow.run(), discarded when it returns."""

    fields: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)
    pending: ChallengeKind = ChallengeKind.NONE
    submitted: ChallengeKind = ChallengeKind.NONE  # what the last POST answered
    referer: str = ""
    response: Any = None
    captcha_url: str = ""
    mfa_url: str = ""
    access_token: str = ""
    error: Optional[AudibleError] = None


@dataclass
class LoginResult:
    access_token: str
    cookies: Dict[str, str]


class LoginFlow:
    """
    One interactive sign-in attempt.

    Args:
        email, password: Amazon account credentials
        locale: Marketplace key ("us", "uk", "de", ...)
        challenges: CAPTCHA/OTP answering capability (default: console prompts)
        crypto: Encrypts the metadata1 fingerprint
        transport: HTTP transport
        max_landing_attempts: Landing page GETs allowed before giving up
    """

    def __init__(
        self,
        email: str,
        password: str,
        locale: str = "us",
        challenges: Optional[ChallengeCallbacks] = None,
        crypto: Optional[CryptoProvider] = None,
        transport: Optional[Transport] = None,
        max_landing_attempts: int = MAX_LANDING_ATTEMPTS,
        clock: Callable[[], float] = time.time,
    ):
        self._email = email
        self._password = password
        self._locale: LocaleConfig = get_locale(locale)
        self._challenges = challenges or ConsoleCallbacks()
        self._crypto = crypto or DefaultCryptoProvider()
        self._transport = transport or Transport()
        self._max_landing_attempts = max_landing_attempts
        self._clock = clock
        self.state = LoginState.INIT

        self._handlers: Dict[LoginState, Callable[[LoginChallenge], LoginState]] = {
            LoginState.INIT: self._establish_session,
            LoginState.SESSION_ESTABLISHED: self._submit_credentials,
            LoginState.CHALLENGE_SUBMITTED: self._inspect_response,
            LoginState.CAPTCHA_PENDING: self._answer_captcha,
            LoginState.MFA_PENDING: self._answer_mfa,
        }

    @property
    def signin_url(self) -> str:
        return f"{self._locale.login_url}{SIGNIN_PATH}"

    def run(self) -> LoginResult:
        """
        Drive the sign-in to a terminal state.

        Raises:
            LoginError: No success redirect (message from the error banner)
            CaptchaError: The CAPTCHA guess was rejected
            MfaError: The OTP was rejected
        """
        self.state = LoginState.INIT
        challenge = LoginChallenge()
        logger.info(f"[Login] Starting sign-in at {self._locale.login_url}")

        while self.state not in TERMINAL_STATES:
            previous = self.state
            self.state = self._handlers[self.state](challenge)
            logger.debug(f"[Login] {previous.value} → {self.state.value}")

        if self.state == LoginState.FAILED:
            logger.warning(f"[Login] Failed: {challenge.error}")
            raise challenge.error

        logger.info("[Login] Authorized")
        return LoginResult(
            access_token=challenge.access_token,
            cookies=dict(challenge.cookies),
        )

    # ─── State handlers ─────────────────────────────────────

    def _establish_session(self, challenge: LoginChallenge) -> LoginState:
        landing = f"{self._locale.login_url}/"
        for attempt in range(1, self._max_landing_attempts + 1):
            self._send(challenge, "GET", landing)
            if SESSION_COOKIE in challenge.cookies:
                logger.debug(f"[Login] {SESSION_COOKIE} issued after {attempt} request(s)")
                return LoginState.SESSION_ESTABLISHED

        challenge.error = LoginError(
            f"No {SESSION_COOKIE} cookie after {self._max_landing_attempts} requests."
        )
        return LoginState.FAILED

    def _submit_credentials(self, challenge: LoginChallenge) -> LoginState:
        oauth_url = f"{self.signin_url}?{urlencode(self.oauth_params())}"
        page = self._send(challenge, "GET", oauth_url)

        challenge.fields = parse_hidden_inputs(page.text)
        challenge.fields["email"] = self._email
        challenge.fields["password"] = self._password
        challenge.fields["metadata1"] = self._crypto.encrypt_metadata(
            build_metadata(LOGIN_USER_AGENT, oauth_url, self._clock)
        )
        challenge.referer = oauth_url

        challenge.response = self._post_form(challenge)
        challenge.submitted = ChallengeKind.NONE
        return LoginState.CHALLENGE_SUBMITTED

    def _inspect_response(self, challenge: LoginChallenge) -> LoginState:
        response = challenge.response

        if 300 <= response.status_code < 400:
            location = response.headers.get("location", "")
            target = urlparse(location)
            if MFA_PATH in target.path:
                challenge.pending = ChallengeKind.MFA
                challenge.mfa_url = urljoin(self._locale.login_url, location)
                return LoginState.MFA_PENDING

            token = parse_qs(target.query).get(ACCESS_TOKEN_PARAM)
            if token:
                challenge.access_token = token[0]
                challenge.pending = ChallengeKind.NONE
                return LoginState.AUTHORIZED

            challenge.error = LoginError(
                f"Sign-in redirected without an access token: {location[:80]}",
                status_code=response.status_code,
            )
            return LoginState.FAILED

        page = response.text
        captcha_url = find_captcha_url(page)
        if captcha_url:
            if challenge.submitted == ChallengeKind.CAPTCHA:
                logger.info(
                    f"[Login] CAPTCHA not accepted, new image issued "
                    f"({find_error_message(page) or 'no message'})"
                )
            challenge.fields = parse_hidden_inputs(page)
            challenge.captcha_url = captcha_url
            challenge.pending = ChallengeKind.CAPTCHA
            return LoginState.CAPTCHA_PENDING

        error_cls = {
            ChallengeKind.CAPTCHA: CaptchaError,
            ChallengeKind.MFA: MfaError,
        }.get(challenge.submitted, LoginError)
        challenge.error = error_cls(
            find_error_message(page) or DEFAULT_ERROR,
            status_code=response.status_code,
        )
        return LoginState.FAILED

    def _answer_captcha(self, challenge: LoginChallenge) -> LoginState:
        guess = self._challenges.solve_captcha(challenge.captcha_url)

        challenge.fields.update({
            "guess": guess,
            "use_image_captcha": "true",
            "use_audio_captcha": "false",
            "showPasswordChecked": "false",
            "email": self._email,
            "password": self._password,
        })
        challenge.response = self._post_form(challenge)
        challenge.submitted = ChallengeKind.CAPTCHA
        challenge.pending = ChallengeKind.NONE
        return LoginState.CHALLENGE_SUBMITTED

    def _answer_mfa(self, challenge: LoginChallenge) -> LoginState:
        page = self._send(challenge, "GET", challenge.mfa_url)
        challenge.fields = parse_hidden_inputs(page.text)

        challenge.fields["otpCode"] = self._challenges.get_otp_code()
        challenge.fields["mfaSubmit"] = "Submit"
        challenge.referer = challenge.mfa_url

        challenge.response = self._post_form(challenge)
        challenge.submitted = ChallengeKind.MFA
        challenge.pending = ChallengeKind.NONE
        return LoginState.CHALLENGE_SUBMITTED

    # ─── HTTP helpers ───────────────────────────────────────

    def oauth_params(self) -> Dict[str, str]:
        """Query string of the OAuth authorization page."""
        loc = self._locale
        return {
            "openid.oa2.response_type": "token",
            "openid.return_to": f"{loc.login_url}/ap/maplanding",
            "openid.assoc_handle": loc.openid_assoc_handle,
            "openid.identity": OPENID_SELECT,
            "pageId": loc.openid_assoc_handle,
            "accountStatusPolicy": "P1",
            "openid.claimed_id": OPENID_SELECT,
            "openid.mode": "checkid_setup",
            "openid.ns.oa2": "http://www.amazon.com/ap/ext/oauth/2",
            "openid.oa2.client_id": OAUTH_CLIENT_ID,
            "language": loc.oauth_lang,
            "openid.ns.pape": "http://specs.openid.net/extensions/pape/1.0",
            "marketPlaceId": loc.marketplace_id,
            "openid.oa2.scope": "device_auth_access",
            "forceMobileLayout": "true",
            "openid.ns": "http://specs.openid.net/auth/2.0",
            "openid.pape.max_auth_age": "0",
        }

    def _headers(self, challenge: LoginChallenge) -> Dict[str, str]:
        headers = {
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Charset": "utf-8",
            "Accept-Language": self._locale.accept_language,
            "Origin": self._locale.login_url,
            "User-Agent": LOGIN_USER_AGENT,
        }
        if challenge.cookies:
            headers["Cookie"] = cookie_header(challenge.cookies)
        if challenge.referer:
            headers["Referer"] = challenge.referer
        return headers

    def _send(self, challenge: LoginChallenge, method: str, url: str, data: Optional[str] = None):
        headers = self._headers(challenge)
        if data is not None:
            headers["Content-Type"] = "application/x-www-form-urlencoded"
        response = self._transport.request(method, url, headers=headers, data=data)
        merge_cookies(challenge.cookies, response_cookies(response))
        return response

    def _post_form(self, challenge: LoginChallenge):
        return self._send(challenge, "POST", self.signin_url, data=urlencode(challenge.fields))


def build_metadata(user_agent: str, location: str, clock: Callable[[], float] = time.time) -> str:
    """
    Browser fingerprint ("metadata1") the sign-in form expects.

    Shape follows what Amazon's fwcim collector script posts from an
    iPhone Safari web view.
    """
    now_ms = int(clock() * 1000)
    empty_interaction = {
        "keys": 0,
        "keyPressTimeIntervals": [],
        "copies": 0,
        "cuts": 0,
        "pastes": 0,
        "clicks": 0,
        "touches": 0,
        "mouseClickPositions": [],
        "keyCycles": [],
        "mouseCycles": [],
        "touchCycles": [],
    }
    timing_keys = (
        "navigationStart", "fetchStart", "domainLookupStart", "domainLookupEnd",
        "connectStart", "connectEnd", "secureConnectionStart", "requestStart",
        "responseStart", "responseEnd", "domLoading", "domInteractive",
        "domContentLoadedEventStart", "domContentLoadedEventEnd", "domComplete",
        "loadEventStart", "loadEventEnd",
    )
    timing = {key: now_ms for key in timing_keys}
    timing.update({"unloadEventStart": 0, "unloadEventEnd": 0, "redirectStart": 0, "redirectEnd": 0})
    screen = "320-568-548-32-*-*-*"

    metadata = {
        "start": now_ms,
        "interaction": empty_interaction,
        "version": "3.0.0",
        "lsUbid": "X39-6721012-8795219:1549849158",
        "timeZone": -6,
        "scripts": {
            "dynamicUrls": _SCRIPT_URLS,
            "inlineHashes": _INLINE_HASHES,
            "elapsed": 52,
            "dynamicUrlCount": len(_SCRIPT_URLS),
            "inlineHashesCount": len(_INLINE_HASHES),
        },
        "plugins": f"unknown||{screen}",
        "dupedPlugins": f"unknown||{screen}",
        "screenInfo": screen,
        "capabilities": {
            "js": {
                "audio": True,
                "geolocation": True,
                "localStorage": "supported",
                "touch": True,
                "video": True,
                "webWorker": True,
            },
            "css": {
                "textShadow": True,
                "textStroke": True,
                "boxShadow": True,
                "borderRadius": True,
                "borderImage": True,
                "opacity": True,
                "transform": True,
                "transition": True,
            },
            "elapsed": 1,
        },
        "referrer": "",
        "userAgent": user_agent,
        "location": location,
        "webDriver": None,
        "history": {"length": 1},
        "gpu": {"vendor": "Apple Inc.", "model": "Apple A9 GPU", "extensions": []},
        "math": {
            "tan": "-1.4214488238747243",
            "sin": "0.8178819121159085",
            "cos": "-0.5753861119575491",
        },
        "performance": {"timing": timing},
        "end": now_ms,
        "timeToSubmit": 108873,
        "form": {
            "email": dict(
                empty_interaction, width=290, height=43, checksum="C860E86B",
                time=12773, autocomplete=False, prefilled=False,
            ),
            "password": dict(
                empty_interaction, width=290, height=43,
                time=10353, autocomplete=False, prefilled=False,
            ),
        },
        "canvas": {"hash": -373378155, "emailHash": -1447130560, "histogramBins": []},
        "token": None,
        "errors": [],
        "metrics": [{"n": f"fwcim-{name}-collector", "t": t} for name, t in _COLLECTOR_TIMINGS],
    }
    return json.dumps(metadata, separators=(",", ":"))
