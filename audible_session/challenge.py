"""
Challenge Callbacks
===================
Human-verification steps interleaved into the Amazon sign-in flow.

The login flow stops at two points and asks a ChallengeCallbacks object
for an answer:
    solve_captcha(image_url) -> guess
    get_otp_code()          -> one-time password

Both calls block. An implementation may wait on a person, a remote
solving service or anything else; enforce timeouts inside it.

Usage:
    flow = LoginFlow(email, password, challenges=ConsoleCallbacks())

    # Or plug in your own functions:
    challenges = CallbackChallenges(
        captcha=lambda url: solver.solve(url),
        otp=lambda: totp.now(),
    )
"""

import logging
from enum import Enum
from typing import Callable, Optional, Protocol

logger = logging.getLogger("audible_session.challenge")


class ChallengeKind(str, Enum):
    """Challenge the sign-in page is currently waiting on."""
    NONE = "none"
    CAPTCHA = "captcha"
    MFA = "mfa"


class ChallengeCallbacks(Protocol):
    """Capability that answers sign-in challenges."""

    def solve_captcha(self, image_url: str) -> str:
        ...

    def get_otp_code(self) -> str:
        ...


class ConsoleCallbacks:
    """Prompt on the terminal (default)."""

    def __init__(self, input_func: Callable[[str], str] = input, output_func: Callable[[str], None] = print):
        self._input = input_func
        self._output = output_func

    def solve_captcha(self, image_url: str) -> str:
        self._output(image_url)
        return self._input("Answer for CAPTCHA: ").strip().lower()

    def get_otp_code(self) -> str:
        return self._input("OTP Code: ").strip().lower()


class CallbackChallenges:
    """
    Adapt two plain functions to ChallengeCallbacks.

    A missing function falls back to the console prompt.
    """

    def __init__(
        self,
        captcha: Optional[Callable[[str], str]] = None,
        otp: Optional[Callable[[], str]] = None,
    ):
        self._console = ConsoleCallbacks()
        self._captcha = captcha or self._console.solve_captcha
        self._otp = otp or self._console.get_otp_code

    def solve_captcha(self, image_url: str) -> str:
        logger.info(f"[Challenge] CAPTCHA requested: {image_url[:80]}")
        return self._captcha(image_url)

    def get_otp_code(self) -> str:
        logger.info("[Challenge] OTP code requested")
        return self._otp()
