"""
Token Lifecycle
===============
Keep a registered Session usable without a new interactive login.

Cascade (refresh_or_register):
    1. refresh            POST /auth/token with the refresh token (cheap)
    2. deregister+register using the cookies/access token still held
    3. FatalSessionError  → caller has to run LoginFlow again
"""

import logging
import time
from typing import Callable, Optional

from .config import APP_NAME, APP_VERSION
from .exceptions import AudibleError, FatalSessionError, TokenRefreshError
from .localization import get_locale
from .log_config import mask
from .register import DeviceRegistrar
from .session import Session, string_field
from .transport import Transport, response_json

logger = logging.getLogger("audible_session.tokens")


class TokenLifecycle:
    """
    Access token refresh with device re-registration as fallback.

    Usage:
        lifecycle = TokenLifecycle(registrar=DeviceRegistrar())
        lifecycle.refresh_or_register(session)
    """

    def __init__(
        self,
        registrar: Optional[DeviceRegistrar] = None,
        transport: Optional[Transport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._transport = transport or Transport()
        self._registrar = registrar or DeviceRegistrar(transport=self._transport, clock=clock)
        self._clock = clock

    @property
    def registrar(self) -> DeviceRegistrar:
        return self._registrar

    def refresh(self, session: Session) -> Session:
        """
        Exchange the refresh token for a new access token.

        Raises:
            TokenRefreshError: Non-200 (error_description) or malformed response
        """
        locale = get_locale(session.locale)
        form = {
            "app_name": APP_NAME,
            "app_version": APP_VERSION,
            "source_token": session.refresh_token,
            "requested_token_type": "access_token",
            "source_token_type": "refresh_token",
        }
        response = self._transport.request(
            "POST",
            f"{locale.api_url}/auth/token",
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                "x-amzn-identity-auth-domain": locale.api_host,
            },
            data=form,
        )
        payload = response_json(response)

        if response.status_code != 200:
            message = str(payload.get("error_description") or f"HTTP {response.status_code}")
            logger.warning(f"[Token] Refresh failed ({response.status_code}): {message}")
            raise TokenRefreshError(message, status_code=response.status_code, response=payload)

        try:
            access_token = string_field(payload, "access_token", allow_empty=False)
            expires_in = int(payload["expires_in"])
        except (KeyError, TypeError, ValueError) as e:
            raise TokenRefreshError(
                f"Malformed token response: {e}",
                status_code=response.status_code,
                response=payload,
            ) from e

        session.access_token = access_token
        session.expires = int(self._clock()) + expires_in
        logger.info(f"[Token] Access token refreshed ({mask(access_token)}, expires_in={expires_in}s)")
        return session

    def refresh_or_register(self, session: Session) -> Session:
        """
        Refresh; on failure deregister + register with the held credentials.

        Raises:
            FatalSessionError: Deregister or register failed too
        """
        try:
            return self.refresh(session)
        except AudibleError as e:
            logger.info(f"[Token] Refresh failed ({e}), re-registering device")

        try:
            self._registrar.deregister(session)
            return self._registrar.register(session)
        except AudibleError as e:
            logger.error(f"[Token] Re-registration failed: {e}")
            raise FatalSessionError("Could not refresh client.") from e
