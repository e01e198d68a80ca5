"""
Device Registration
===================
Exchange a signed-in access token + cookies for long-lived device
credentials, and deregister the device again.

register():
    POST {api}/auth/register
    ← adp_token, device_private_key, bearer access/refresh token,
      expires_in, website cookies

deregister():
    POST {api}/auth/deregister (deregister_all_existing_accounts)
    → adp_token/refresh_token cleared, expires = now

A Session is only written after the whole response parsed successfully.
"""

import json
import logging
import time
from typing import Any, Callable, Dict, Optional

from .config import (
    API_USER_AGENT,
    APP_NAME,
    APP_VERSION,
    DEVICE_MODEL,
    DEVICE_NAME,
    DEVICE_SERIAL,
    DEVICE_TYPE,
    OS_VERSION,
    REQUESTED_EXTENSIONS,
    REQUESTED_TOKEN_TYPES,
)
from .crypto import CryptoProvider, DefaultCryptoProvider
from .exceptions import RegistrationError
from .localization import LocaleConfig, get_locale
from .log_config import mask
from .session import Session, merge_cookies, string_field
from .transport import Transport, response_json

logger = logging.getLogger("audible_session.register")


def auth_api_headers(session: Session, locale: LocaleConfig) -> Dict[str, str]:
    """Headers shared by the register/deregister endpoints."""
    return {
        "Content-Type": "application/json",
        "Accept": "application/json",
        "Accept-Charset": "utf-8",
        "Accept-Language": locale.accept_language,
        "User-Agent": API_USER_AGENT,
        "x-amzn-identity-auth-domain": locale.api_host,
        "Cookie": session.cookie_string,
    }


def api_error_message(payload: Dict[str, Any], status_code: int) -> str:
    """Error message the auth API put in response.error.message."""
    try:
        return str(payload["response"]["error"]["message"])
    except (KeyError, TypeError):
        return f"HTTP {status_code}"


class DeviceRegistrar:
    """
    Registers/deregisters the virtual Audible iPhone.

    Usage:
        registrar = DeviceRegistrar()
        registrar.register(session)     # session has cookies + access_token
        registrar.deregister(session)
    """

    def __init__(
        self,
        crypto: Optional[CryptoProvider] = None,
        transport: Optional[Transport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._crypto = crypto or DefaultCryptoProvider()
        self._transport = transport or Transport()
        self._clock = clock

    def registration_body(self, session: Session, locale: LocaleConfig) -> Dict[str, Any]:
        return {
            "requested_extensions": REQUESTED_EXTENSIONS,
            "requested_token_type": REQUESTED_TOKEN_TYPES,
            "cookies": {
                "website_cookies": [
                    {"Name": name, "Value": value}
                    for name, value in session.login_cookies.items()
                ],
                "domain": locale.auth_register_domain,
            },
            "registration_data": {
                "domain": "Device",
                "app_version": APP_VERSION,
                "device_serial": DEVICE_SERIAL,
                "device_type": DEVICE_TYPE,
                "device_name": DEVICE_NAME,
                "os_version": OS_VERSION,
                "device_model": DEVICE_MODEL,
                "app_name": APP_NAME,
            },
            "auth_data": {"access_token": session.access_token},
        }

    def register(self, session: Session) -> Session:
        """
        Register the device and store the issued credentials on `session`.

        Raises:
            RegistrationError: Non-200 (server message) or malformed response
        """
        locale = get_locale(session.locale)
        response = self._transport.request(
            "POST",
            f"{locale.api_url}/auth/register",
            headers=auth_api_headers(session, locale),
            data=json.dumps(self.registration_body(session, locale)),
        )
        payload = response_json(response)

        if response.status_code != 200:
            message = api_error_message(payload, response.status_code)
            logger.warning(f"[Register] Failed ({response.status_code}): {message}")
            raise RegistrationError(message, status_code=response.status_code, response=payload)

        try:
            tokens = payload["response"]["success"]["tokens"]
            adp_token = string_field(tokens["mac_dms"], "adp_token", allow_empty=False)
            key = self._crypto.load_private_key(
                string_field(tokens["mac_dms"], "device_private_key", allow_empty=False)
            )
            private_key = self._crypto.encode_private_key(key)
            access_token = string_field(tokens["bearer"], "access_token", allow_empty=False)
            refresh_token = string_field(tokens["bearer"], "refresh_token", allow_empty=False)
            expires_in = int(tokens["bearer"]["expires_in"])
            cookies = {
                str(cookie["Name"]): str(cookie["Value"])
                for cookie in tokens.get("website_cookies", [])
            }
        except (KeyError, TypeError, ValueError) as e:
            raise RegistrationError(
                f"Malformed registration response: {e}",
                status_code=response.status_code,
                response=payload,
            ) from e

        session.adp_token = adp_token
        session.device_private_key = private_key
        session.access_token = access_token
        session.refresh_token = refresh_token
        session.expires = int(self._clock()) + expires_in
        merge_cookies(session.login_cookies, cookies)

        logger.info(
            f"[Register] Device registered (adp_token={mask(adp_token)}, "
            f"expires_in={expires_in}s)"
        )
        return session

    def deregister(self, session: Session) -> Session:
        """
        Deregister every device of the account.

        Raises:
            RegistrationError: Non-200 (server message)
        """
        locale = get_locale(session.locale)
        headers = auth_api_headers(session, locale)
        headers["Authorization"] = f"Bearer {session.access_token}"

        response = self._transport.request(
            "POST",
            f"{locale.api_url}/auth/deregister",
            headers=headers,
            data=json.dumps({"deregister_all_existing_accounts": True}),
        )
        payload = response_json(response)

        if response.status_code != 200:
            message = api_error_message(payload, response.status_code)
            logger.warning(f"[Deregister] Failed ({response.status_code}): {message}")
            raise RegistrationError(message, status_code=response.status_code, response=payload)

        session.adp_token = ""
        session.refresh_token = ""
        session.expires = int(self._clock())
        logger.info("[Deregister] Device deregistered")
        return session
