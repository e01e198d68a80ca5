"""
HTTP Transport
==============
Thin HTTP engine based on curl_cffi.
Every request of the package goes through Transport.request().

Cookies are never kept by the underlying curl session: the login flow
and the session record own their cookie jars explicitly and send them
as a Cookie header.
"""

import logging
import time
from typing import Any, Dict, Optional, Union

from curl_cffi import CurlError
from curl_cffi import requests as curl_requests

from .config import CONNECT_TIMEOUT, IMPERSONATE, REQUEST_TIMEOUT
from .exceptions import TransportError

logger = logging.getLogger("audible_session.transport")


class Transport:
    """
    HTTP client used by the login flow, the auth API calls and the
    signed API requests.

    Redirects are never followed: the sign-in flow reads Location headers
    itself.
    """

    def __init__(
        self,
        impersonate: str = IMPERSONATE,
        timeout: float = REQUEST_TIMEOUT,
        proxy: Optional[str] = None,
    ):
        self._impersonate = impersonate
        self._timeout = timeout
        self._proxy = proxy
        self._curl_session: Optional[curl_requests.Session] = None

    def _get_curl_session(self) -> curl_requests.Session:
        if self._curl_session is None:
            self._curl_session = curl_requests.Session(impersonate=self._impersonate)
        return self._curl_session

    def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Union[str, bytes, Dict[str, Any]]] = None,
        stream: bool = False,
    ):
        """
        Send one request and return the curl_cffi response.

        Raises:
            TransportError: Connection, TLS or timeout failure
        """
        kwargs: Dict[str, Any] = {
            "headers": headers or {},
            "timeout": (CONNECT_TIMEOUT, self._timeout),
            "allow_redirects": False,
        }
        if params:
            kwargs["params"] = params
        if data is not None:
            kwargs["data"] = data
        if stream:
            kwargs["stream"] = True
        if self._proxy:
            kwargs["proxies"] = {"http": self._proxy, "https": self._proxy}

        session = self._get_curl_session()
        start = time.time()
        try:
            response = session.request(method, url, **kwargs)
        except CurlError as e:
            logger.warning(f"[HTTP] {method} {url[:80]} failed: {e}")
            raise TransportError(f"{method} {url} failed: {e}") from e
        finally:
            session.cookies.clear()

        logger.debug(
            f"[HTTP] {method} {url[:80]} -> {response.status_code} "
            f"({(time.time() - start) * 1000:.0f}ms)"
        )
        return response

    def close(self) -> None:
        if self._curl_session is not None:
            self._curl_session.close()
            self._curl_session = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def response_cookies(response) -> Dict[str, str]:
    """
    Cookies set by one response, as {name: value}.

    Read straight from the Set-Cookie headers so that an explicitly empty
    value (`name=""`) survives for merge_cookies() to recognise.
    """
    cookies: Dict[str, str] = {}
    for header in response.headers.get_list("set-cookie"):
        pair = header.split(";", 1)[0]
        if "=" not in pair:
            continue
        name, value = pair.split("=", 1)
        if name.strip():
            cookies[name.strip()] = value.strip()
    return cookies


def response_json(response) -> Dict[str, Any]:
    """Response body as a JSON object ({} when the body is not JSON)."""
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
