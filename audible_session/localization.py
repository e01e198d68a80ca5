"""
Locale Table
============
Per-marketplace endpoints and fixed protocol parameters.

Every locale is a frozen LocaleConfig, looked up through the Locale enum,
so an unknown marketplace fails once at the boundary (get_locale) instead
of deep inside the login flow.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Union
from urllib.parse import urlparse


class Locale(str, Enum):
    """Supported Audible marketplaces."""
    US = "us"
    UK = "uk"
    DE = "de"
    FR = "fr"
    CA = "ca"
    IT = "it"
    AU = "au"
    IN = "in"
    JP = "jp"


@dataclass(frozen=True)
class LocaleConfig:
    """Static endpoints and constants for one marketplace."""

    login_url: str              # Amazon web sign-in host
    api_url: str                # Amazon auth API (register/deregister/token)
    audible_api_url: str        # Audible API, target of signed requests
    openid_assoc_handle: str
    oauth_lang: str
    marketplace_id: str
    accept_language: str
    auth_register_domain: str

    @property
    def api_host(self) -> str:
        return urlparse(self.api_url).netloc

    @property
    def login_host(self) -> str:
        return urlparse(self.login_url).netloc


def _amazon(
    domain: str,
    audible_domain: str,
    handle: str,
    lang: str,
    marketplace: str,
    accept_language: str,
) -> LocaleConfig:
    return LocaleConfig(
        login_url=f"https://www.amazon.{domain}",
        api_url=f"https://api.amazon.{domain}",
        audible_api_url=f"https://api.audible.{audible_domain}",
        openid_assoc_handle=handle,
        oauth_lang=lang,
        marketplace_id=marketplace,
        accept_language=accept_language,
        auth_register_domain=f".amazon.{domain}",
    )


LOCALES: Dict[Locale, LocaleConfig] = {
    Locale.US: _amazon("com", "com", "amzn_audible_ios_us", "en_US", "AF2M0KC94RCEA", "en-US"),
    Locale.UK: _amazon("co.uk", "co.uk", "amzn_audible_ios_uk", "en_GB", "A2I9A3Q2GNFNGQ", "en-GB"),
    Locale.DE: _amazon("de", "de", "amzn_audible_ios_de", "de_DE", "AN7V1F1VY261K", "de-DE"),
    Locale.FR: _amazon("fr", "fr", "amzn_audible_ios_fr", "fr_FR", "A2728XDNODOQ8T", "fr-FR"),
    Locale.CA: _amazon("ca", "ca", "amzn_audible_ios_ca", "en_CA", "A2CQZ5RBY40XE", "en-CA"),
    Locale.IT: _amazon("it", "it", "amzn_audible_ios_it", "it_IT", "A2N7FU2W2BU2ZC", "it-IT"),
    Locale.AU: _amazon("com.au", "com.au", "amzn_audible_ios_au", "en_AU", "AN7EY7DTAW63G", "en-AU"),
    Locale.IN: _amazon("in", "in", "amzn_audible_ios_in", "en_IN", "AJO3FBRUE6J4S", "en-IN"),
    Locale.JP: _amazon("co.jp", "co.jp", "amzn_audible_ios_jp", "ja_JP", "A1QAP3MOU4173J", "ja-JP"),
}


def get_locale(locale: Union[str, Locale]) -> LocaleConfig:
    """
    Resolve a locale key ("us", "uk", ... or a Locale) to its config.

    Raises:
        ValueError: Unknown locale
    """
    try:
        key = Locale(locale.lower() if isinstance(locale, str) else locale)
    except ValueError:
        supported = ", ".join(loc.value for loc in Locale)
        raise ValueError(f"Unknown locale '{locale}'. Supported: {supported}") from None
    return LOCALES[key]
