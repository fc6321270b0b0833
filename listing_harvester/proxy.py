"""Rotating residential proxy acquisition.

The broker asks the provisioning service for a small pool of country-scoped
proxies (one per random candidate country plus a larger batch for the
default country), shuffles the pool, and resolves the chosen entry's country
code to the locale metadata the browser context is configured with.
"""

import random
from typing import NamedTuple

import httpx
from pydantic import BaseModel, ConfigDict
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from config.settings import GlobalConfig, get_config
from listing_harvester.exceptions import ProxyUnavailableError
from listing_harvester.logger import get_logger

log = get_logger(__name__)

PROVISIONING_FORMAT = "{hostname}:{port}:{username}:{password}"
PROVISIONING_TIMEOUT_SEC = 15.0


class CountryLocale(NamedTuple):
    """One row of the static country table."""

    code: str
    language: str
    locale: str
    timezone: str
    name: str


COUNTRY_TABLE: dict[str, CountryLocale] = {
    row.code: row
    for row in (
        CountryLocale("us", "en", "en-US", "America/New_York", "USA"),
        CountryLocale("gb", "en", "en-GB", "Europe/London", "UK"),
        CountryLocale("ie", "en", "en-IE", "Europe/Dublin", "Ireland"),
        CountryLocale("mt", "en", "en-MT", "Europe/Malta", "Malta"),
        CountryLocale("au", "en", "en-AU", "Australia/Sydney", "Australia"),
        CountryLocale("in", "en", "en-IN", "Asia/Kolkata", "India"),
        CountryLocale("za", "en", "en-ZA", "Africa/Johannesburg", "South Africa"),
        CountryLocale("ca", "en", "en-CA", "America/Toronto", "Canada"),
    )
}


class ProxyDescriptor(BaseModel):
    """Proxy endpoint plus locale metadata, immutable for one browsing session."""

    model_config = ConfigDict(frozen=True)

    server: str
    username: str
    password: str
    language: str
    locale: str
    timezone: str
    accept_language: str

    @property
    def country_code(self) -> str:
        return country_code_from_password(self.password)


class ProvisioningError(Exception):
    """A single provisioning call returned an unusable response."""


def normalize_entry(raw: str) -> str:
    """Convert ``host:port:user:pass`` into ``https://host:port|user|pass``.

    Raises:
        ProvisioningError: If the entry does not have four segments.
    """
    parts = raw.strip().split(":")
    if len(parts) != 4:
        raise ProvisioningError(f"Malformed proxy entry: {raw!r}")
    hostname, port, username, password = parts
    return f"https://{hostname}:{port}|{username}|{password}"


def country_code_from_password(password: str) -> str:
    """The country code is the second ``-`` separated segment of the password."""
    segments = password.split("-")
    return segments[1].lower() if len(segments) > 1 else ""


def resolve_descriptor(entry: str) -> ProxyDescriptor:
    """Build a ProxyDescriptor from a normalized pool entry.

    Args:
        entry: Pool entry shaped ``server|username|password``.

    Raises:
        ProxyUnavailableError: If the entry is malformed or its country is unmapped.
    """
    parts = entry.split("|")
    if len(parts) != 3:
        raise ProxyUnavailableError(reason=f"malformed pool entry {entry!r}")

    server, username, password = parts
    code = country_code_from_password(password)
    country = COUNTRY_TABLE.get(code)
    if country is None:
        raise ProxyUnavailableError(reason="unmapped proxy country", country_code=code or None)

    return ProxyDescriptor(
        server=server,
        username=username,
        password=password,
        language=country.language,
        locale=country.locale,
        timezone=country.timezone,
        accept_language=f"{country.locale},{country.language};q=0.9",
    )


class ProxyBroker:
    """Obtains one rotating proxy per browsing session.

    Args:
        config: Runtime configuration; uses the singleton when omitted.
        client: Optional shared httpx client. When omitted a client is created
            and closed for each acquisition.
    """

    def __init__(
        self,
        config: GlobalConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or get_config()
        self._client = client

    def _check_credentials(self) -> None:
        missing = [
            name
            for name in ("proxy_api_token", "proxy_hostname", "proxy_username", "proxy_password")
            if not getattr(self.config, name)
        ]
        if missing:
            raise ProxyUnavailableError(reason=f"missing provisioning settings: {', '.join(missing)}")

    async def acquire_proxy(self) -> ProxyDescriptor:
        """Select one proxy from a freshly provisioned, shuffled pool.

        Raises:
            ProxyUnavailableError: Missing credentials, empty pool, or an
                unmapped country code on the selected entry.
        """
        self._check_credentials()

        if self._client is not None:
            pool = await self.fetch_pool(self._client)
        else:
            async with httpx.AsyncClient(timeout=PROVISIONING_TIMEOUT_SEC) as client:
                pool = await self.fetch_pool(client)

        if not pool:
            raise ProxyUnavailableError(reason="provisioning returned an empty pool")

        descriptor = resolve_descriptor(pool[0])
        log.info(
            "Proxy acquired",
            server=descriptor.server,
            country_code=descriptor.country_code,
            locale=descriptor.locale,
            pool_size=len(pool),
        )
        return descriptor

    async def fetch_pool(self, client: httpx.AsyncClient) -> list[str]:
        """Request candidate-country proxies and the default-country batch.

        Countries that keep failing after retries are skipped.

        Returns:
            Shuffled list of normalized pool entries.
        """
        default = self.config.proxy_default_country
        candidates = [code for code in COUNTRY_TABLE if code != default]
        sample_size = min(self.config.proxy_candidate_countries, len(candidates))
        countries = random.sample(candidates, sample_size)

        pool: list[str] = []
        for country in countries:
            pool.extend(await self._fetch_country(client, country, 1))
        pool.extend(await self._fetch_country(client, default, self.config.proxy_default_batch))

        if 0 < len(pool) < 3:
            log.warning("Limited proxy pool", pool_size=len(pool))

        random.shuffle(pool)
        return pool

    async def _fetch_country(
        self, client: httpx.AsyncClient, country: str, count: int
    ) -> list[str]:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.config.proxy_retry_attempts),
                wait=wait_fixed(self.config.proxy_retry_wait_sec),
                retry=retry_if_exception_type((httpx.HTTPError, ProvisioningError)),
            ):
                with attempt:
                    return await self._request_proxies(client, country, count)
        except RetryError as exc:
            log.warning(
                "Proxy provisioning failed, skipping country",
                country_code=country,
                attempts=self.config.proxy_retry_attempts,
                error=str(exc.last_attempt.exception()),
            )
        return []

    async def _request_proxies(
        self, client: httpx.AsyncClient, country: str, count: int
    ) -> list[str]:
        body = {
            "format": PROVISIONING_FORMAT,
            "hostname": self.config.proxy_hostname,
            "port": "http|https",
            "rotation": "random",
            "location": f"_country-{country}",
            "proxy_count": count,
            "username": self.config.proxy_username,
            "password": self.config.proxy_password,
        }
        log.debug("Requesting proxies", country_code=country, count=count)

        response = await client.post(
            self.config.proxy_api_url,
            json=body,
            headers={"Authorization": f"Bearer {self.config.proxy_api_token}"},
        )
        response.raise_for_status()

        try:
            entries = response.json()
        except ValueError as exc:
            raise ProvisioningError("Provisioning returned invalid JSON") from exc

        if not isinstance(entries, list) or not entries:
            raise ProvisioningError("Provisioning returned an empty or invalid proxy list")

        return [normalize_entry(str(entry)) for entry in entries]
