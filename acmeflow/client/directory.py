import asyncio
import json
import logging
import typing
from dataclasses import dataclass

import acme.messages
import aiohttp
import josepy
import yarl

from acmeflow.client.exceptions import DirectoryUnavailable

logger = logging.getLogger(__name__)


def directory_url(base_url: str) -> str:
    """Returns the directory URL for the given CA base URL.

    URLs that already point at the directory resource are returned unchanged.
    """
    url = yarl.URL(base_url)
    if url.path.rstrip("/").endswith("/directory"):
        return str(url)
    return str(url.with_path(url.path.rstrip("/") + "/directory"))


@dataclass(frozen=True)
class AcmeMetadata:
    """The CA's directory metadata.

    `7.1.1. Directory <https://tools.ietf.org/html/rfc8555#section-7.1.1>`_

    Fields the CA does not advertise are *None*.
    """

    terms_of_service: typing.Optional[str] = None
    website: typing.Optional[str] = None
    caa_identities: typing.Optional[typing.Tuple[str, ...]] = None
    external_account_required: typing.Optional[bool] = None

    @classmethod
    def from_directory(cls, directory: acme.messages.Directory) -> "AcmeMetadata":
        meta = directory.meta
        return cls(
            terms_of_service=meta.terms_of_service,
            website=meta.website,
            caa_identities=tuple(meta.caa_identities) if meta.caa_identities else None,
            external_account_required=meta.external_account_required,
        )


class DirectoryResolver:
    """Fetches and caches ACME directories.

    Each directory is fetched at most once per resolver unless it is invalidated.
    """

    def __init__(self, session: aiohttp.ClientSession, ssl_context=None):
        self._session = session
        self._ssl_context = ssl_context
        self._directories: typing.Dict[str, acme.messages.Directory] = dict()

    async def get(self, base_url: str) -> acme.messages.Directory:
        """Returns the directory of the CA at the given base URL.

        :param base_url: The CA's base URL or its directory URL.
        :raises: :class:`DirectoryUnavailable` If the directory could not be fetched or parsed.
        :return: The CA's directory.
        """
        url = directory_url(base_url)

        if (directory := self._directories.get(url)) is None:
            directory = await self._fetch(url)
            self._directories[url] = directory

        return directory

    def invalidate(self, base_url: str = None) -> None:
        """Drops the cached directory of the given CA, or all cached directories."""
        if base_url is None:
            self._directories.clear()
        else:
            self._directories.pop(directory_url(base_url), None)

    async def _fetch(self, url: str) -> acme.messages.Directory:
        logger.debug("Fetching directory %s", url)
        try:
            async with self._session.get(url, ssl=self._ssl_context) as resp:
                if not 200 <= resp.status < 300:
                    raise DirectoryUnavailable(url, f"HTTP {resp.status}")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as e:
            raise DirectoryUnavailable(url, str(e) or type(e).__name__) from e

        if not isinstance(data, dict):
            raise DirectoryUnavailable(url, "not a directory document")

        try:
            return acme.messages.Directory.from_json(data)
        except josepy.errors.DeserializationError as e:
            raise DirectoryUnavailable(url, str(e)) from e
