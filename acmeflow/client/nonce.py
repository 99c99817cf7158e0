import logging
import typing

import aiohttp

from acmeflow.client.exceptions import AcmeClientException

logger = logging.getLogger(__name__)


class NonceCache:
    """Holds at most one anti-replay nonce.

    `7.2. Getting a Nonce <https://tools.ietf.org/html/rfc8555#section-7.2>`_

    Every response that carries a *Replay-Nonce* header replaces the cached nonce, regardless of the
    response's status. Each signed request consumes the cached nonce; if there is none, a fresh one is
    fetched from the CA's *newNonce* endpoint.
    """

    def __init__(self, session: aiohttp.ClientSession, ssl_context=None):
        self._session = session
        self._ssl_context = ssl_context
        self._nonce: typing.Optional[str] = None

    @property
    def nonce(self) -> typing.Optional[str]:
        """The currently cached nonce, if any."""
        return self._nonce

    def observe(self, response: aiohttp.ClientResponse) -> None:
        """Stores the response's *Replay-Nonce*, replacing any cached nonce."""
        if nonce := response.headers.get("Replay-Nonce"):
            logger.debug("Storing new nonce %s", nonce)
            self._nonce = nonce

    def clear(self) -> None:
        self._nonce = None

    async def next_nonce(self, new_nonce_url: str) -> str:
        """Consumes the cached nonce or fetches a fresh one.

        :param new_nonce_url: The CA's *newNonce* URL.
        :raises:

            * :class:`AcmeClientException` If the CA did not return a nonce.
            * :class:`aiohttp.ClientError` If the *newNonce* endpoint could not be reached.

        :return: The nonce to use for the next signed request.
        """
        if self._nonce is None:
            await self._fetch(new_nonce_url)

        nonce, self._nonce = self._nonce, None
        return nonce

    async def _fetch(self, new_nonce_url: str) -> None:
        logger.debug("Fetching a new nonce from %s", new_nonce_url)
        async with self._session.head(new_nonce_url, ssl=self._ssl_context) as resp:
            self.observe(resp)
            if resp.status >= 300 or "Replay-Nonce" not in resp.headers:
                raise AcmeClientException(
                    f"Could not obtain a nonce from {new_nonce_url}: HTTP {resp.status}"
                )
