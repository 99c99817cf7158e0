import abc
import logging
import typing
from pathlib import Path

import josepy

from acmeflow.models import Challenge, ChallengeType, Identifier
from acmeflow.plugin_base import PluginRegistry
from acmeflow.settings import Settings

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = ".well-known/acme-challenge"


class ChallengeSolver(abc.ABC):
    """An abstract base class for challenge solvers.

    A challenge solver provisions the resource the CA checks to validate a challenge, e.g. the file
    served at *http://<identifier>/.well-known/acme-challenge/<token>* for *http-01*.
    All challenge solver implementations must implement the methods :meth:`complete_challenge` and
    :func:`cleanup_challenge`.
    Implementations must also be registered with the plugin registry via
    :meth:`~acmeflow.plugin_base.PluginRegistry.register_plugin`, so that the CLI script knows which configuration
    option corresponds to which challenge solver class.
    """

    SUPPORTED_CHALLENGES: typing.Iterable[ChallengeType]
    """The types of challenges that the challenge solver implementation supports."""

    class Config(Settings):
        type: typing.Literal["none"] = "none"

    def __init__(self, cfg: Config = None):
        pass

    @abc.abstractmethod
    async def complete_challenge(
        self,
        key: josepy.jwk.JWK,
        identifier: Identifier,
        challenge: Challenge,
    ):
        """Complete the given challenge.

        This method should complete the given challenge and then delay
        returning until the server is allowed to check for completion.

        :param key: The client's account key.
        :param identifier: The identifier that is associated with the challenge.
        :param challenge: The challenge to be completed.
        :raises: :class:`~acmeflow.client.exceptions.CouldNotCompleteChallenge`
            If the challenge completion attempt failed.
        """
        pass

    @abc.abstractmethod
    async def cleanup_challenge(
        self,
        key: josepy.jwk.JWK,
        identifier: Identifier,
        challenge: Challenge,
    ):
        """Performs cleanup for the given challenge.

        This method should de-provision the resource that was provisioned for the given challenge.
        It is called once the authorization has been polled to completion, whether it succeeded or not,
        so it should silently return if there is nothing to clean up.

        :param key: The client's account key.
        :param identifier: The identifier that is associated with the challenge.
        :param challenge: The challenge to clean up after.
        """
        pass


@PluginRegistry.register_plugin("dummy")
class DummySolver(ChallengeSolver):
    """Dummy challenge solver that does not actually complete any challenges."""

    SUPPORTED_CHALLENGES = frozenset([ChallengeType.DNS_01, ChallengeType.HTTP_01])
    """The types of challenges that the solver supports."""

    class Config(ChallengeSolver.Config):
        type: typing.Literal["dummy"] = "dummy"

    async def complete_challenge(
        self,
        key: josepy.jwk.JWK,
        identifier: Identifier,
        challenge: Challenge,
    ) -> None:
        """Does not complete the given challenge, only logs the attempt."""
        logger.debug(
            "(not) solving challenge %s, type %s, identifier %s",
            challenge.url,
            challenge.type,
            identifier,
        )

    async def cleanup_challenge(
        self,
        key: josepy.jwk.JWK,
        identifier: Identifier,
        challenge: Challenge,
    ) -> None:
        logger.debug(
            "(not) cleaning up after challenge %s, type %s", challenge.url, challenge.type
        )


@PluginRegistry.register_plugin("memory")
class MemorySolver(ChallengeSolver):
    """*http-01* solver that keeps the key authorizations in a dictionary.

    Meant to back an HTTP responder that runs in the same process and looks up
    :attr:`key_authorizations` by token.
    """

    SUPPORTED_CHALLENGES = frozenset([ChallengeType.HTTP_01])

    class Config(ChallengeSolver.Config):
        type: typing.Literal["memory"] = "memory"

    def __init__(self, cfg: Config = None):
        super().__init__(cfg)
        self.key_authorizations: typing.Dict[str, str] = dict()

    async def complete_challenge(
        self,
        key: josepy.jwk.JWK,
        identifier: Identifier,
        challenge: Challenge,
    ) -> None:
        self.key_authorizations[challenge.token] = challenge.key_authorization(key)

    async def cleanup_challenge(
        self,
        key: josepy.jwk.JWK,
        identifier: Identifier,
        challenge: Challenge,
    ) -> None:
        self.key_authorizations.pop(challenge.token, None)


@PluginRegistry.register_plugin("webroot")
class WebrootSolver(ChallengeSolver):
    """*http-01* solver that writes the key authorization below a web server's document root.

    `8.3. HTTP Challenge <https://tools.ietf.org/html/rfc8555#section-8.3>`_

    The file is written to *<path>/.well-known/acme-challenge/<token>* and removed on cleanup.
    """

    SUPPORTED_CHALLENGES = frozenset([ChallengeType.HTTP_01])

    class Config(ChallengeSolver.Config):
        type: typing.Literal["webroot"] = "webroot"
        path: Path

    def __init__(self, cfg: Config):
        super().__init__(cfg)
        self._path = Path(cfg.path)

    def challenge_path(self, challenge: Challenge) -> Path:
        if not challenge.token or "/" in challenge.token or challenge.token.startswith("."):
            raise ValueError(f"Invalid challenge token {challenge.token!r}")
        return self._path / WELL_KNOWN_PATH / challenge.token

    async def complete_challenge(
        self,
        key: josepy.jwk.JWK,
        identifier: Identifier,
        challenge: Challenge,
    ) -> None:
        path = self.challenge_path(challenge)
        logger.debug("Writing key authorization for %s to %s", identifier, path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(challenge.key_authorization(key))

    async def cleanup_challenge(
        self,
        key: josepy.jwk.JWK,
        identifier: Identifier,
        challenge: Challenge,
    ) -> None:
        path = self.challenge_path(challenge)
        logger.debug("Removing %s", path)
        path.unlink(missing_ok=True)
