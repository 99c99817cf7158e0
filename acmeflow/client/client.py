import asyncio
import json
import logging
import ssl
import typing
from dataclasses import dataclass

import acme.messages
import aiohttp
import josepy
import yarl
from cryptography import x509

import acmeflow.util
from acmeflow.client.account import AcmeAccount
from acmeflow.client.challenge_solver import ChallengeSolver, WELL_KNOWN_PATH
from acmeflow.client.credential_store import CredentialStore
from acmeflow.client.directory import AcmeMetadata, DirectoryResolver
from acmeflow.client.exceptions import (
    AccountProblem,
    AcmeClientException,
    AcmeProblem,
    AuthorizationProblem,
    AuthorizationTimeout,
    BadNonce,
    CouldNotCompleteChallenge,
    OrderProblem,
    OrderTimeout,
    PollingException,
    RevocationProblem,
    TermsNotAgreed,
    TransportError,
    UnexpectedResponse,
)
from acmeflow.client.nonce import NonceCache
from acmeflow.client.signer import JWSSigner
from acmeflow.models import (
    Account,
    Authorization,
    AuthorizationStatus,
    Challenge,
    ChallengeType,
    Identifier,
    Order,
    OrderStatus,
    messages,
)
from acmeflow.settings import Settings
from acmeflow.util import PrivateKey
from acmeflow.version import __version__

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (
    aiohttp.ClientConnectionError,
    aiohttp.ClientPayloadError,
    asyncio.TimeoutError,
)


def account_url_slot(alias: str, staging: bool = False) -> str:
    """Returns the key under which a credential store remembers the account URL.

    Production and staging accounts share the key entry but have distinct URLs.
    """
    return f"{alias}@staging" if staging else alias


def create_ssl_context(server_cert: str = None) -> ssl.SSLContext:
    ssl_context = ssl.create_default_context()
    if server_cert:
        # Add our self-signed server cert for testing purposes.
        ssl_context.load_verify_locations(cafile=server_cert)
    return ssl_context


def is_valid(obj):
    return obj.status == "valid"


def is_invalid(obj):
    return obj.status in ["invalid", "expired", "revoked", "deactivated"]


def is_ready(order: Order):
    return order.status in [OrderStatus.READY, OrderStatus.PROCESSING, OrderStatus.VALID]


@dataclass
class ExternalAccountBindingCredentials:
    """Stores external account binding credentials to later create a binding JWS using
    :class:`~acme.messages.ExternalAccountBinding`.
    """

    kid: str
    """The external account binding's key identifier"""
    hmac_key: str
    """The external account binding's symmetric encryption key"""

    def create_eab(
        self, public_key: josepy.jwk.JWK, directory: acme.messages.Directory
    ) -> dict:
        """Creates an external account binding from the stored credentials.

        :param public_key: The account's public key
        :param directory: The ACME server's directory
        :return: The JWS representing the external account binding
        """
        if self.kid and self.hmac_key:
            return acme.messages.ExternalAccountBinding.from_data(
                public_key, self.kid, self.hmac_key, directory
            )
        else:
            raise ValueError("Must specify both kid and hmac_key")


class AcmeClient:
    """ACME compliant client that acts on behalf of a single :class:`AcmeAccount`.

    The client talks to either the production or the staging endpoint of the account's certificate
    authority. All signed requests of one client are serialized, so that each of them consumes the
    nonce returned by the previous response.
    """

    RETRIES = 1
    """How often a request is repeated after a *badNonce* error or a transport error."""

    class Config(Settings):
        poll_attempts: int = 10
        """The number of times an authorization or order is fetched before polling gives up."""
        poll_delay: float = 3.0
        """The delay in seconds between two polling attempts."""
        server_cert: typing.Optional[str] = None
        """Path of an additional CA certificate to trust, e.g. for a test CA."""
        self_check: bool = False
        """Whether to fetch the provisioned http-01 resource before asking the CA to validate it."""
        self_check_port: int = 80
        eab_kid: typing.Optional[str] = None
        eab_hmac_key: typing.Optional[str] = None

    def __init__(
        self,
        account: AcmeAccount,
        *,
        staging: bool = False,
        directory_url: str = None,
        cfg: Config = None,
        store: CredentialStore = None,
        session: aiohttp.ClientSession = None,
        directories: DirectoryResolver = None,
    ):
        """Creates an :class:`AcmeClient` instance.

        :param account: The account to act on behalf of.
        :param staging: Whether to use the staging endpoint of the account's CA.
        :param directory_url: Overrides the CA URL taken from the account.
        :param cfg: The client's configuration.
        :param store: The credential store to persist the account URL and key changes in.
        :param session: A session to use instead of one owned by the client.
        :param directories: A directory cache to share with other clients using the same session.
        :raises: :class:`~acmeflow.authority.StagingUrlUnavailable` If staging is requested but the CA has
            no staging URL.
        """
        self._cfg = cfg or self.Config()
        self._account = account
        self._store = store
        self._account_url_slot = account_url_slot(account.alias, staging)
        self._directory_url = directory_url or account.directory_url(staging)

        self._ssl_context = create_ssl_context(self._cfg.server_cert)

        self._session = session
        self._owns_session = session is None
        self._directories = directories
        self._nonces = None
        self._lock = asyncio.Lock()

        self._signer = JWSSigner.from_private_key(account.private_key)
        self._challenge_solvers: typing.Dict[ChallengeType, ChallengeSolver] = dict()
        self.eab_credentials = ExternalAccountBindingCredentials(
            self._cfg.eab_kid, self._cfg.eab_hmac_key
        )

    @property
    def account(self) -> AcmeAccount:
        return self._account

    @property
    def directory_url(self) -> str:
        return self._directory_url

    @property
    def nonces(self) -> NonceCache:
        self._ensure_session()
        return self._nonces

    def _ensure_session(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": f"acmeflow Client {__version__}"}
            )
        if self._directories is None:
            self._directories = DirectoryResolver(self._session, self._ssl_context)
        if self._nonces is None:
            self._nonces = NonceCache(self._session, self._ssl_context)

    async def close(self):
        """Closes the client's session if the client owns it.

        The client may not be used for requests anymore after it has been closed.
        """
        if self._owns_session and self._session is not None:
            await self._session.close()

    async def __aenter__(self) -> "AcmeClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def start(self):
        """Fetches the CA's directory.

        It is advised to register at least one :class:`ChallengeSolver`
        using :meth:`register_challenge_solver` before ordering certificates.

        :raises: :class:`~acmeflow.client.exceptions.DirectoryUnavailable` If the directory could not be fetched.
        """
        await self.directory()

        if not self._challenge_solvers.keys():
            logger.warning(
                "There is no challenge solver registered with the client. "
                "Certificate retrieval will likely fail."
            )

    async def directory(self) -> acme.messages.Directory:
        """Returns the CA's directory, fetching it on first use."""
        self._ensure_session()
        return await self._directories.get(self._directory_url)

    async def get_metadata(self) -> AcmeMetadata:
        """Returns the metadata the CA advertises in its directory.

        :raises: :class:`~acmeflow.client.exceptions.DirectoryUnavailable` If the directory could not be fetched.
        """
        return AcmeMetadata.from_directory(await self.directory())

    def _external_account_binding(self, directory: acme.messages.Directory):
        try:
            return self.eab_credentials.create_eab(self._signer.public_jwk, directory)
        except ValueError:
            if self.eab_credentials.kid or self.eab_credentials.hmac_key:
                logger.warning(
                    "The external account binding credentials are invalid, "
                    "i.e. the kid or the hmac_key was not supplied. Trying without EAB."
                )
            elif directory.meta.external_account_required:
                logger.warning(
                    "The CA requires an external account binding but no credentials are configured."
                )
            return None

    def _persist_account_url(self) -> None:
        if self._store is not None:
            self._store.set_account_url(self._account_url_slot, self._account.account_url)

    async def account_create(self, agree_to_terms_of_service: bool) -> bool:
        """Registers the account with the CA.

        Sends the account's contact URLs and, if configured, an external account binding.

        :param agree_to_terms_of_service: Whether the account holder agrees to the CA's terms of service.
        :raises:

            * :class:`TermsNotAgreed` If the terms of service were not agreed to. No request is made.
            * :class:`AccountProblem` If the CA rejects the registration.

        :return: *True* if the CA created a new account, *False* if it already knows an account for the key.
            The account URL is only set in the former case.
        """
        if not agree_to_terms_of_service:
            raise TermsNotAgreed()

        directory = await self.directory()

        reg = acme.messages.Registration.from_data(
            contact=tuple(self._account.contact_urls),
            terms_of_service_agreed=True,
            external_account_binding=self._external_account_binding(directory),
        )

        resp, account_obj = await self._signed_request(
            reg, directory["newAccount"], problem=AccountProblem, use_jwk=True
        )

        if terms_of_service := resp.links.get("terms-of-service", {}).get("url"):
            self._account.terms_of_service_url = str(terms_of_service)

        if resp.status != 201:
            logger.info(
                "The CA already has an account for key %s at %s",
                self._account.alias,
                resp.headers.get("Location"),
            )
            return False

        self._account.account_url = resp.headers["Location"]
        self._account.terms_of_service_agreed = True
        self._persist_account_url()
        logger.info("Created account %s", self._account.account_url)
        return True

    async def account_lookup(self) -> Account:
        """Looks up the account that belongs to the account's key.

        Stores the account URL for subsequent requests.

        :raises: :class:`AccountProblem` If no account associated with the key exists
            (type *accountDoesNotExist*).
        :return: The CA's view of the account.
        """
        directory = await self.directory()
        reg = acme.messages.Registration.from_data(only_return_existing=True)

        resp, account_obj = await self._signed_request(
            reg, directory["newAccount"], problem=AccountProblem, use_jwk=True
        )

        self._account.account_url = resp.headers["Location"]
        self._persist_account_url()
        logger.debug("Found account %s", self._account.account_url)
        return Account.from_json({**account_obj, "url": self._account.account_url})

    async def _ensure_account_url(self) -> None:
        if self._account.account_url is None:
            await self.account_lookup()

    async def account_update(
        self,
        contact_urls: typing.List[str] = None,
        agree_to_terms_of_service: bool = None,
    ) -> Account:
        """Updates the account's contact URLs and/or its terms of service agreement.

        If the account URL is not known yet, the account is looked up first and created if the CA does not
        know it.

        :param contact_urls: The new contact URLs. Left unchanged if *None*.
        :param agree_to_terms_of_service: The new terms of service agreement. Left unchanged if *None*.
        :raises: :class:`AccountProblem` If the CA rejects the update.
        :return: The CA's view of the updated account.
        """
        if self._account.account_url is None:
            try:
                await self.account_lookup()
            except AccountProblem as e:
                if e.code != "accountDoesNotExist":
                    raise
                await self.account_create(
                    self._account.terms_of_service_agreed
                    if agree_to_terms_of_service is None
                    else agree_to_terms_of_service
                )

        update = messages.AccountUpdate(
            contact=tuple(contact_urls) if contact_urls is not None else None,
            terms_of_service_agreed=agree_to_terms_of_service,
        )

        _, account_obj = await self._signed_request(
            update, self._account.account_url, problem=AccountProblem
        )

        if contact_urls is not None:
            self._account.contact_urls = list(contact_urls)
        if agree_to_terms_of_service is not None:
            self._account.terms_of_service_agreed = agree_to_terms_of_service

        logger.info("Updated account %s", self._account.account_url)
        return Account.from_json({**account_obj, "url": self._account.account_url})

    async def account_key_change(self, new_private_key: PrivateKey = None) -> None:
        """Rolls the account over to a new key.

        `7.3.5. Account Key Rollover <https://tools.ietf.org/html/rfc8555#section-7.3.5>`_

        The account keeps its URL and distinguished name; its certificate is regenerated for the new key.
        If the CA rejects the rollover, the account keeps its old key.

        :param new_private_key: The new key. Defaults to a fresh key of the same type and size as the old one.
        :raises: :class:`AccountProblem` If the CA rejects the rollover.
        """
        await self._ensure_account_url()
        directory = await self.directory()

        new_private_key = new_private_key or self._account.generate_replacement_key()
        new_signer = JWSSigner.from_private_key(new_private_key)

        key_change = messages.KeyChange(
            account=self._account.account_url, oldKey=self._signer.public_jwk
        )
        signed_key_change = messages.SignedKeyChange.from_data(
            key_change, new_signer.key, new_signer.alg, url=directory["keyChange"]
        )
        await self._signed_request(
            signed_key_change, directory["keyChange"], problem=AccountProblem
        )

        self._account.change_key(new_private_key)
        self._signer = new_signer

        if self._store is not None:
            self._store.store(
                self._account.alias,
                self._account.private_key,
                self._account.certificate,
            )

        logger.info("Changed the key of account %s", self._account.account_url)

    async def account_deactivate(self) -> Account:
        """Deactivates the account.

        :raises: :class:`AccountProblem` If the CA rejects the deactivation.
        :return: The CA's view of the deactivated account.
        """
        await self._ensure_account_url()

        update = messages.AccountUpdate(status="deactivated")
        _, account_obj = await self._signed_request(
            update, self._account.account_url, problem=AccountProblem
        )

        logger.info("Deactivated account %s", self._account.account_url)
        return Account.from_json({**account_obj, "url": self._account.account_url})

    async def order_create(
        self, identifiers: typing.Union[typing.List[dict], typing.List[str]]
    ) -> Order:
        """Creates a new order with the given identifiers.

        :param identifiers: :class:`list` of identifiers that the order should contain. May either be a list of
            fully qualified domain names or a list of :class:`dict` containing the *type* and *value* (both
            :class:`str`) of each identifier.
        :raises: :class:`OrderProblem` If the CA is unwilling to create an order with the requested
            identifiers.
        :returns: The new order.
        """
        await self._ensure_account_url()
        directory = await self.directory()
        order = messages.NewOrder.from_data(identifiers=identifiers)

        resp, order_obj = await self._signed_request(
            order, directory["newOrder"], problem=OrderProblem
        )
        logger.info("Created order %s", resp.headers["Location"])
        return Order.from_json({**order_obj, "url": resp.headers["Location"]})

    async def order_get(self, order_url: str) -> Order:
        """Fetches an order given its URL.

        :param order_url: The order's URL.
        :raises: :class:`OrderProblem` If the order does not exist.
        :return: The fetched order.
        """
        _, order_obj = await self._signed_request(None, order_url, problem=OrderProblem)
        return Order.from_json({**order_obj, "url": order_url})

    async def order_finalize(
        self, order: Order, csr: "cryptography.x509.CertificateSigningRequest"
    ) -> Order:
        """Finalizes the order using the given CSR.

        Waits for the order to become *ready*, submits the CSR and waits for the order to become *valid*.

        :param order: Order that is to be finalized.
        :param csr: The CSR that is submitted to apply for certificate issuance.
        :raises:

            * :class:`OrderProblem` If the CA is unwilling to finalize the order or the order became invalid.
            * :class:`OrderTimeout` If the order did not reach the awaited status in time.

        :returns: The finalized order.
        """
        order = await self._poll_until(
            self.order_get,
            order.url,
            predicate=is_ready,
            negative_predicate=is_invalid,
            timeout_exception=OrderTimeout,
        )
        self._raise_for_invalid_order(order)

        if order.status == OrderStatus.READY:
            cert_req = messages.CertificateRequest(csr=csr)
            await self._signed_request(cert_req, order.finalize, problem=OrderProblem)
            logger.debug("Submitted CSR for order %s", order.url)

        finalized = await self._poll_until(
            self.order_get,
            order.url,
            predicate=is_valid,
            negative_predicate=is_invalid,
            timeout_exception=OrderTimeout,
        )
        self._raise_for_invalid_order(finalized)
        return finalized

    @staticmethod
    def _raise_for_invalid_order(order: Order) -> None:
        if is_invalid(order):
            raise OrderProblem(
                order.error
                or acme.messages.Error(
                    typ="about:blank", detail=f"Order {order.url} is {order.status.value}"
                )
            )

    async def authorization_get(self, authorization_url: str) -> Authorization:
        """Fetches an authorization given its URL.

        :param authorization_url: The authorization's URL.
        :raises: :class:`AuthorizationProblem` If the authorization does not exist.
        :return: The fetched authorization.
        """
        _, authorization = await self._signed_request(
            None, authorization_url, problem=AuthorizationProblem
        )
        return Authorization.from_json({**authorization, "url": authorization_url})

    async def authorizations_complete(self, order: Order) -> None:
        """Completes all authorizations associated with the given order.

        Uses one of the registered :class:`ChallengeSolver` to complete one challenge
        per authorization. Authorizations are completed one after the other.

        :param order: Order whose authorizations should be completed.
        :raises:

            * :class:`CouldNotCompleteChallenge` If one of the authorizations became invalid.
            * :class:`AuthorizationTimeout` If one of the authorizations did not become valid in time.
        """
        for authorization_url in order.authorizations:
            authorization = await self.authorization_get(authorization_url)

            if authorization.status == AuthorizationStatus.VALID:
                logger.debug("Authorization %s is already valid", authorization_url)
                continue
            if authorization.status != AuthorizationStatus.PENDING:
                raise AcmeClientException(
                    f"Authorization {authorization_url} is {authorization.status.value}"
                )

            await self.authorization_complete(authorization)

    async def authorization_complete(self, authorization: Authorization) -> Authorization:
        """Completes one challenge of the given authorization and waits for the authorization to become valid.

        :param authorization: The pending authorization.
        :raises:

            * :class:`CouldNotCompleteChallenge` If the authorization became invalid.
            * :class:`AuthorizationTimeout` If the authorization did not become valid in time.

        :return: The valid authorization.
        """
        solver, challenge = self._choose_challenge(authorization)
        identifier = authorization.identifier
        logger.debug(
            "Chosen challenge type: %s, solver: %s, identifier: %s",
            challenge.type,
            type(solver).__name__,
            identifier,
        )

        try:
            await solver.complete_challenge(self._signer.key, identifier, challenge)
            if self._cfg.self_check:
                await self._self_check(identifier, challenge)

            # Tell the server that we are ready for challenge validation
            await self.challenge_validate(challenge.url)

            authorization = await self._poll_until(
                self.authorization_get,
                authorization.url,
                predicate=is_valid,
                negative_predicate=is_invalid,
                timeout_exception=AuthorizationTimeout,
            )
        finally:
            await solver.cleanup_challenge(self._signer.key, identifier, challenge)

        if not is_valid(authorization):
            failed = next(
                (c for c in authorization.challenges if c.url == challenge.url),
                challenge,
            )
            raise CouldNotCompleteChallenge(failed)

        return authorization

    def _choose_challenge(
        self, authorization: Authorization
    ) -> typing.Tuple[ChallengeSolver, Challenge]:
        preferred = [ChallengeType.HTTP_01] + [
            challenge_type
            for challenge_type in self._challenge_solvers.keys()
            if challenge_type != ChallengeType.HTTP_01
        ]

        for challenge_type in preferred:
            solver = self._challenge_solvers.get(challenge_type)
            challenge = authorization.challenge_of(challenge_type)
            if solver and challenge:
                return solver, challenge

        raise AcmeClientException(
            f"The server offered the following challenge types for {authorization.identifier} but there is "
            f"no solver that is able to complete them: "
            f"{', '.join(challenge.type for challenge in authorization.challenges)}"
        )

    async def _self_check(self, identifier: Identifier, challenge: Challenge) -> None:
        if challenge.type != ChallengeType.HTTP_01.value:
            return

        url = yarl.URL(
            f"http://{identifier.value}/{WELL_KNOWN_PATH}/{challenge.token}"
        )
        if self._cfg.self_check_port != 80:
            url = url.with_port(self._cfg.self_check_port)

        expected = challenge.key_authorization(self._signer.key)
        logger.debug("Checking %s before requesting validation", url)

        try:
            async with self._session.get(url) as response:
                data = await response.text()
        except TRANSPORT_ERRORS as e:
            raise CouldNotCompleteChallenge(challenge, f"self check of {url} failed; {e}")

        if response.status != 200:
            raise CouldNotCompleteChallenge(
                challenge, f"self check of {url} failed; http_status {response.status}"
            )
        if data.strip() != expected:
            raise CouldNotCompleteChallenge(
                challenge, f"self check of {url} failed; token mismatch {expected} != {data}"
            )

    async def challenge_get(self, challenge_url: str) -> Challenge:
        """Fetches a challenge given its URL.

        :param challenge_url: The challenge's URL.
        :raises: :class:`AuthorizationProblem` If the challenge does not exist.
        :return: The fetched challenge.
        """
        _, challenge_obj = await self._signed_request(
            None, challenge_url, problem=AuthorizationProblem
        )
        return Challenge.from_json(challenge_obj)

    async def challenge_validate(self, challenge_url: str) -> Challenge:
        """Initiates the given challenge's validation.

        :param challenge_url: The challenge's URL.
        :raises: :class:`AuthorizationProblem` If the CA rejects the request.
        :return: The challenge as returned by the CA.
        """
        _, challenge_obj = await self._signed_request(
            None, challenge_url, post_as_get=False, problem=AuthorizationProblem
        )
        return Challenge.from_json(challenge_obj)

    async def certificate_get(self, order: Order) -> typing.List[x509.Certificate]:
        """Downloads the given order's certificate chain.

        :param order: The order whose certificate to download.
        :raises:

            * :class:`OrderProblem` If the certificate does not exist.
            * :class:`ValueError` If the order has not been finalized yet, i.e. the certificate \
                property is *None*.

        :return: The certificate chain, leaf certificate first.
        """
        if not order.certificate:
            raise ValueError("This order has not been finalized")

        _, pem = await self._signed_request(
            None,
            order.certificate,
            problem=OrderProblem,
            accept="application/pem-certificate-chain",
        )

        chain = [
            obj
            for obj in acmeflow.util.pem_split(pem)
            if isinstance(obj, x509.Certificate)
        ]
        if not chain:
            raise AcmeClientException(
                f"The CA returned no certificates for {order.certificate}"
            )

        logger.info("Downloaded certificate %s", order.certificate)
        return chain

    async def obtain_certificate(
        self,
        csr: "cryptography.x509.CertificateSigningRequest",
        identifiers: typing.List[str] = None,
    ) -> typing.List[x509.Certificate]:
        """Runs the whole issuance workflow for the given CSR.

        :param csr: The CSR to obtain a certificate for.
        :param identifiers: The identifiers to order. Defaults to the names contained in the CSR.
        :return: The certificate chain, leaf certificate first.
        """
        order = await self.order_create(
            identifiers or sorted(acmeflow.util.names_of(csr))
        )
        await self.authorizations_complete(order)
        finalized = await self.order_finalize(order, csr)
        return await self.certificate_get(finalized)

    async def certificate_revoke(
        self,
        certificate: x509.Certificate,
        reason: messages.RevocationReason = None,
        certificate_key: PrivateKey = None,
    ) -> bool:
        """Revokes the given certificate.

        The request is signed with the account key. If the account URL is unknown and the certificate's
        private key is given, the request is signed with the certificate's key instead.

        :param certificate: The certificate to revoke.
        :param reason: Optional reason for revocation.
        :param certificate_key: The certificate's private key.
        :raises: :class:`RevocationProblem` If the revocation did not succeed.
        :return: *True* if the revocation succeeded.
        """
        directory = await self.directory()
        cert_rev = messages.Revocation(certificate=certificate, reason=reason)

        if self._account.account_url is None and certificate_key is not None:
            signer, use_jwk = JWSSigner.from_private_key(certificate_key), True
        else:
            await self._ensure_account_url()
            signer, use_jwk = None, False

        resp, _ = await self._signed_request(
            cert_rev,
            directory["revokeCert"],
            problem=RevocationProblem,
            signer=signer,
            use_jwk=use_jwk,
        )

        logger.info("Revoked certificate %x", certificate.serial_number)
        return 200 <= resp.status < 300

    def register_challenge_solver(
        self,
        challenge_solver: ChallengeSolver,
    ):
        """Registers a challenge solver with the client.

        The challenge solver is used to complete authorizations' challenges whose types it supports.

        :param challenge_solver: The challenge solver to register.
        :raises: :class:`ValueError` If a challenge solver is already registered that supports any of
            the challenge types that *challenge_solver* supports.
        """
        for challenge_type in challenge_solver.SUPPORTED_CHALLENGES:
            if self._challenge_solvers.get(challenge_type):
                raise ValueError(
                    f"A challenge solver for type {challenge_type} is already registered"
                )
            else:
                self._challenge_solvers[challenge_type] = challenge_solver

    async def _poll_until(
        self,
        coro,
        *args,
        predicate=None,
        negative_predicate=None,
        timeout_exception: typing.Type[PollingException] = PollingException,
    ):
        tries = self._cfg.poll_attempts
        result = await coro(*args)
        while not (predicate(result) or negative_predicate(result)):
            tries -= 1
            if tries <= 0:
                raise timeout_exception(
                    result, f"Polling unsuccessful: {coro.__name__}{args}"
                )

            logger.debug(
                "Polling %s%s, tries remaining: %d", coro.__name__, args, tries
            )
            await asyncio.sleep(self._cfg.poll_delay)
            result = await coro(*args)

        return result

    @staticmethod
    def _payload(
        obj: typing.Optional[josepy.JSONDeSerializable], post_as_get: bool
    ) -> bytes:
        if post_as_get:
            return obj.json_dumps().encode() if obj is not None else b""
        return b"{}"

    async def _signed_request(
        self,
        obj: typing.Optional[josepy.JSONDeSerializable],
        url: str,
        *,
        post_as_get: bool = True,
        problem: typing.Type[AcmeProblem] = AcmeProblem,
        signer: JWSSigner = None,
        use_jwk: bool = False,
        accept: str = None,
    ):
        directory = await self.directory()
        payload = self._payload(obj, post_as_get)
        signer = signer or self._signer

        async with self._lock:
            for attempt in range(self.RETRIES + 1):
                kid = None if use_jwk else self._account.account_url
                try:
                    nonce = await self._nonces.next_nonce(directory["newNonce"])
                    body = signer.sign(payload, url, nonce, kid=kid)
                    return await self._make_request(body, url, problem, accept)
                except BadNonce as e:
                    if attempt < self.RETRIES:
                        logger.warning("Retrying %s after a bad nonce: %s", url, e.detail)
                        continue
                    raise
                except TRANSPORT_ERRORS as e:
                    self._nonces.clear()
                    if attempt < self.RETRIES:
                        logger.warning("Retrying %s after a transport error: %s", url, e)
                        continue
                    raise TransportError(url, str(e) or type(e).__name__) from e

    async def _make_request(
        self,
        body: str,
        url: str,
        problem: typing.Type[AcmeProblem],
        accept: str = None,
    ):
        headers = {"Content-Type": "application/jose+json"}
        if accept:
            headers["Accept"] = accept

        logger.debug("POST %s", url)
        async with self._session.post(
            url,
            data=body,
            headers=headers,
            ssl=self._ssl_context,
        ) as resp:
            self._nonces.observe(resp)

            if resp.content_type == "application/problem+json":
                try:
                    error = acme.messages.Error.from_json(await resp.json(content_type=None))
                except (json.JSONDecodeError, josepy.errors.DeserializationError):
                    raise UnexpectedResponse(url, resp.status)
                if error.code == "badNonce":
                    raise BadNonce(error, resp.status)
                raise problem(error, resp.status)
            elif resp.status < 200 or resp.status >= 300:
                raise UnexpectedResponse(url, resp.status)
            elif resp.content_type == "application/json":
                data = await resp.json()
            else:
                data = await resp.text()

            logger.debug(data)
            return resp, data
