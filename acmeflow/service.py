import functools
import logging
import typing
from dataclasses import dataclass

import aiohttp
from cryptography import x509
from pydantic import Field

import acmeflow.util
from acmeflow.authority import (
    LETS_ENCRYPT,
    CertificateAuthority,
    CertificateAuthorityRegistry,
)
from acmeflow.client import (
    AccountAlreadyExists,
    AcmeAccount,
    AcmeClient,
    AcmeClientException,
    AcmeMetadata,
    ChallengeSolver,
    CredentialStore,
    DirectoryResolver,
    DummySolver,
    FileCredentialStore,
    MemoryCredentialStore,
    MemorySolver,
    WebrootSolver,
)
from acmeflow.client.client import account_url_slot, create_ssl_context
from acmeflow.models.messages import RevocationReason
from acmeflow.plugin_base import PluginRegistry
from acmeflow.settings import Settings
from acmeflow.util import PrivateKey
from acmeflow.version import __version__

logger = logging.getLogger(__name__)

challenge_solver_registry = PluginRegistry.get_registry(ChallengeSolver)
credential_store_registry = PluginRegistry.get_registry(CredentialStore)

SUCCESS = "success"
FAILED = "failed"


@dataclass
class OperationResult:
    """The outcome of an account operation.

    Expected protocol outcomes, such as the CA rejecting a request, are reported as failed results
    instead of exceptions.
    """

    outcome: str
    result: typing.Any = None
    failure_description: typing.Optional[str] = None
    error: typing.Optional[Exception] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == SUCCESS

    @classmethod
    def success(cls, result=None) -> "OperationResult":
        return cls(outcome=SUCCESS, result=result)

    @classmethod
    def failed(cls, error: Exception) -> "OperationResult":
        return cls(outcome=FAILED, failure_description=str(error), error=error)


def operation(func):
    """Turns the :class:`~acmeflow.client.AcmeClientException` of an account operation into a failed
    :class:`OperationResult` and its return value into a successful one."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> OperationResult:
        try:
            return OperationResult.success(await func(*args, **kwargs))
        except AcmeClientException as e:
            logger.info("%s failed: %s", func.__name__, e)
            return OperationResult.failed(e)

    return wrapper


class UnknownAccount(AcmeClientException):
    def __init__(self, name, *args):
        super().__init__(*args)
        self.name = name

    def __str__(self):
        return f"Unknown account {self.name}"


class UnknownKeyStore(AcmeClientException):
    def __init__(self, name, *args):
        super().__init__(*args)
        self.name = name

    def __str__(self):
        return f"Unknown key store {self.name}"


@dataclass
class RenewalCheck:
    """Whether a stored certificate is due for renewal."""

    should_renew_certificate: bool
    days_to_expiry: int
    """Whole days until the certificate expires, 0 once it has expired."""


class AccountConfig(Settings):
    name: str
    certificate_authority: str = LETS_ENCRYPT
    contact_urls: typing.List[str] = []
    key_store: str
    """The name of the key store that holds the account key."""
    alias: str
    """The alias of the account key inside the key store."""
    key_type: typing.Literal["rsa", "ec"] = "rsa"
    key_size: typing.Optional[int] = None
    dn: typing.Optional[str] = None
    """The account's distinguished name as an RFC 4514 string. Defaults to *CN=<alias>*."""


class AccountService:
    """Manages the configured accounts and runs account and certificate operations on their behalf.

    Account keys are loaded from the account's key store, or generated and stored there on first use.
    One :class:`~acmeflow.client.AcmeClient` is kept per account and environment (production or staging).
    """

    class Config(Settings):
        certificate_authorities: typing.List[CertificateAuthority] = []
        key_stores: typing.Dict[
            str,
            typing.Annotated[
                typing.Union[MemoryCredentialStore.Config, FileCredentialStore.Config],
                Field(discriminator="type"),
            ],
        ] = {}
        accounts: typing.List[AccountConfig] = []
        client: AcmeClient.Config = Field(default_factory=AcmeClient.Config)
        challenge_solver: typing.Optional[
            typing.Annotated[
                typing.Union[DummySolver.Config, MemorySolver.Config, WebrootSolver.Config],
                Field(discriminator="type"),
            ]
        ] = None

    def __init__(self, cfg: Config, *, challenge_solver: ChallengeSolver = None):
        """Creates an :class:`AccountService` instance.

        :param cfg: The service configuration.
        :param challenge_solver: A solver to use instead of the configured one.
        :raises:

            * :class:`~acmeflow.authority.CertificateAuthorityError` If a certificate authority is invalid or
                an account references an unknown one.
            * :class:`ValueError` If an account references an unknown key store.
        """
        self._cfg = cfg
        self.authorities = CertificateAuthorityRegistry(cfg.certificate_authorities)
        self._stores: typing.Dict[str, CredentialStore] = {
            name: credential_store_registry.get_plugin(store_cfg.type)(store_cfg)
            for name, store_cfg in cfg.key_stores.items()
        }

        if challenge_solver is None and cfg.challenge_solver is not None:
            challenge_solver = challenge_solver_registry.get_plugin(
                cfg.challenge_solver.type
            )(cfg.challenge_solver)
        self._challenge_solver = challenge_solver

        self._account_configs: typing.Dict[str, AccountConfig] = dict()
        self._accounts: typing.Dict[typing.Tuple[str, bool], AcmeAccount] = dict()
        self._clients: typing.Dict[typing.Tuple[str, bool], AcmeClient] = dict()
        self._session = None
        self._directories = None

        for account_cfg in cfg.accounts:
            self.add_account(account_cfg)

    def add_account(self, account_cfg: AccountConfig) -> None:
        if account_cfg.name in self._account_configs:
            raise ValueError(f"Account {account_cfg.name} already exists")
        if account_cfg.key_store not in self._stores:
            raise ValueError(
                f"Account {account_cfg.name} references the unknown key store {account_cfg.key_store}"
            )

        self.authorities.reference(account_cfg.certificate_authority, account_cfg.name)
        self._account_configs[account_cfg.name] = account_cfg

    async def remove_account(self, name: str) -> None:
        account_cfg = self._account_config(name)

        for staging in (False, True):
            self._accounts.pop((name, staging), None)
            if client := self._clients.pop((name, staging), None):
                await client.close()

        self.authorities.release(account_cfg.certificate_authority, name)
        del self._account_configs[name]

    async def replace_account(self, account_cfg: AccountConfig) -> None:
        """Replaces the configuration of an existing account, e.g. to switch its certificate authority.

        Clients of the old configuration are discarded; the key entry in the key store is kept.
        """
        old_cfg = self._account_config(account_cfg.name)
        await self.remove_account(account_cfg.name)
        try:
            self.add_account(account_cfg)
        except (AcmeClientException, ValueError):
            self.add_account(old_cfg)
            raise

    def remove_certificate_authority(self, name: str) -> None:
        """Removes a certificate authority that no account references anymore.

        :raises: :class:`~acmeflow.authority.CertificateAuthorityInUse` If an account references it.
        """
        self.authorities.remove(name)

    def _account_config(self, name: str) -> AccountConfig:
        try:
            return self._account_configs[name]
        except KeyError:
            raise UnknownAccount(name)

    def get_key_store(self, name: str) -> CredentialStore:
        """Returns the key store of the given name."""
        try:
            return self._stores[name]
        except KeyError:
            raise UnknownKeyStore(name)

    def key_store(self, name: str) -> CredentialStore:
        return self._stores[self._account_config(name).key_store]

    def account(self, name: str, staging: bool = False) -> AcmeAccount:
        """Returns the account of the given name, loading or generating its key.

        :param name: The account's name.
        :param staging: Whether to return the account for the staging environment.
        """
        if (account := self._accounts.get((name, staging))) is not None:
            return account

        account_cfg = self._account_config(name)
        store = self.key_store(name)
        authority = self.authorities.get(account_cfg.certificate_authority)

        if store.contains(account_cfg.alias):
            private_key, certificate = store.load(account_cfg.alias)
            account = AcmeAccount(
                alias=account_cfg.alias,
                private_key=private_key,
                certificate=certificate,
                certificate_authority=authority,
                contact_urls=list(account_cfg.contact_urls),
            )
        else:
            account = AcmeAccount.generate(
                account_cfg.alias,
                authority,
                key_type=account_cfg.key_type,
                key_size=account_cfg.key_size,
                dn=x509.Name.from_rfc4514_string(account_cfg.dn) if account_cfg.dn else None,
                contact_urls=list(account_cfg.contact_urls),
            )
            store.store(account.alias, account.private_key, account.certificate)
            logger.info(
                "Generated a %s key for account %s under alias %s",
                account_cfg.key_type,
                name,
                account.alias,
            )

        account.account_url = store.get_account_url(
            account_url_slot(account_cfg.alias, staging)
        )
        self._accounts[(name, staging)] = account
        return account

    def client(self, name: str, staging: bool = False) -> AcmeClient:
        """Returns the client that acts on behalf of the given account.

        Must be called from within a running event loop.
        """
        if (client := self._clients.get((name, staging))) is not None:
            return client

        account = self.account(name, staging)

        if self._session is None:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": f"acmeflow Client {__version__}"}
            )
            self._directories = DirectoryResolver(
                self._session, create_ssl_context(self._cfg.client.server_cert)
            )

        client = AcmeClient(
            account,
            staging=staging,
            cfg=self._cfg.client,
            store=self.key_store(name),
            session=self._session,
            directories=self._directories,
        )
        if self._challenge_solver is not None:
            client.register_challenge_solver(self._challenge_solver)

        self._clients[(name, staging)] = client
        return client

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()

        if self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "AccountService":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @operation
    async def create_account(
        self, name: str, agree_to_terms_of_service: bool, staging: bool = False
    ) -> str:
        """Registers the account with its certificate authority.

        :return: A result holding the new account URL. Fails if the terms of service were not agreed to or
            an account already exists for the key.
        """
        client = self.client(name, staging)
        if not await client.account_create(agree_to_terms_of_service):
            raise AccountAlreadyExists(client.account.alias)
        return client.account.account_url

    @operation
    async def update_account(
        self,
        name: str,
        agree_to_terms_of_service: bool = None,
        staging: bool = False,
        contact_urls: typing.List[str] = None,
    ) -> str:
        """Sends the account's contact URLs and, if given, its terms of service agreement to the CA.

        :param contact_urls: The contact URLs to send. Defaults to the configured ones.
        :return: A result holding the account URL.
        """
        client = self.client(name, staging)
        await client.account_update(
            contact_urls=(
                contact_urls
                if contact_urls is not None
                else list(self._account_config(name).contact_urls)
            ),
            agree_to_terms_of_service=agree_to_terms_of_service,
        )
        return client.account.account_url

    @operation
    async def change_account_key(self, name: str, staging: bool = False) -> x509.Certificate:
        """Rolls the account over to a new key and stores it in the account's key store.

        :return: A result holding the account's new certificate.
        """
        client = self.client(name, staging)
        await client.account_key_change()

        # The other environment shares the key entry and must reload it.
        self._accounts.pop((name, not staging), None)
        if other := self._clients.pop((name, not staging), None):
            await other.close()

        return client.account.certificate

    @operation
    async def deactivate_account(self, name: str, staging: bool = False) -> str:
        client = self.client(name, staging)
        await client.account_deactivate()
        return client.account.account_url

    @operation
    async def get_metadata(self, name: str, staging: bool = False) -> AcmeMetadata:
        return await self.client(name, staging).get_metadata()

    @operation
    async def obtain_certificate(
        self,
        name: str,
        csr: x509.CertificateSigningRequest,
        staging: bool = False,
    ) -> typing.List[x509.Certificate]:
        """Obtains a certificate for the names in the CSR.

        :return: A result holding the certificate chain, leaf certificate first.
        """
        return await self.client(name, staging).obtain_certificate(csr)

    @operation
    async def revoke_certificate(
        self,
        name: str,
        certificate: x509.Certificate,
        reason: RevocationReason = None,
        staging: bool = False,
        certificate_key: PrivateKey = None,
    ) -> bool:
        return await self.client(name, staging).certificate_revoke(
            certificate, reason=reason, certificate_key=certificate_key
        )

    @operation
    async def should_renew_certificate(
        self, key_store: str, alias: str, expiration: int = 30
    ) -> RenewalCheck:
        """Checks whether the certificate stored under the given alias expires within the given number of days.

        :param key_store: The name of the key store holding the certificate.
        :param alias: The alias of the key entry.
        :param expiration: The renewal window in days, at least 1.
        :raises: :class:`ValueError` If the renewal window is shorter than a day.
        :return: A result holding the :class:`RenewalCheck`. Fails if the store or the alias is unknown.
        """
        if expiration < 1:
            raise ValueError(f"The expiration must be at least 1 day, got {expiration}")

        _, certificate = self.get_key_store(key_store).load(alias)
        days = acmeflow.util.days_to_expiry(certificate)
        return RenewalCheck(should_renew_certificate=days <= expiration, days_to_expiry=days)
