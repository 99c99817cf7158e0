import logging
import typing

from pydantic import field_validator

from acmeflow.client.exceptions import AcmeClientException
from acmeflow.settings import Settings

logger = logging.getLogger(__name__)

LETS_ENCRYPT = "LetsEncrypt"
LETS_ENCRYPT_URL = "https://acme-v02.api.letsencrypt.org/directory"
LETS_ENCRYPT_STAGING_URL = "https://acme-staging-v02.api.letsencrypt.org/directory"


class CertificateAuthorityError(AcmeClientException):
    """General certificate authority configuration error."""

    pass


class UnknownCertificateAuthority(CertificateAuthorityError):
    def __init__(self, name, *args):
        super().__init__(*args)
        self.name = name

    def __str__(self):
        return f"Unknown certificate authority {self.name}"


class StagingUrlUnavailable(CertificateAuthorityError):
    def __init__(self, name, *args):
        super().__init__(*args)
        self.name = name

    def __str__(self):
        return f"Certificate authority {self.name} has no staging URL"


class CertificateAuthorityInUse(CertificateAuthorityError):
    def __init__(self, name, accounts, *args):
        super().__init__(*args)
        self.name = name
        self.accounts = sorted(accounts)

    def __str__(self):
        return (
            f"Certificate authority {self.name} is referenced by "
            f"the account(s) {', '.join(self.accounts)}"
        )


class CertificateAuthority(Settings):
    """An ACME certificate authority.

    The URLs point either at the CA's base or directly at its directory resource.
    """

    name: str
    url: str
    staging_url: typing.Optional[str] = None

    @field_validator("url")
    @classmethod
    def url_not_empty(cls, v):
        if not v:
            raise ValueError("A certificate authority needs a URL")
        return v

    def directory_url(self, staging: bool = False) -> str:
        """Returns the URL to use for the production or staging environment.

        :param staging: Whether to use the staging environment.
        :raises: :class:`StagingUrlUnavailable` If staging is requested but not configured.
        """
        if not staging:
            return self.url
        if not self.staging_url:
            raise StagingUrlUnavailable(self.name)
        return self.staging_url


LetsEncrypt = CertificateAuthority(
    name=LETS_ENCRYPT, url=LETS_ENCRYPT_URL, staging_url=LETS_ENCRYPT_STAGING_URL
)


class CertificateAuthorityRegistry:
    """Holds the configured certificate authorities and the accounts that reference them.

    The well-known :data:`LetsEncrypt` authority is always available and cannot be redefined.
    """

    def __init__(self, authorities: typing.Iterable[CertificateAuthority] = ()):
        self._authorities: typing.Dict[str, CertificateAuthority] = dict()
        self._references: typing.Dict[str, typing.Set[str]] = dict()

        for authority in authorities:
            self.add(authority)

    def __contains__(self, name: str) -> bool:
        return name == LETS_ENCRYPT or name in self._authorities

    def __iter__(self) -> typing.Iterator[CertificateAuthority]:
        yield LetsEncrypt
        yield from self._authorities.values()

    def add(self, authority: CertificateAuthority) -> None:
        """Adds a user-defined certificate authority.

        :raises: :class:`CertificateAuthorityError` If the name is reserved or already in use.
        """
        if authority.name.lower() == LETS_ENCRYPT.lower():
            raise CertificateAuthorityError(
                f"The name {LETS_ENCRYPT} is reserved for the built-in certificate authority"
            )
        if authority.name in self._authorities:
            raise CertificateAuthorityError(
                f"Certificate authority {authority.name} already exists"
            )

        logger.debug("Adding certificate authority %s (%s)", authority.name, authority.url)
        self._authorities[authority.name] = authority

    def get(self, name: str) -> CertificateAuthority:
        if name == LETS_ENCRYPT:
            return LetsEncrypt
        try:
            return self._authorities[name]
        except KeyError:
            raise UnknownCertificateAuthority(name)

    def remove(self, name: str) -> None:
        """Removes a user-defined certificate authority.

        :raises:

            * :class:`CertificateAuthorityInUse` If an account still references the authority.
            * :class:`UnknownCertificateAuthority` If there is no such user-defined authority.
        """
        if accounts := self._references.get(name):
            raise CertificateAuthorityInUse(name, accounts)
        if name not in self._authorities:
            raise UnknownCertificateAuthority(name)

        del self._authorities[name]

    def reference(self, name: str, account: str) -> CertificateAuthority:
        """Records that the given account uses the authority and returns it."""
        authority = self.get(name)
        self._references.setdefault(name, set()).add(account)
        return authority

    def release(self, name: str, account: str) -> None:
        if (accounts := self._references.get(name)) is not None:
            accounts.discard(account)
            if not accounts:
                del self._references[name]
