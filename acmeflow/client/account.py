import logging
import typing
from dataclasses import dataclass, field

from cryptography import x509
from cryptography.x509 import NameOID

import acmeflow.util
from acmeflow.util import PrivateKey

if typing.TYPE_CHECKING:
    from acmeflow.authority import CertificateAuthority

logger = logging.getLogger(__name__)


def default_dn(alias: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, alias)])


@dataclass
class AcmeAccount:
    """An account with an ACME certificate authority.

    The account owns its key pair. The self-signed :attr:`certificate` wraps the public key so that
    key and certificate can be kept together in a credential store; its subject is the account's
    distinguished name.
    """

    alias: str
    """The alias under which the key is kept in the credential store."""
    private_key: PrivateKey
    certificate: x509.Certificate
    certificate_authority: "CertificateAuthority"
    contact_urls: typing.List[str] = field(default_factory=list)
    terms_of_service_agreed: bool = False
    account_url: typing.Optional[str] = None
    """The account's URL at the CA. *None* until the CA has assigned one."""
    terms_of_service_url: typing.Optional[str] = None
    """The terms of service the CA linked to on account creation."""

    @classmethod
    def generate(
        cls,
        alias: str,
        certificate_authority: "CertificateAuthority",
        *,
        key_type: str = "rsa",
        key_size: int = None,
        dn: x509.Name = None,
        **kwargs,
    ) -> "AcmeAccount":
        """Creates an account with a freshly generated key pair.

        :param alias: The key alias.
        :param certificate_authority: The CA the account belongs to.
        :param key_type: Either *rsa* or *ec*.
        :param key_size: The RSA key size or EC curve size.
        :param dn: The distinguished name. Defaults to *CN=<alias>*.
        """
        private_key = acmeflow.util.generate_private_key(key_type, key_size)
        certificate = acmeflow.util.generate_account_certificate(
            private_key, dn or default_dn(alias)
        )
        return cls(
            alias=alias,
            private_key=private_key,
            certificate=certificate,
            certificate_authority=certificate_authority,
            **kwargs,
        )

    @property
    def dn(self) -> x509.Name:
        """The account's distinguished name."""
        return self.certificate.subject

    def generate_replacement_key(self) -> PrivateKey:
        """Generates a new private key of the same type and size as the current one."""
        return acmeflow.util.generate_private_key(
            *acmeflow.util.key_type_and_size(self.private_key)
        )

    def change_key(self, private_key: PrivateKey) -> None:
        """Replaces the account's key pair.

        The certificate is regenerated for the new key; the distinguished name is kept.
        """
        self.certificate = acmeflow.util.generate_account_certificate(
            private_key, self.dn
        )
        self.private_key = private_key

    def directory_url(self, staging: bool = False) -> str:
        return self.certificate_authority.directory_url(staging)
