import abc
import logging
import typing
from pathlib import Path

import yaml
from cryptography import x509
from cryptography.hazmat.primitives import serialization

import acmeflow.util
from acmeflow.client.account import default_dn
from acmeflow.client.exceptions import UnknownKeyAlias
from acmeflow.plugin_base import PluginRegistry
from acmeflow.settings import Settings
from acmeflow.util import PrivateKey

logger = logging.getLogger(__name__)


class CredentialStore(abc.ABC):
    """An abstract base class for stores that durably keep account keys.

    Each entry consists of a private key and the certificate that wraps its public key, stored under
    an alias. A side slot per alias remembers the account URL the CA assigned to the key.
    Implementations must be registered with the plugin registry via
    :meth:`~acmeflow.plugin_base.PluginRegistry.register_plugin`.
    """

    class Config(Settings):
        type: typing.Literal["none"] = "none"

    def __init__(self, cfg: Config = None):
        pass

    @abc.abstractmethod
    def contains(self, alias: str) -> bool:
        pass

    @abc.abstractmethod
    def load(self, alias: str) -> typing.Tuple[PrivateKey, x509.Certificate]:
        """Loads the key entry stored under the given alias.

        :raises: :class:`~acmeflow.client.exceptions.UnknownKeyAlias` If there is no such entry.
        """
        pass

    @abc.abstractmethod
    def store(
        self, alias: str, private_key: PrivateKey, certificate: x509.Certificate
    ) -> None:
        """Stores the key entry under the given alias, replacing an existing entry."""
        pass

    @abc.abstractmethod
    def get_account_url(self, alias: str) -> typing.Optional[str]:
        pass

    @abc.abstractmethod
    def set_account_url(self, alias: str, url: typing.Optional[str]) -> None:
        pass


@PluginRegistry.register_plugin("memory")
class MemoryCredentialStore(CredentialStore):
    """Credential store that keeps its entries in memory only."""

    class Config(CredentialStore.Config):
        type: typing.Literal["memory"] = "memory"

    def __init__(self, cfg: Config = None):
        super().__init__(cfg)
        self._entries: typing.Dict[str, typing.Tuple[PrivateKey, x509.Certificate]] = dict()
        self._account_urls: typing.Dict[str, str] = dict()

    def contains(self, alias: str) -> bool:
        return alias in self._entries

    def load(self, alias: str) -> typing.Tuple[PrivateKey, x509.Certificate]:
        try:
            return self._entries[alias]
        except KeyError:
            raise UnknownKeyAlias(alias)

    def store(
        self, alias: str, private_key: PrivateKey, certificate: x509.Certificate
    ) -> None:
        self._entries[alias] = (private_key, certificate)

    def get_account_url(self, alias: str) -> typing.Optional[str]:
        return self._account_urls.get(alias)

    def set_account_url(self, alias: str, url: typing.Optional[str]) -> None:
        if url is None:
            self._account_urls.pop(alias, None)
        else:
            self._account_urls[alias] = url


@PluginRegistry.register_plugin("file")
class FileCredentialStore(CredentialStore):
    """Credential store that keeps PEM files in a directory.

    The key of an alias is written to *<alias>.key* (readable by the owner only) and its certificate
    to *<alias>.crt*. A missing certificate is created with the default DN on load. Account URLs are
    kept in *accounts.yml*.
    """

    ACCOUNTS_FILE = "accounts.yml"

    class Config(CredentialStore.Config):
        type: typing.Literal["file"] = "file"
        path: Path

    def __init__(self, cfg: Config):
        super().__init__(cfg)
        self._path = Path(cfg.path)
        self._path.mkdir(parents=True, exist_ok=True)

    def _entry_path(self, alias: str, suffix: str) -> Path:
        if not alias or "/" in alias or "\\" in alias or alias.startswith("."):
            raise ValueError(f"Invalid key alias {alias!r}")
        return self._path / f"{alias}{suffix}"

    def contains(self, alias: str) -> bool:
        return self._entry_path(alias, ".key").exists()

    def load(self, alias: str) -> typing.Tuple[PrivateKey, x509.Certificate]:
        key_path = self._entry_path(alias, ".key")
        cert_path = self._entry_path(alias, ".crt")
        if not key_path.exists():
            raise UnknownKeyAlias(alias)

        keys = acmeflow.util.pem_split(key_path.read_text())
        if len(keys) != 1:
            raise ValueError(f"Bad private key in file {key_path}")

        if not cert_path.exists():
            # keys written by generate-account-key come without a certificate
            logger.info("Creating the certificate of key entry %s in %s", alias, self._path)
            certificate = acmeflow.util.generate_account_certificate(keys[0], default_dn(alias))
            cert_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
            return keys[0], certificate

        return keys[0], x509.load_pem_x509_certificate(cert_path.read_bytes())

    def store(
        self, alias: str, private_key: PrivateKey, certificate: x509.Certificate
    ) -> None:
        logger.debug("Storing key entry %s in %s", alias, self._path)
        acmeflow.util.write_private_key(self._entry_path(alias, ".key"), private_key)
        self._entry_path(alias, ".crt").write_bytes(
            certificate.public_bytes(serialization.Encoding.PEM)
        )

    def _read_account_urls(self) -> typing.Dict[str, str]:
        accounts_path = self._path / self.ACCOUNTS_FILE
        if not accounts_path.exists():
            return dict()

        with open(accounts_path) as stream:
            return yaml.safe_load(stream) or dict()

    def get_account_url(self, alias: str) -> typing.Optional[str]:
        return self._read_account_urls().get(alias)

    def set_account_url(self, alias: str, url: typing.Optional[str]) -> None:
        urls = self._read_account_urls()
        if url is None:
            urls.pop(alias, None)
        else:
            urls[alias] = url

        with open(self._path / self.ACCOUNTS_FILE, "w") as stream:
            yaml.safe_dump(urls, stream)
