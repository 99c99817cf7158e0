import stat

import pytest

import acmeflow.util
from acmeflow.client import FileCredentialStore, MemoryCredentialStore, UnknownKeyAlias
from acmeflow.client.account import default_dn


@pytest.fixture(params=["memory", "file"])
def credential_store(request, tmp_path):
    if request.param == "memory":
        return MemoryCredentialStore()
    return FileCredentialStore(FileCredentialStore.Config(path=tmp_path / "keys"))


@pytest.fixture
def entry():
    key = acmeflow.util.generate_private_key("ec")
    return key, acmeflow.util.generate_account_certificate(key, default_dn("web"))


def test_store_and_load(credential_store, entry):
    assert not credential_store.contains("web")

    credential_store.store("web", *entry)

    assert credential_store.contains("web")
    key, certificate = credential_store.load("web")
    assert key.private_numbers() == entry[0].private_numbers()
    assert certificate == entry[1]


def test_replace_entry(credential_store, entry):
    credential_store.store("web", *entry)

    key = acmeflow.util.generate_private_key("ec")
    credential_store.store("web", key, acmeflow.util.generate_account_certificate(key, default_dn("web")))

    assert credential_store.load("web")[0].private_numbers() == key.private_numbers()


def test_unknown_alias(credential_store):
    with pytest.raises(UnknownKeyAlias) as e:
        credential_store.load("missing")

    assert isinstance(e.value, KeyError)
    assert str(e.value) == "Unknown key alias missing"


def test_account_urls(credential_store):
    assert credential_store.get_account_url("web") is None

    credential_store.set_account_url("web", "https://acme.example.com/acct/1")
    credential_store.set_account_url("web@staging", "https://staging.example.com/acct/7")

    assert credential_store.get_account_url("web") == "https://acme.example.com/acct/1"
    assert credential_store.get_account_url("web@staging") == "https://staging.example.com/acct/7"

    credential_store.set_account_url("web", None)
    assert credential_store.get_account_url("web") is None
    assert credential_store.get_account_url("web@staging") == "https://staging.example.com/acct/7"


def test_file_layout(tmp_path, entry):
    path = tmp_path / "keys"
    credential_store = FileCredentialStore(FileCredentialStore.Config(path=path))
    credential_store.store("web", *entry)
    credential_store.set_account_url("web", "https://acme.example.com/acct/1")

    assert stat.S_IMODE((path / "web.key").stat().st_mode) == acmeflow.util.KEY_FILE_MODE
    assert (path / "web.crt").exists()

    reopened = FileCredentialStore(FileCredentialStore.Config(path=path))
    assert reopened.contains("web")
    assert reopened.get_account_url("web") == "https://acme.example.com/acct/1"


@pytest.mark.parametrize("alias", ["", "../web", ".hidden"])
def test_file_invalid_alias(tmp_path, alias):
    credential_store = FileCredentialStore(FileCredentialStore.Config(path=tmp_path))

    with pytest.raises(ValueError):
        credential_store.contains(alias)


def test_file_key_without_certificate(tmp_path):
    path = tmp_path / "keys"
    path.mkdir()
    key = acmeflow.util.generate_ec_key(path / "web.key")
    credential_store = FileCredentialStore(FileCredentialStore.Config(path=path))

    assert credential_store.contains("web")
    loaded_key, certificate = credential_store.load("web")

    assert loaded_key.private_numbers() == key.private_numbers()
    assert certificate.subject == default_dn("web")
    assert certificate.public_key().public_numbers() == key.public_key().public_numbers()
    # the certificate is written once and kept from then on
    assert (path / "web.crt").exists()
    assert credential_store.load("web")[1] == certificate
