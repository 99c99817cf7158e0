import dataclasses
import json

import josepy
import pytest

import acmeflow.util
from acmeflow.client import AccountProblem, AcmeClient, TermsNotAgreed
from acmeflow.models import AccountStatus

from .conftest import CONTACT
from .mock_ca import TERMS_OF_SERVICE


def unregistered_copy(account):
    return dataclasses.replace(account, account_url=None, contact_urls=list(account.contact_urls))


@pytest.mark.asyncio
async def test_create(mock_ca, client, store):
    assert await client.account_create(True)

    account = client.account
    assert account.account_url == f"{mock_ca.base_url}/acme/acct/384"
    assert account.terms_of_service_agreed
    assert account.terms_of_service_url == TERMS_OF_SERVICE
    assert store.get_account_url("test-account") == account.account_url

    ca_account = mock_ca.accounts[account.account_url]
    assert ca_account.contact == [CONTACT]
    assert ca_account.key.thumbprint() == josepy.jwk.JWKEC(key=account.private_key).thumbprint()


@pytest.mark.asyncio
async def test_create_without_terms(mock_ca, client):
    with pytest.raises(TermsNotAgreed) as e:
        await client.account_create(False)

    assert str(e.value) == "must agree to terms of service"
    assert mock_ca.requests == []
    assert client.account.account_url is None


@pytest.mark.asyncio
async def test_create_existing(mock_ca, registered, client_config):
    async with AcmeClient(unregistered_copy(registered.account), cfg=client_config) as client:
        assert not await client.account_create(True)
        assert client.account.account_url is None

    assert len(mock_ca.accounts) == 1


@pytest.mark.asyncio
async def test_create_with_external_account_binding(mock_ca, account):
    cfg = AcmeClient.Config(
        eab_kid="kid-1", eab_hmac_key=josepy.b64.b64encode(b"0123456789abcdef").decode()
    )
    async with AcmeClient(account, cfg=cfg) as client:
        assert await client.account_create(True)

    eab = mock_ca.new_account_payloads[-1]["externalAccountBinding"]
    protected = json.loads(josepy.b64.b64decode(eab["protected"]))
    assert protected["kid"] == "kid-1"
    assert protected["url"] == f"{mock_ca.base_url}/acme/new-acct"


@pytest.mark.asyncio
async def test_lookup(mock_ca, registered, client_config, store):
    async with AcmeClient(
        unregistered_copy(registered.account), cfg=client_config, store=store
    ) as client:
        account = await client.account_lookup()

        assert account.status == AccountStatus.VALID
        assert account.url == registered.account.account_url
        assert client.account.account_url == registered.account.account_url


@pytest.mark.asyncio
async def test_lookup_unknown_key(client):
    with pytest.raises(AccountProblem) as e:
        await client.account_lookup()

    assert e.value.code == "accountDoesNotExist"
    assert e.value.detail == "No account exists with the provided key"
    assert e.value.status == 400


@pytest.mark.asyncio
async def test_update_contacts(mock_ca, registered):
    account = await registered.account_update(
        contact_urls=["mailto:one@example.com", "mailto:two@example.com"]
    )

    assert account.contact == ("mailto:one@example.com", "mailto:two@example.com")
    assert registered.account.contact_urls == ["mailto:one@example.com", "mailto:two@example.com"]
    assert mock_ca.accounts[registered.account.account_url].contact == [
        "mailto:one@example.com",
        "mailto:two@example.com",
    ]


@pytest.mark.asyncio
async def test_update_terms_of_service(mock_ca, registered):
    await registered.account_update(agree_to_terms_of_service=False)

    assert not registered.account.terms_of_service_agreed
    assert not mock_ca.accounts[registered.account.account_url].terms_of_service_agreed


@pytest.mark.asyncio
async def test_update_looks_up_account(mock_ca, registered, client_config):
    async with AcmeClient(unregistered_copy(registered.account), cfg=client_config) as client:
        await client.account_update(contact_urls=["mailto:new@example.com"])

        assert client.account.account_url == registered.account.account_url

    assert mock_ca.count("POST", "/acme/new-acct") == 2
    assert mock_ca.accounts[registered.account.account_url].contact == ["mailto:new@example.com"]


@pytest.mark.asyncio
async def test_update_creates_unknown_account(mock_ca, client):
    await client.account_update(contact_urls=[CONTACT], agree_to_terms_of_service=True)

    assert client.account.account_url == f"{mock_ca.base_url}/acme/acct/384"
    assert len(mock_ca.accounts) == 1


@pytest.mark.asyncio
async def test_key_change(mock_ca, registered, store):
    account = registered.account
    old_key, old_certificate, url = account.private_key, account.certificate, account.account_url

    await registered.account_key_change()

    assert account.private_key is not old_key
    assert account.certificate.serial_number != old_certificate.serial_number
    assert (
        account.certificate.public_key().public_numbers()
        == account.private_key.public_key().public_numbers()
    )
    assert account.dn == old_certificate.subject
    assert account.account_url == url

    ca_account = mock_ca.accounts[url]
    assert ca_account.key.thumbprint() == josepy.jwk.JWKEC(key=account.private_key).thumbprint()
    assert store.load(account.alias) == (account.private_key, account.certificate)

    # subsequent requests are signed with the new key
    await registered.account_update(contact_urls=["mailto:new@example.com"])


@pytest.mark.asyncio
async def test_key_change_to_given_key(mock_ca, registered):
    new_key = acmeflow.util.generate_private_key("rsa")

    await registered.account_key_change(new_key)

    assert registered.account.private_key is new_key
    assert (
        mock_ca.accounts[registered.account.account_url].key.thumbprint()
        == josepy.jwk.JWKRSA(key=new_key).thumbprint()
    )


@pytest.mark.asyncio
async def test_key_change_rejected(mock_ca, registered, store):
    account = registered.account
    old_key, old_certificate = account.private_key, account.certificate
    mock_ca.reject_key_change = True

    with pytest.raises(AccountProblem) as e:
        await registered.account_key_change()

    assert e.value.detail == "key change rejected"
    assert account.private_key is old_key
    assert account.certificate is old_certificate
    assert not store.contains(account.alias)

    # the old key is still in use
    await registered.account_update(contact_urls=["mailto:new@example.com"])


@pytest.mark.asyncio
async def test_deactivate(mock_ca, registered):
    account = await registered.account_deactivate()

    assert account.status == AccountStatus.DEACTIVATED
    assert mock_ca.accounts[registered.account.account_url].status == "deactivated"

    with pytest.raises(AccountProblem) as e:
        await registered.account_update(contact_urls=["mailto:new@example.com"])
    assert e.value.code == "unauthorized"
