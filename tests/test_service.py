from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

import acmeflow.util
from acmeflow.authority import LetsEncrypt, CertificateAuthorityInUse, UnknownCertificateAuthority
from acmeflow.client import AccountAlreadyExists, TermsNotAgreed
from acmeflow.client.account import default_dn
from acmeflow.models.messages import RevocationReason
from acmeflow.service import AccountConfig, AccountService, OperationResult, RenewalCheck, UnknownAccount

from .conftest import CONTACT
from .mock_ca import TERMS_OF_SERVICE, issue_certificate


@pytest.fixture
def service_config(mock_ca, tmp_path):
    return AccountService.Config.model_validate(
        {
            "certificate_authorities": [
                {"name": "mock", "url": mock_ca.base_url, "staging_url": mock_ca.directory_url},
                {"name": "unused", "url": "https://acme.unused.example"},
            ],
            "key_stores": {
                "memory": {"type": "memory"},
                "file": {"type": "file", "path": str(tmp_path / "keys")},
            },
            "accounts": [
                {
                    "name": "web",
                    "certificate_authority": "mock",
                    "contact_urls": [CONTACT],
                    "key_store": "memory",
                    "alias": "web-key",
                    "key_type": "ec",
                },
                {
                    "name": "internal",
                    "certificate_authority": "unused",
                    "key_store": "file",
                    "alias": "internal",
                    "key_type": "ec",
                    "key_size": 384,
                    "dn": "CN=internal,O=Example",
                },
            ],
            "client": {"poll_attempts": 5, "poll_delay": 0.01},
        }
    )


@pytest_asyncio.fixture
async def service(service_config, solver):
    async with AccountService(service_config, challenge_solver=solver) as service:
        yield service


@pytest.mark.asyncio
async def test_create_account(mock_ca, service):
    result = await service.create_account("web", True)

    assert result == OperationResult(outcome="success", result=f"{mock_ca.base_url}/acme/acct/384")
    store = service.key_store("web")
    assert store.contains("web-key")
    assert store.get_account_url("web-key") == result.result
    assert store.get_account_url("web-key@staging") is None


@pytest.mark.asyncio
async def test_create_account_twice(service):
    await service.create_account("web", True)

    result = await service.create_account("web", True)

    assert not result.succeeded
    assert isinstance(result.error, AccountAlreadyExists)
    assert (
        result.failure_description
        == "An account for key web-key already exists, use update-account or change-account-key instead"
    )


@pytest.mark.asyncio
async def test_create_account_without_terms(mock_ca, service):
    result = await service.create_account("web", False)

    assert result.outcome == "failed"
    assert isinstance(result.error, TermsNotAgreed)
    assert result.failure_description == "must agree to terms of service"
    assert mock_ca.requests == []


@pytest.mark.asyncio
async def test_staging_slot(mock_ca, service):
    result = await service.create_account("web", True, staging=True)

    assert result.succeeded
    store = service.key_store("web")
    assert store.get_account_url("web-key@staging") == result.result
    assert store.get_account_url("web-key") is None


@pytest.mark.asyncio
async def test_staging_unavailable(service):
    result = await service.get_metadata("internal", staging=True)

    assert not result.succeeded
    assert result.failure_description == "Certificate authority unused has no staging URL"


@pytest.mark.asyncio
async def test_unknown_account(service):
    result = await service.create_account("missing", True)

    assert isinstance(result.error, UnknownAccount)
    assert result.failure_description == "Unknown account missing"


@pytest.mark.asyncio
async def test_generated_key(service):
    account = service.account("internal")

    assert acmeflow.util.key_type_and_size(account.private_key) == ("ec", 384)
    assert account.dn.rfc4514_string() == "CN=internal,O=Example"
    assert service.key_store("internal").contains("internal")
    assert account.certificate_authority.name == "unused"


@pytest.mark.asyncio
async def test_stored_key_is_loaded(service_config):
    key = acmeflow.util.generate_private_key("ec")
    certificate = acmeflow.util.generate_account_certificate(key, default_dn("internal"))

    async with AccountService(service_config) as service:
        service.key_store("internal").store("internal", key, certificate)
        service.key_store("internal").set_account_url("internal", "https://acme.unused.example/acct/1")

    async with AccountService(service_config) as service:
        account = service.account("internal")

    assert account.private_key.private_numbers() == key.private_numbers()
    assert account.certificate == certificate
    assert account.account_url == "https://acme.unused.example/acct/1"


@pytest.mark.asyncio
async def test_metadata(service):
    result = await service.get_metadata("web")

    assert result.succeeded
    assert result.result.terms_of_service == TERMS_OF_SERVICE


@pytest.mark.asyncio
async def test_update_account(mock_ca, service):
    await service.create_account("web", True)

    result = await service.update_account("web", contact_urls=["mailto:new@example.com"])
    assert result.succeeded
    assert mock_ca.accounts[result.result].contact == ["mailto:new@example.com"]

    result = await service.update_account("web")
    assert mock_ca.accounts[result.result].contact == [CONTACT]


@pytest.mark.asyncio
async def test_change_account_key(mock_ca, service):
    await service.create_account("web", True)
    old_key = service.account("web").private_key

    result = await service.change_account_key("web")

    assert result.succeeded
    new_key, certificate = service.key_store("web").load("web-key")
    assert new_key.private_numbers() != old_key.private_numbers()
    assert certificate == result.result
    assert certificate.subject == default_dn("web-key")


@pytest.mark.asyncio
async def test_change_account_key_unknown_account(service):
    result = await service.change_account_key("web")

    assert not result.succeeded
    assert result.error.code == "accountDoesNotExist"


@pytest.mark.asyncio
async def test_deactivate_account(mock_ca, service):
    url = (await service.create_account("web", True)).result

    result = await service.deactivate_account("web")

    assert result.result == url
    assert mock_ca.accounts[url].status == "deactivated"


@pytest.mark.asyncio
async def test_obtain_and_revoke_certificate(mock_ca, service, csr):
    await service.create_account("web", True)

    result = await service.obtain_certificate("web", csr)
    assert result.succeeded
    leaf = result.result[0]

    result = await service.revoke_certificate("web", leaf, reason=RevocationReason.superseded)
    assert result == OperationResult.success(True)
    assert mock_ca.revoked == {leaf.serial_number: RevocationReason.superseded.value}

    result = await service.revoke_certificate("web", leaf)
    assert result.error.code == "alreadyRevoked"


@pytest.mark.asyncio
async def test_certificate_authority_in_use(service):
    with pytest.raises(CertificateAuthorityInUse):
        service.remove_certificate_authority("unused")

    await service.replace_account(
        AccountConfig(
            name="internal",
            key_store="file",
            alias="internal",
            key_type="ec",
        )
    )
    service.remove_certificate_authority("unused")

    assert service.account("internal").certificate_authority is LetsEncrypt


@pytest.mark.asyncio
async def test_replace_account_keeps_old_config_on_error(service):
    with pytest.raises(UnknownCertificateAuthority):
        await service.replace_account(
            AccountConfig(
                name="internal",
                certificate_authority="missing",
                key_store="file",
                alias="internal",
            )
        )

    assert service.account("internal").certificate_authority.name == "unused"


def test_account_references_unknown_key_store(service_config):
    service_config.accounts[0].key_store = "missing"

    with pytest.raises(ValueError):
        AccountService(service_config)


def test_account_references_unknown_authority(service_config):
    service_config.accounts[0].certificate_authority = "missing"

    with pytest.raises(UnknownCertificateAuthority):
        AccountService(service_config)


def store_certificate(service, not_valid_before, not_valid_after, alias="expiry"):
    key = acmeflow.util.generate_private_key("ec")
    issuer = default_dn(alias)
    certificate = issue_certificate(
        key.public_key(),
        ["expiry.example.com"],
        issuer,
        key,
        not_valid_before=not_valid_before,
        not_valid_after=not_valid_after,
    )
    service.get_key_store("file").store(alias, key, certificate)


@pytest.mark.asyncio
async def test_should_renew_certificate_expires_within_given_days(service):
    now = datetime.now(timezone.utc)
    store_certificate(service, now, now + timedelta(days=60, minutes=1))

    result = await service.should_renew_certificate("file", "expiry", expiration=90)

    assert result.succeeded
    assert result.result == RenewalCheck(should_renew_certificate=True, days_to_expiry=60)


@pytest.mark.asyncio
async def test_should_renew_certificate_already_expired(service):
    store_certificate(
        service,
        datetime(2018, 3, 24, 23, 59, 59, tzinfo=timezone.utc),
        datetime(2018, 4, 24, 23, 59, 59, tzinfo=timezone.utc),
    )

    result = await service.should_renew_certificate("file", "expiry")

    assert result.result == RenewalCheck(should_renew_certificate=True, days_to_expiry=0)


@pytest.mark.asyncio
async def test_should_renew_certificate_does_not_expire_within_given_days(service):
    now = datetime.now(timezone.utc)
    store_certificate(service, now, now + timedelta(days=30, minutes=1))

    result = await service.should_renew_certificate("file", "expiry", expiration=15)

    assert result.result == RenewalCheck(should_renew_certificate=False, days_to_expiry=30)


@pytest.mark.asyncio
async def test_should_renew_certificate_default_window(service):
    now = datetime.now(timezone.utc)
    store_certificate(service, now, now + timedelta(days=30, minutes=1))

    result = await service.should_renew_certificate("file", "expiry")

    assert result.result.should_renew_certificate


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "key_store, alias, failure",
    [
        ("file", "missing", "Unknown key alias missing"),
        ("vault", "expiry", "Unknown key store vault"),
    ],
)
async def test_should_renew_certificate_unknown_entry(service, key_store, alias, failure):
    now = datetime.now(timezone.utc)
    store_certificate(service, now, now + timedelta(days=60))

    result = await service.should_renew_certificate(key_store, alias)

    assert not result.succeeded
    assert result.failure_description == failure


@pytest.mark.asyncio
async def test_should_renew_certificate_invalid_expiration(service):
    with pytest.raises(ValueError):
        await service.should_renew_certificate("file", "expiry", expiration=0)
