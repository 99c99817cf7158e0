import logging

import pytest
import pytest_asyncio

import acmeflow.util
from acmeflow.authority import CertificateAuthority
from acmeflow.client import AcmeAccount, AcmeClient, MemoryCredentialStore, MemorySolver

from .mock_ca import MockCA

logging.getLogger("acmeflow").setLevel(logging.DEBUG)

CONTACT = "mailto:admin@example.com"


@pytest_asyncio.fixture
async def mock_ca(unused_tcp_port_factory):
    ca = MockCA(unused_tcp_port_factory())
    await ca.run()
    yield ca
    await ca.stop()


@pytest.fixture
def authority(mock_ca):
    return CertificateAuthority(name="mock", url=mock_ca.directory_url)


@pytest.fixture
def account(authority):
    return AcmeAccount.generate(
        "test-account", authority, key_type="ec", contact_urls=[CONTACT]
    )


@pytest.fixture
def store():
    return MemoryCredentialStore()


@pytest.fixture
def client_config():
    return AcmeClient.Config(poll_attempts=5, poll_delay=0.01)


@pytest.fixture
def solver(mock_ca):
    solver = MemorySolver()
    mock_ca.validator = (
        lambda identifier, token, expected: solver.key_authorizations.get(token) == expected
    )
    return solver


@pytest_asyncio.fixture
async def client(account, store, client_config, solver):
    client = AcmeClient(account, cfg=client_config, store=store)
    client.register_challenge_solver(solver)
    yield client
    await client.close()


@pytest_asyncio.fixture
async def registered(client):
    """A client whose account has been created at the CA."""
    assert await client.account_create(True)
    return client


@pytest.fixture
def csr():
    key = acmeflow.util.generate_private_key("ec")
    return acmeflow.util.generate_csr(
        "www.example.com", key, None, names=["www.example.com", "example.com"]
    )
