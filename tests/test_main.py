from datetime import datetime, timedelta, timezone

import pytest
from click.testing import CliRunner
from cryptography.hazmat.primitives.asymmetric import ec, rsa

import acmeflow.util
from acmeflow.client import FileCredentialStore
from acmeflow.client.account import default_dn
from acmeflow.main import main

from .mock_ca import issue_certificate


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "acmeflow.yml"
    path.write_text(
        f"""
certificate_authorities:
  - name: local
    url: 'http://localhost:1'
key_stores:
  accounts:
    type: file
    path: '{tmp_path / "accounts"}'
accounts:
  - name: web
    certificate_authority: local
    key_store: accounts
    alias: web
    key_type: ec
"""
    )
    return path


def test_plugins():
    result = CliRunner().invoke(main, ["plugins"])

    assert result.exit_code == 0
    assert "WebrootSolver (webroot)" in result.output
    assert "FileCredentialStore (file)" in result.output


@pytest.mark.parametrize("key_type, cls", [("rsa", rsa.RSAPrivateKey), ("ec", ec.EllipticCurvePrivateKey)])
def test_generate_account_key(tmp_path, key_type, cls):
    path = tmp_path / "account.key"

    result = CliRunner().invoke(main, ["generate-account-key", str(path), "--key-type", key_type])

    assert result.exit_code == 0
    (key,) = acmeflow.util.pem_split(path.read_text())
    assert isinstance(key, cls)


def test_create_account_without_terms(config_file, tmp_path):
    result = CliRunner().invoke(
        main, ["create-account", "--config-file", str(config_file), "--account", "web"]
    )

    assert result.exit_code == 1
    assert "must agree to terms of service" in result.output
    # the key is generated and stored before the CA is contacted
    assert (tmp_path / "accounts" / "web.key").exists()


def test_staging_unavailable(config_file):
    result = CliRunner().invoke(
        main, ["get-metadata", "--config-file", str(config_file), "-a", "web", "--staging"]
    )

    assert result.exit_code == 1
    assert "Certificate authority local has no staging URL" in result.output


def test_unknown_account(config_file):
    result = CliRunner().invoke(
        main, ["deactivate-account", "--config-file", str(config_file), "-a", "missing"]
    )

    assert result.exit_code == 1
    assert "Unknown account missing" in result.output


def test_unreachable_ca(config_file):
    result = CliRunner().invoke(
        main, ["get-metadata", "--config-file", str(config_file), "-a", "web"]
    )

    assert result.exit_code == 1
    assert "Directory http://localhost:1/directory is unavailable" in result.output


def test_generated_account_key_in_key_store(config_file, tmp_path):
    (tmp_path / "accounts").mkdir()
    runner = CliRunner()
    runner.invoke(main, ["generate-account-key", str(tmp_path / "accounts" / "web.key"), "-k", "ec"])

    result = runner.invoke(main, ["get-metadata", "--config-file", str(config_file), "-a", "web"])

    # the account loads and the request reaches the (unreachable) CA
    assert "Directory http://localhost:1/directory is unavailable" in result.output
    assert "Unknown key alias" not in result.output
    assert (tmp_path / "accounts" / "web.crt").exists()


@pytest.mark.parametrize(
    "days, expiration, output",
    [
        (60, None, "should-renew-certificate: false\ndays-to-expiry: 60\n"),
        (60, "90", "should-renew-certificate: true\ndays-to-expiry: 60\n"),
        (-5, "1", "should-renew-certificate: true\ndays-to-expiry: 0\n"),
    ],
)
def test_should_renew_certificate(config_file, tmp_path, days, expiration, output):
    key = acmeflow.util.generate_private_key("ec")
    now = datetime.now(timezone.utc)
    certificate = issue_certificate(
        key.public_key(),
        ["www.example.com"],
        default_dn("www"),
        key,
        not_valid_before=now - timedelta(days=90),
        not_valid_after=now + timedelta(days=days, minutes=1),
    )
    FileCredentialStore(FileCredentialStore.Config(path=tmp_path / "accounts")).store("www", key, certificate)

    args = ["should-renew-certificate", "--config-file", str(config_file), "--key-store", "accounts", "--alias", "www"]
    if expiration:
        args += ["--expiration", expiration]
    result = CliRunner().invoke(main, args)

    assert result.exit_code == 0
    assert output in result.output


def test_should_renew_certificate_invalid_expiration(config_file):
    result = CliRunner().invoke(
        main,
        [
            "should-renew-certificate",
            "--config-file",
            str(config_file),
            "--key-store",
            "accounts",
            "--alias",
            "www",
            "--expiration",
            "0",
        ],
    )

    assert result.exit_code == 2
