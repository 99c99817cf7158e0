import asyncio
import logging
import logging.config
from pathlib import Path
from typing import Any

import click
import yaml
from cryptography import x509
from cryptography.hazmat.primitives import serialization

from acmeflow.client import AcmeClientException
from acmeflow.models.messages import RevocationReason
from acmeflow.service import (
    AccountService,
    OperationResult,
    challenge_solver_registry,
    credential_store_registry,
)
from acmeflow.util import generate_ec_key, generate_rsa_key, pem_split

logger = logging.getLogger(__name__)


class Config(AccountService.Config):
    logging: Any = None


def load_config(config_file: str) -> Config:
    with open(config_file) as stream:
        config = yaml.safe_load(stream)

    return Config.model_validate(config or {})


def configure_logging(config: Config) -> None:
    if config.logging:
        logging.config.dictConfig(config.logging)
    else:
        logging.basicConfig(level=logging.INFO)


def run_operation(config_file: str, operation: str, *args, **kwargs) -> OperationResult:
    """Runs the named :class:`AccountService` operation and fails the command if it did not succeed."""
    config = load_config(config_file)
    configure_logging(config)

    async def run():
        async with AccountService(config) as service:
            return await getattr(service, operation)(*args, **kwargs)

    try:
        result = asyncio.run(run())
    except (AcmeClientException, ValueError) as e:
        # configuration errors surface when the service is set up
        raise click.ClickException(str(e))

    if not result.succeeded:
        raise click.ClickException(result.failure_description)
    return result


config_file_option = click.option(
    "--config-file",
    envvar="ACMEFLOW_CONFIG_FILE",
    type=click.Path(exists=True, dir_okay=False),
    required=True,
)
account_option = click.option("--account", "-a", required=True, help="The account's name.")
staging_option = click.option(
    "--staging", is_flag=True, default=False, help="Use the CA's staging environment."
)


@click.group()
@click.pass_context
def main(ctx):
    pass


@main.command()
def plugins():
    """Lists the available plugins and their respective config strings."""
    for plugins in [
        ("Challenge solvers", challenge_solver_registry.config_mapping()),
        ("Key stores", credential_store_registry.config_mapping()),
    ]:
        click.echo(
            f"{plugins[0]}: {', '.join([f'{app.__name__} ({config_name})' for config_name, app in plugins[1].items()])}"
        )


@main.command()
@click.argument("account-key-file", type=click.Path())
@click.option(
    "--key-type",
    "-k",
    type=click.Choice(["rsa", "ec"], case_sensitive=False),
    default="rsa",
    show_default=True,
)
def generate_account_key(account_key_file, key_type):
    """Generates an account key."""
    click.echo(f"Generating account key of type {key_type} at {account_key_file}.")
    account_key_file = Path(account_key_file)
    if key_type == "rsa":
        generate_rsa_key(account_key_file)
    else:
        generate_ec_key(account_key_file)


@main.command()
@config_file_option
@account_option
@staging_option
@click.option(
    "--agree-to-terms-of-service",
    is_flag=True,
    default=False,
    help="Agree to the CA's terms of service.",
)
def create_account(config_file, account, staging, agree_to_terms_of_service):
    """Registers the account with its certificate authority."""
    result = run_operation(
        config_file,
        "create_account",
        account,
        agree_to_terms_of_service,
        staging=staging,
    )
    click.echo(f"Created account {result.result}")


@main.command()
@config_file_option
@account_option
@staging_option
@click.option(
    "--agree-to-terms-of-service/--disagree-to-terms-of-service",
    default=None,
    help="Change the account's terms of service agreement.",
)
def update_account(config_file, account, staging, agree_to_terms_of_service):
    """Sends the account's configured contact URLs to the certificate authority."""
    result = run_operation(
        config_file,
        "update_account",
        account,
        agree_to_terms_of_service,
        staging=staging,
    )
    click.echo(f"Updated account {result.result}")


@main.command()
@config_file_option
@account_option
@staging_option
def change_account_key(config_file, account, staging):
    """Rolls the account over to a new key."""
    result = run_operation(config_file, "change_account_key", account, staging=staging)
    click.echo(f"Changed the key of account {account}, certificate serial {result.result.serial_number:x}")


@main.command()
@config_file_option
@account_option
@staging_option
def deactivate_account(config_file, account, staging):
    """Deactivates the account."""
    result = run_operation(config_file, "deactivate_account", account, staging=staging)
    click.echo(f"Deactivated account {result.result}")


@main.command()
@config_file_option
@account_option
@staging_option
def get_metadata(config_file, account, staging):
    """Shows the metadata of the account's certificate authority."""
    metadata = run_operation(config_file, "get_metadata", account, staging=staging).result
    for name, value in [
        ("terms-of-service", metadata.terms_of_service),
        ("website", metadata.website),
        ("caa-identities", ", ".join(metadata.caa_identities) if metadata.caa_identities else None),
        ("external-account-required", metadata.external_account_required),
    ]:
        click.echo(f"{name}: {'undefined' if value is None else value}")


@main.command()
@config_file_option
@account_option
@staging_option
@click.option("--csr", "csr_file", type=click.Path(exists=True, dir_okay=False), required=True)
@click.option("--out", "out_file", type=click.Path(dir_okay=False), required=True)
def obtain_certificate(config_file, account, staging, csr_file, out_file):
    """Obtains a certificate for the names in the given CSR and writes the chain as PEM."""
    csr = x509.load_pem_x509_csr(Path(csr_file).read_bytes())
    chain = run_operation(config_file, "obtain_certificate", account, csr, staging=staging).result

    Path(out_file).write_bytes(
        b"".join(cert.public_bytes(serialization.Encoding.PEM) for cert in chain)
    )
    click.echo(f"Wrote certificate chain of {len(chain)} certificate(s) to {out_file}")


@main.command()
@config_file_option
@account_option
@staging_option
@click.option("--cert", "cert_file", type=click.Path(exists=True, dir_okay=False), required=True)
@click.option(
    "--reason",
    type=click.Choice([reason.name for reason in RevocationReason]),
    default=None,
)
@click.option(
    "--cert-key",
    "cert_key_file",
    type=click.Path(exists=True, dir_okay=False),
    help="Sign the revocation with the certificate's key if the account is unknown.",
)
def revoke_certificate(config_file, account, staging, cert_file, reason, cert_key_file):
    """Revokes the (first) certificate in the given PEM file."""
    certificate = x509.load_pem_x509_certificate(Path(cert_file).read_bytes())
    certificate_key = pem_split(Path(cert_key_file).read_text())[0] if cert_key_file else None

    run_operation(
        config_file,
        "revoke_certificate",
        account,
        certificate,
        reason=RevocationReason[reason] if reason else None,
        staging=staging,
        certificate_key=certificate_key,
    )
    click.echo(f"Revoked certificate {certificate.serial_number:x}")


@main.command()
@config_file_option
@click.option("--key-store", required=True, help="The name of the key store holding the certificate.")
@click.option("--alias", required=True, help="The alias of the certificate's key entry.")
@click.option(
    "--expiration",
    type=click.IntRange(min=1),
    default=30,
    show_default=True,
    help="Renew certificates that expire within this many days.",
)
def should_renew_certificate(config_file, key_store, alias, expiration):
    """Checks whether a stored certificate is due for renewal."""
    check = run_operation(
        config_file, "should_renew_certificate", key_store, alias, expiration=expiration
    ).result
    click.echo(f"should-renew-certificate: {str(check.should_renew_certificate).lower()}")
    click.echo(f"days-to-expiry: {check.days_to_expiry}")
