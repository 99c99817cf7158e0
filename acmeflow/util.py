import re
import typing
from datetime import datetime, timedelta, timezone
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa, ec
from cryptography.x509 import NameOID

KEY_FILE_MODE = 0o600

PrivateKey = typing.Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]


def generate_csr(
    CN: str, private_key: PrivateKey, path: typing.Optional[Path], names: typing.List[str]
):
    """Generates a certificate signing request.

    :param CN: The requested common name.
    :param private_key: The private key to sign the CSR with.
    :param path: The path to write the PEM-serialized CSR to. The CSR is not written if *None*.
    :param names: The requested names in the CSR.
    :return: The generated CSR.
    """
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, CN)]))
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(name) for name in names]),
            critical=False,
        )
        .sign(private_key, hashes.SHA256())
    )

    if path:
        with open(path, "wb") as pem_out:
            pem_out.write(csr.public_bytes(serialization.Encoding.PEM))

    return csr


def generate_private_key(key_type: str = "rsa", key_size: int = None) -> PrivateKey:
    """Generates an RSA or EC private key in memory.

    :param key_type: Either *rsa* or *ec*.
    :param key_size: The RSA key size or the EC curve size. Defaults to 2048 (RSA) and 256 (EC).
    :raises: :class:`ValueError` If the key type or EC curve size is not supported.
    :return: The generated private key.
    """
    key_type = key_type.lower()
    if key_type == "rsa":
        return rsa.generate_private_key(public_exponent=65537, key_size=key_size or 2048)
    elif key_type == "ec":
        curve = getattr(ec, f"SECP{key_size or 256}R1", None)
        if curve is None:
            raise ValueError(f"Unsupported EC key size {key_size}")
        return ec.generate_private_key(curve())
    else:
        raise ValueError(f"Unsupported key type {key_type}")


def key_type_and_size(private_key: PrivateKey) -> typing.Tuple[str, int]:
    """Returns the key type (*rsa* or *ec*) and size of the given private key."""
    if isinstance(private_key, rsa.RSAPrivateKey):
        return "rsa", private_key.key_size
    elif isinstance(private_key, ec.EllipticCurvePrivateKey):
        return "ec", private_key.curve.key_size
    raise ValueError(f"Unsupported private key {type(private_key).__name__}")


def private_key_pem(private_key: PrivateKey) -> bytes:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def write_private_key(path: Path, private_key: PrivateKey) -> None:
    """Writes the PEM-serialized private key to the given path, readable by the owner only."""
    path.touch(KEY_FILE_MODE) if not path.exists() else path.chmod(KEY_FILE_MODE)

    with open(path, "wb") as pem_out:
        pem_out.write(private_key_pem(private_key))


def generate_rsa_key(path: Path, key_size=2048) -> rsa.RSAPrivateKey:
    """Generates an RSA private key and saves it to the given path as PEM.

    :param path: The path to write the PEM-serialized key to.
    :param key_size: The RSA key size.
    :return: The generated private key.
    """
    private_key = generate_private_key("rsa", key_size)
    write_private_key(path, private_key)
    return private_key


def generate_ec_key(path: Path, key_size=256) -> ec.EllipticCurvePrivateKey:
    """Generates an EC private key and saves it to the given path as PEM.

    :param path: The path to write the PEM-serialized key to.
    :param key_size: The EC key size.
    :return: The generated private key.
    """
    private_key = generate_private_key("ec", key_size)
    write_private_key(path, private_key)
    return private_key


def generate_account_certificate(
    private_key: PrivateKey, subject: x509.Name
) -> "cryptography.x509.Certificate":
    """Generates a self-signed certificate that wraps the account key for storage.

    :param private_key: The account's private key.
    :param subject: The distinguished name to use as both subject and issuer.
    :return: The generated certificate.
    """
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365 * 10))
        .sign(private_key, hashes.SHA256())
    )


def days_to_expiry(certificate: "cryptography.x509.Certificate", now: datetime = None) -> int:
    """Returns the number of whole days until the certificate expires, 0 once it has expired.

    :param certificate: The certificate to check.
    :param now: The point in time to count from. Defaults to the current time.
    """
    now = now or datetime.now(timezone.utc)
    return max((certificate.not_valid_after_utc - now).days, 0)


def names_of(
    csr: "cryptography.x509.CertificateSigningRequest", lower: bool = False
) -> typing.Set[str]:
    """Returns all names contained in the given CSR.

    :param csr: The CRS whose names to extract.
    :param lower: True if the names should be returned in lowercase.
    :return: Set of the contained identifier strings.
    """
    names = [
        v.value
        for v in csr.subject.get_attributes_for_oid(x509.oid.NameOID.COMMON_NAME)
    ]
    try:
        names.extend(
            csr.extensions.get_extension_for_class(
                x509.SubjectAlternativeName
            ).value.get_values_for_type(x509.DNSName)
        )
    except x509.ExtensionNotFound:
        pass

    return set([name.lower() if lower else name for name in names])


def pem_split(
    pem: str,
) -> typing.List[
    typing.Union[
        "cryptography.x509.CertificateSigningRequest",
        "cryptography.x509.Certificate",
        PrivateKey,
    ]
]:
    """Parses a PEM encoded string and returns all contained CSRs, certificates and private keys.

    :param pem: The concatenated PEM encoded objects.
    :return: List of all objects found in the PEM string, in order of appearance.
    """
    _PEM_TO_CLASS = {
        b"CERTIFICATE": x509.load_pem_x509_certificate,
        b"CERTIFICATE REQUEST": x509.load_pem_x509_csr,
        b"EC PRIVATE KEY": lambda x: serialization.load_pem_private_key(
            x, password=None
        ),
        b"RSA PRIVATE KEY": lambda x: serialization.load_pem_private_key(
            x, password=None
        ),
        b"PRIVATE KEY": lambda x: serialization.load_pem_private_key(
            x, password=None
        ),
    }

    _PEM_RE = re.compile(
        b"-----BEGIN (?P<cls>"
        + b"|".join(_PEM_TO_CLASS.keys())
        + b""")-----"""
        + b"""\r?
.+?\r?
-----END \\1-----\r?\n?""",
        re.DOTALL,
    )

    return [
        _PEM_TO_CLASS[match.groupdict()["cls"]](match.group(0))
        for match in _PEM_RE.finditer(pem.encode())
    ]
