import enum
import typing

import acme.jws
import josepy
from cryptography import x509
from cryptography.hazmat.primitives import serialization


def decode_cert(b64der):
    return x509.load_der_x509_certificate(josepy.json_util.decode_b64jose(b64der))


def encode_cert(cert):
    return josepy.encode_b64jose(cert.public_bytes(serialization.Encoding.DER))


class RevocationReason(enum.Enum):
    """Certificate revocation reasons.

    Defined in `5.3.1. Reason Code <https://tools.ietf.org/html/rfc5280#section-5.3.1>`_ of RFC 5280.
    """

    unspecified = 0
    keyCompromise = 1
    cACompromise = 2
    affiliationChanged = 3
    superseded = 4
    cessationOfOperation = 5
    certificateHold = 6
    # value 7 is unused
    removeFromCRL = 8
    privilegeWithdrawn = 9
    aACompromise = 10


class Revocation(josepy.JSONObjectWithFields):
    """Message type for certificate revocation requests."""

    certificate: "cryptography.x509.Certificate" = josepy.Field(
        "certificate", decoder=decode_cert, encoder=encode_cert
    )
    """The certificate to be revoked."""
    reason: RevocationReason = josepy.Field(
        "reason",
        decoder=RevocationReason,
        encoder=lambda reason: reason.value,
        omitempty=True,
    )
    """The reason for the revocation."""


def encode_csr(csr):
    # Encode CSR as JOSE Base-64 DER.
    return josepy.encode_b64jose(csr.public_bytes(encoding=serialization.Encoding.DER))


def decode_csr(b64der):
    return x509.load_der_x509_csr(josepy.json_util.decode_b64jose(b64der))


class CertificateRequest(josepy.JSONObjectWithFields):
    """Message type for order finalization requests."""

    csr: "cryptography.x509.CertificateSigningRequest" = josepy.Field(
        "csr", decoder=decode_csr, encoder=encode_csr
    )
    """The certificate signing request."""


class NewOrder(josepy.JSONObjectWithFields):
    """Message type for new order requests."""

    identifiers: typing.List[typing.Dict[str, str]] = josepy.Field(
        "identifiers", omitempty=True
    )
    """The requested identifiers."""

    @classmethod
    def from_data(
        cls,
        identifiers: typing.Union[typing.List[typing.Dict[str, str]], typing.List[str]],
    ) -> "NewOrder":
        """Class factory that takes care of parsing the list of *identifiers*.

        :param identifiers: Either a :class:`list` of :class:`dict` where each dict consists of the keys *type* \
            and *value*, or a :class:`list` of :class:`str` that represent the DNS names.
        :raises: :class:`ValueError` If the list is empty or of neither form.
        :return: The new order object.
        """
        if not identifiers:
            raise ValueError("An order needs at least one identifier")

        if all(type(identifier) is dict for identifier in identifiers):
            parsed = [dict(identifier) for identifier in identifiers]
        elif all(type(identifier) is str for identifier in identifiers):
            parsed = [dict(type="dns", value=identifier) for identifier in identifiers]
        else:
            raise ValueError(
                "Could not decode identifiers list. Must be either List(str) or List(dict) where "
                "the dict has two keys 'type' and 'value'"
            )

        return cls(identifiers=parsed)


class AccountUpdate(josepy.JSONObjectWithFields):
    """Message type for account update and deactivation requests.

    `7.3.2. Account Update <https://tools.ietf.org/html/rfc8555#section-7.3.2>`_
    """

    contact: typing.Tuple[str, ...] = josepy.Field("contact", omitempty=True)
    terms_of_service_agreed: bool = josepy.Field(
        "termsOfServiceAgreed", omitempty=True
    )
    status: str = josepy.Field("status", omitempty=True)


class KeyChange(josepy.JSONObjectWithFields):
    """Payload of the inner JWS of an account key rollover.

    `7.3.5. Account Key Rollover <https://tools.ietf.org/html/rfc8555#section-7.3.5>`_
    """

    account: str = josepy.Field("account")
    oldKey: josepy.jwk.JWK = josepy.Field("oldKey", decoder=josepy.jwk.JWK.from_json)


class SignedKeyChange(josepy.JSONObjectWithFields):
    """The inner JWS of an account key rollover, signed by the new key."""

    protected = josepy.Field("protected")
    payload = josepy.Field("payload")
    signature = josepy.Field("signature")

    @classmethod
    def from_data(cls, kc: KeyChange, key, alg, **kwargs) -> "SignedKeyChange":
        # The inner JWS carries the new key's jwk and no nonce.
        data = acme.jws.JWS.sign(
            kc.json_dumps().encode(), key=key, alg=alg, nonce=None, **kwargs
        )

        signature = josepy.b64.b64encode(data.signature.signature).decode()
        payload = josepy.b64.b64encode(data.payload).decode()
        protected = josepy.b64.b64encode(data.signature.protected.encode()).decode()
        return cls(protected=protected, payload=payload, signature=signature)
