import enum
import typing

import acme.messages
import josepy

from .base import decode_error


class ChallengeStatus(str, enum.Enum):
    # subclassing str simplifies json serialization using json.dumps
    PENDING = "pending"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class ChallengeType(str, enum.Enum):
    """The types that a :class:`Challenge` can have.

    Subclassing :class:`str` simplifies json serialization using :func:`json.dumps`.
    """

    HTTP_01 = "http-01"
    """The ACME *http-01* challenge type.
    See `8.3. HTTP Challenge <https://tools.ietf.org/html/rfc8555#section-8.3>`_"""
    DNS_01 = "dns-01"
    """The ACME *dns-01* challenge type.
    See `8.4. DNS Challenge <https://tools.ietf.org/html/rfc8555#section-8.4>`_"""
    TLS_ALPN_01 = "tls-alpn-01"
    """The ACME *tls-alpn-01* challenge type.
    See `RFC 8737 <https://tools.ietf.org/html/rfc8737>`_"""


class Challenge(josepy.JSONObjectWithFields):
    """A challenge as returned by the CA inside an authorization or on its own URL.

    The *type* is kept as a plain string since CAs may offer types this client does not know.
    """

    type: str = josepy.Field("type")
    url: str = josepy.Field("url")
    status: ChallengeStatus = josepy.Field("status", decoder=ChallengeStatus)
    token: str = josepy.Field("token", omitempty=True)
    validated: str = josepy.Field("validated", omitempty=True)
    error: typing.Optional[acme.messages.Error] = josepy.Field(
        "error", omitempty=True, decoder=decode_error
    )

    @property
    def challenge_type(self) -> typing.Optional[ChallengeType]:
        """The challenge's type, or *None* if the type is not a known :class:`ChallengeType`."""
        try:
            return ChallengeType(self.type)
        except ValueError:
            return None

    def key_authorization(self, key: josepy.jwk.JWK) -> str:
        """Computes the key authorization for this challenge.

        `8.1. Key Authorizations <https://tools.ietf.org/html/rfc8555#section-8.1>`_

        :param key: The account key.
        :return: The token and the base64url encoded JWK thumbprint, joined by a dot.
        """
        thumbprint = josepy.b64.b64encode(key.public_key().thumbprint()).decode()
        return f"{self.token}.{thumbprint}"
