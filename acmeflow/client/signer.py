import typing

import josepy
from acme import jws
from cryptography.hazmat.primitives.asymmetric import rsa, ec

from acmeflow.util import PrivateKey

EC_ALGORITHMS = {
    256: josepy.jwa.ES256,
    384: josepy.jwa.ES384,
    521: josepy.jwa.ES512,
}


def key_and_alg(
    private_key: PrivateKey,
) -> typing.Tuple[josepy.jwk.JWK, josepy.jwa.JWASignature]:
    """Wraps the private key as a JWK and chooses the matching signature algorithm.

    RSA keys sign with RS256, EC keys with the ES algorithm of their curve size.

    :param private_key: The RSA or EC private key.
    :raises: :class:`ValueError` If the key type or curve is not supported.
    :return: The JWK and the signature algorithm.
    """
    if isinstance(private_key, rsa.RSAPrivateKey):
        return josepy.jwk.JWKRSA(key=private_key), josepy.jwa.RS256
    elif isinstance(private_key, ec.EllipticCurvePrivateKey):
        try:
            alg = EC_ALGORITHMS[private_key.curve.key_size]
        except KeyError:
            raise ValueError(f"Unsupported EC curve {private_key.curve.name}")
        return josepy.jwk.JWKEC(key=private_key), alg
    raise ValueError(f"Unsupported private key {type(private_key).__name__}")


class JWSSigner:
    """Signs ACME request payloads as flattened JWS.

    `6.2. Request Authentication <https://tools.ietf.org/html/rfc8555#section-6.2>`_
    """

    def __init__(self, key: josepy.jwk.JWK, alg: josepy.jwa.JWASignature):
        self.key = key
        self.alg = alg

    @classmethod
    def from_private_key(cls, private_key: PrivateKey) -> "JWSSigner":
        return cls(*key_and_alg(private_key))

    @property
    def public_jwk(self) -> josepy.jwk.JWK:
        return self.key.public_key()

    def sign(
        self,
        payload: bytes,
        url: str,
        nonce: typing.Optional[str],
        kid: typing.Optional[str] = None,
    ) -> str:
        """Signs the payload.

        :param payload: The serialized payload. The empty byte string signals a POST-as-GET request.
        :param url: The request URL, bound into the protected header.
        :param nonce: The nonce to bind into the protected header, as received from the CA.
        :param kid: The account URL. If *None*, the public key is embedded as *jwk* instead.
        :return: The flattened JWS serialization.
        """
        return jws.JWS.sign(
            payload,
            key=self.key,
            alg=self.alg,
            nonce=josepy.b64.b64decode(nonce) if nonce is not None else None,
            url=url,
            kid=kid,
        ).json_dumps()
