import acme.jws
import josepy
import pytest

import acmeflow.util
from acmeflow.client import JWSSigner
from acmeflow.client.signer import key_and_alg

URL = "https://acme.example.com/acme/new-order"
NONCE = josepy.b64.b64encode(b"nonce-bytes").decode()


@pytest.mark.parametrize(
    "key_type, key_size, alg",
    [
        ("rsa", 2048, josepy.jwa.RS256),
        ("ec", 256, josepy.jwa.ES256),
        ("ec", 384, josepy.jwa.ES384),
        ("ec", 521, josepy.jwa.ES512),
    ],
)
def test_key_and_alg(key_type, key_size, alg):
    _, chosen = key_and_alg(acmeflow.util.generate_private_key(key_type, key_size))
    assert chosen == alg


def test_unsupported_ec_curve():
    with pytest.raises(ValueError):
        key_and_alg(acmeflow.util.generate_private_key("ec", 224))


def test_sign_with_kid():
    signer = JWSSigner.from_private_key(acmeflow.util.generate_private_key("ec"))
    kid = "https://acme.example.com/acme/acct/1"

    jws = acme.jws.JWS.json_loads(signer.sign(b'{"a": 1}', URL, NONCE, kid=kid))
    header = jws.signature.combined

    assert header.kid == kid
    assert header.jwk is None
    assert header.url == URL
    assert header.nonce == b"nonce-bytes"
    assert jws.payload == b'{"a": 1}'
    assert jws.verify(signer.public_jwk)


def test_sign_with_jwk():
    signer = JWSSigner.from_private_key(acmeflow.util.generate_private_key("rsa"))

    jws = acme.jws.JWS.json_loads(signer.sign(b"{}", URL, NONCE))
    header = jws.signature.combined

    assert header.kid is None
    assert header.jwk == signer.public_jwk
    assert jws.verify()


def test_post_as_get_has_empty_payload():
    signer = JWSSigner.from_private_key(acmeflow.util.generate_private_key("ec"))

    jws = acme.jws.JWS.json_loads(signer.sign(b"", URL, NONCE, kid="kid"))
    assert jws.payload == b""
    assert jws.verify(signer.public_jwk)
