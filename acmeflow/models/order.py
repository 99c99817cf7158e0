import enum
import typing

import acme.messages
import josepy

from .base import decode_error, decode_list
from .identifier import Identifier


class OrderStatus(str, enum.Enum):
    # subclassing str simplifies json serialization using json.dumps
    PENDING = "pending"
    READY = "ready"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class Order(josepy.JSONObjectWithFields):
    """An order as returned by the CA.

    `7.1.3. Order Objects <https://tools.ietf.org/html/rfc8555#section-7.1.3>`_

    The *url* field is populated by copying the *Location* header from responses in the
    :class:`~acmeflow.client.AcmeClient`.
    """

    status: OrderStatus = josepy.Field("status", decoder=OrderStatus)
    identifiers: typing.Tuple[Identifier, ...] = josepy.Field(
        "identifiers", omitempty=True, decoder=decode_list(Identifier)
    )
    authorizations: typing.Tuple[str, ...] = josepy.Field(
        "authorizations", omitempty=True
    )
    finalize: str = josepy.Field("finalize")
    certificate: str = josepy.Field("certificate", omitempty=True)
    expires: str = josepy.Field("expires", omitempty=True)
    error: typing.Optional[acme.messages.Error] = josepy.Field(
        "error", omitempty=True, decoder=decode_error
    )
    url: str = josepy.Field("url", omitempty=True)
    """The order's URL at the CA."""
