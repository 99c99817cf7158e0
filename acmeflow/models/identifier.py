import enum

import josepy


class IdentifierType(str, enum.Enum):
    """The types that an :class:`Identifier` can have.

    `9.7.7. Identifier Types <https://tools.ietf.org/html/rfc8555#section-9.7.7>`_

    Subclassing :class:`str` simplifies json serialization using :func:`json.dumps`.
    """

    DNS = "dns"
    IP = "ip"


class Identifier(josepy.JSONObjectWithFields):
    """An identifier as found in orders and authorizations."""

    type: IdentifierType = josepy.Field("type", decoder=IdentifierType)
    value: str = josepy.Field("value")

    def __str__(self):
        return f"{self.type.value}:{self.value}"
