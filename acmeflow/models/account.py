import enum
import typing

import josepy


class AccountStatus(str, enum.Enum):
    # subclassing str simplifies json serialization using json.dumps
    VALID = "valid"
    DEACTIVATED = "deactivated"
    REVOKED = "revoked"


class Account(josepy.JSONObjectWithFields):
    """The CA's view of an account.

    `7.1.2. Account Objects <https://tools.ietf.org/html/rfc8555#section-7.1.2>`_

    Fields that see no use inside the client have been left out.
    """

    status: AccountStatus = josepy.Field(
        "status", omitempty=True, decoder=AccountStatus
    )
    contact: typing.Tuple[str, ...] = josepy.Field("contact", omitempty=True)
    terms_of_service_agreed: bool = josepy.Field(
        "termsOfServiceAgreed", omitempty=True
    )
    orders: str = josepy.Field("orders", omitempty=True)
    url: str = josepy.Field("url", omitempty=True)
    """The account's URL, i.e. its key ID."""
