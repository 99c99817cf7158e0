import enum
import typing

import josepy

from .base import decode_list
from .challenge import Challenge, ChallengeType
from .identifier import Identifier


class AuthorizationStatus(str, enum.Enum):
    # subclassing str simplifies json serialization using json.dumps
    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    REVOKED = "revoked"


class Authorization(josepy.JSONObjectWithFields):
    """An authorization as returned by the CA.

    `7.1.4. Authorization Objects <https://tools.ietf.org/html/rfc8555#section-7.1.4>`_
    """

    identifier: Identifier = josepy.Field("identifier", decoder=Identifier.from_json)
    status: AuthorizationStatus = josepy.Field("status", decoder=AuthorizationStatus)
    challenges: typing.Tuple[Challenge, ...] = josepy.Field(
        "challenges", omitempty=True, decoder=decode_list(Challenge)
    )
    expires: str = josepy.Field("expires", omitempty=True)
    wildcard: bool = josepy.Field("wildcard", omitempty=True)
    url: str = josepy.Field("url", omitempty=True)
    """The authorization's URL, copied from the request URL by the client."""

    def challenge_of(self, challenge_type: ChallengeType) -> typing.Optional[Challenge]:
        for challenge in self.challenges:
            if challenge.type == challenge_type.value:
                return challenge
        return None
