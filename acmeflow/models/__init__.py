from .account import Account, AccountStatus
from .authorization import Authorization, AuthorizationStatus
from .challenge import Challenge, ChallengeStatus, ChallengeType
from .identifier import Identifier, IdentifierType
from .order import Order, OrderStatus

__all__ = [
    "Account",
    "AccountStatus",
    "Authorization",
    "AuthorizationStatus",
    "Challenge",
    "ChallengeStatus",
    "ChallengeType",
    "Identifier",
    "IdentifierType",
    "Order",
    "OrderStatus",
]
