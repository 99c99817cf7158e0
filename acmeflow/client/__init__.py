from .account import AcmeAccount
from .challenge_solver import (
    ChallengeSolver,
    DummySolver,
    MemorySolver,
    WebrootSolver,
)
from .client import AcmeClient
from .credential_store import (
    CredentialStore,
    FileCredentialStore,
    MemoryCredentialStore,
)
from .directory import AcmeMetadata, DirectoryResolver
from .exceptions import (
    AccountAlreadyExists,
    AccountProblem,
    AcmeClientException,
    AcmeProblem,
    AuthorizationProblem,
    AuthorizationTimeout,
    BadNonce,
    CouldNotCompleteChallenge,
    DirectoryUnavailable,
    OrderProblem,
    OrderTimeout,
    PollingException,
    RevocationProblem,
    TermsNotAgreed,
    TransportError,
    UnexpectedResponse,
    UnknownKeyAlias,
)
from .nonce import NonceCache
from .signer import JWSSigner

__all__ = [
    "AcmeAccount",
    "AcmeClient",
    "AcmeMetadata",
    "ChallengeSolver",
    "CredentialStore",
    "DirectoryResolver",
    "DummySolver",
    "FileCredentialStore",
    "JWSSigner",
    "MemoryCredentialStore",
    "MemorySolver",
    "NonceCache",
    "WebrootSolver",
    "AccountAlreadyExists",
    "AccountProblem",
    "AcmeClientException",
    "AcmeProblem",
    "AuthorizationProblem",
    "AuthorizationTimeout",
    "BadNonce",
    "CouldNotCompleteChallenge",
    "DirectoryUnavailable",
    "OrderProblem",
    "OrderTimeout",
    "PollingException",
    "RevocationProblem",
    "TermsNotAgreed",
    "TransportError",
    "UnexpectedResponse",
    "UnknownKeyAlias",
]
