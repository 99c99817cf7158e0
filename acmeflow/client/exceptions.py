import acme.messages


class AcmeClientException(Exception):
    """General ACME client exception."""

    pass


class DirectoryUnavailable(AcmeClientException):
    """Exception that is raised if the CA's directory could not be fetched or parsed."""

    def __init__(self, url, *args):
        super().__init__(*args)
        self.url: str = url
        """The directory URL that was requested."""

    def __str__(self):
        reason = super().__str__()
        return f"Directory {self.url} is unavailable" + (f": {reason}" if reason else "")


class TermsNotAgreed(AcmeClientException):
    """Exception that is raised if an account is to be created without agreeing to the terms of service."""

    def __str__(self):
        return "must agree to terms of service"


class AccountAlreadyExists(AcmeClientException):
    """Exception that is raised if the CA already knows an account for the given key."""

    def __init__(self, alias, *args):
        super().__init__(*args)
        self.alias: str = alias

    def __str__(self):
        return (
            f"An account for key {self.alias} already exists, "
            f"use update-account or change-account-key instead"
        )


class UnknownKeyAlias(AcmeClientException, KeyError):
    """Exception that is raised if a credential store does not contain the given alias."""

    def __init__(self, alias, *args):
        super().__init__(*args)
        self.alias: str = alias

    def __str__(self):
        return f"Unknown key alias {self.alias}"


class UnexpectedResponse(AcmeClientException):
    """Exception that is raised if the CA answers with an error status but without a problem document."""

    def __init__(self, url, status, *args):
        super().__init__(*args)
        self.url: str = url
        self.status: int = status

    def __str__(self):
        return f"Unexpected response from {self.url}: HTTP {self.status}"


class TransportError(AcmeClientException):
    """Exception that is raised if the CA could not be reached, even after retrying."""

    def __init__(self, url, *args):
        super().__init__(*args)
        self.url: str = url

    def __str__(self):
        return f"Request to {self.url} failed: {super().__str__()}"


class AcmeProblem(AcmeClientException):
    """Exception that wraps a problem document returned by the CA.

    The problem's *type* and *detail* are kept verbatim.
    """

    def __init__(self, error: acme.messages.Error, status: int = None, *args):
        super().__init__(*args)
        self.error: acme.messages.Error = error
        """The parsed problem document."""
        self.status: int = status
        """The HTTP status code of the response that carried the problem document."""

    @property
    def typ(self) -> str:
        return self.error.typ

    @property
    def code(self) -> str:
        """The error type without the ACME namespace, e.g. *badNonce*."""
        return self.error.code

    @property
    def detail(self) -> str:
        return self.error.detail

    def __str__(self):
        return str(self.error)


class BadNonce(AcmeProblem):
    """The CA rejected the request's nonce."""

    pass


class AccountProblem(AcmeProblem):
    """The CA rejected an account request."""

    pass


class OrderProblem(AcmeProblem):
    """The CA rejected an order request or the order became invalid."""

    pass


class AuthorizationProblem(AcmeProblem):
    """The CA rejected an authorization or challenge request."""

    pass


class RevocationProblem(AcmeProblem):
    """The CA rejected a revocation request."""

    pass


class CouldNotCompleteChallenge(AcmeClientException):
    """Exception that is raised if completion of a specific challenge failed."""

    def __init__(self, challenge, *args):
        super().__init__(*args)
        self.challenge = challenge
        """The challenge whose completion was unsuccessful."""

    def __str__(self):
        msg = f"Could not complete challenge: {self.challenge.url}"
        if detail := super().__str__():
            msg += f": {detail}"
        if self.challenge.error:
            msg += f" ({self.challenge.error})"
        return msg


class PollingException(AcmeClientException):
    """Exception that is raised if polling a resource did not yield the expected status in time."""

    def __init__(self, obj, *args):
        super().__init__(*args)
        self.obj = obj
        """The last polled object."""


class AuthorizationTimeout(PollingException):
    """The authorization did not become valid within the polling budget."""

    pass


class OrderTimeout(PollingException):
    """The order did not reach the awaited status within the polling budget."""

    pass
