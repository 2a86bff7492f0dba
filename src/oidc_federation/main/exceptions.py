from enum import IntEnum


class ErrorCodes(IntEnum):
    AUTHENTICATION_ERROR = 9001
    BAD_REQUEST = 9002
    NOT_FOUND = 9003
    CONFIGURATION_ERROR = 9004
    PROVIDER_ERROR = 9005


class AuthenticationException(Exception):
    pass


class BadRequestException(Exception):
    pass


class NotFoundException(Exception):
    pass


class ConfigurationException(Exception):
    pass


class OidcProtocolError(Exception):
    """The identity provider or its response could not be used."""


class RedirectRequired(Exception):
    """The browser has to be sent somewhere else before the flow can continue."""

    def __init__(self, url: str):
        super().__init__(url)
        self.url = url


class UsernameAllocationError(ValueError):
    """No username candidate could be derived from the remote identity."""


# Exception -> (status code, public message or None for str(exc), error code)
EXCEPTION_MAP = {
    AuthenticationException: (401, "Not logged in", ErrorCodes.AUTHENTICATION_ERROR),
    BadRequestException: (400, None, ErrorCodes.BAD_REQUEST),
    NotFoundException: (404, None, ErrorCodes.NOT_FOUND),
    ConfigurationException: (500, "Login is not configured", ErrorCodes.CONFIGURATION_ERROR),
    OidcProtocolError: (502, "Identity provider error", ErrorCodes.PROVIDER_ERROR),
}
