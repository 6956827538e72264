"""
Error taxonomy for the EmarkNews feed backend.

Upstream and store errors are caught at the component that produces them and
turned into safe defaults. Only ValidationError subclasses are allowed to
reach the HTTP layer, where they become 400 responses.
"""


class NewsFeedError(Exception):
    """Base class for all feed backend errors."""

    error_type = 'error'


class UpstreamTimeout(NewsFeedError):
    """An upstream did not answer within its timeout."""

    error_type = 'timeout'


class UpstreamError(NewsFeedError):
    """Non-2xx answer or connection failure talking to an upstream."""

    error_type = 'upstream_error'


class ParseError(NewsFeedError):
    """Upstream answered with a body we could not parse."""

    error_type = 'parse_error'


class ProviderAuthError(NewsFeedError):
    """Missing or rejected AI provider credential."""

    error_type = 'provider_auth'


class StoreUnavailable(NewsFeedError):
    """The cache backend is not reachable."""

    error_type = 'store_unavailable'


class ValidationError(NewsFeedError):
    """Malformed client input."""

    error_type = 'validation'


class InvalidSection(ValidationError):

    def __init__(self, section):
        super().__init__("Invalid section")
        self.section = section
