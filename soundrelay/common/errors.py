"""Error taxonomy shared by the proxy and the player engine."""

from typing import Optional


class SoundRelayError(Exception):
    """Base class for every error raised on purpose by soundrelay."""


class ResolutionFailure(SoundRelayError):
    """No provider in the waterfall could produce a playable stream."""

    def __init__(self, message: str = "Unable to play this track", *, track_id: Optional[str] = None):
        super().__init__(message)
        self.track_id = track_id


class RateLimited(ResolutionFailure):
    """The primary resolver was throttled and the fallback also failed."""

    def __init__(self, message: str = "rate limit exceeded", *, track_id: Optional[str] = None,
                 retry_after: Optional[float] = None):
        super().__init__(message, track_id=track_id)
        self.retry_after = retry_after


class NetworkFailure(SoundRelayError):
    """An HTTP call to the proxy (or an upstream API) could not complete."""

    def __init__(self, message: str, *, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class ProviderError(SoundRelayError):
    """An external provider failed to answer a request."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class MalformedProviderResponse(ProviderError):
    """A provider answered with a payload we cannot interpret."""


class PrimaryResolverError(ProviderError):
    """The audio extractor produced no usable stream."""

    def __init__(self, message: str):
        super().__init__("primary", message)
