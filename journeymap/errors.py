class JourneyMapError(Exception):
    """Base class for errors raised by journeymap."""


class AssistantError(JourneyMapError):
    """The assistant service could not produce a reply."""


class AssistantUnavailableError(AssistantError):
    """No assistant client is configured (missing API key)."""


class BoundaryCacheError(JourneyMapError):
    """A boundary cache key was written twice."""
