"""Exception taxonomy for harvest sessions.

Fatal errors (launch, initial page load) end the session before it reaches a
termination reason. AutomationError on its own is transient: the engine
retries it during extraction and swallows it in best-effort steps.
"""


class HarvestError(Exception):
    """Base class for every harvester error."""


class InvalidRequestError(HarvestError):
    """The harvest request is missing a field or names an unsupported source."""


class AutomationError(HarvestError):
    """A single automation call failed (timeout, detached element, navigation race)."""

    def __init__(self, message, *, action=None):
        super().__init__(message)
        self.action = action


class PageLoadError(AutomationError):
    """The target page could not be loaded."""


class AutomationLaunchError(HarvestError):
    """The browser instance could not be started."""
