"""Error taxonomy shared by the crawler, the session pool and the CLI."""

from __future__ import annotations

from typing import Iterable


class HarvestError(RuntimeError):
    """Base class for every error raised by the harvester."""


class ConfigurationError(HarvestError):
    """Raised before crawling starts when the run input is unusable."""

    @classmethod
    def proxy_required(cls) -> "ConfigurationError":
        return cls("A proxy is required for this run. Set PROXY_URLS or proxy.proxyUrls in the input.")

    @classmethod
    def type_required(cls) -> "ConfigurationError":
        return cls("Results type is required (resultsType).")

    @classmethod
    def unsupported_type(cls, value: str, supported: Iterable[str] = ()) -> "ConfigurationError":
        allowed = ", ".join(supported)
        suffix = f" Supported types: {allowed}." if allowed else ""
        return cls(f"Results type '{value}' is not supported.{suffix}")

    @classmethod
    def credentials_required(cls) -> "ConfigurationError":
        return cls("Cookie capture needs loginUsername and loginPassword.")


class NavigationError(HarvestError):
    """Transient failure while loading a page; the work item is retried."""


class LoginRedirectError(NavigationError):
    def __init__(self, url: str = "") -> None:
        super().__init__(f"Redirected to the login page while opening {url or 'the page'}.")


class InitialDataTimeout(NavigationError):
    """The page never exposed its embedded initial data payload."""


class ItemSpecTimeout(NavigationError):
    """A captured API response arrived but the page never attached its ItemSpec."""


class SessionValidationError(NavigationError):
    """The authenticated-viewer marker did not show up for the session."""


class PageUnavailableError(HarvestError):
    """Terminal per-item condition (404, private page); skipped without retry."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f'Page "{url}" {reason}.')
        self.url = url
        self.reason = reason


class CredentialExhaustedError(HarvestError):
    """No usable credentialed session remains; the whole run has to stop."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message
            or "Failed to log in using cookies, they are probably no longer usable and you need to set new ones."
        )
