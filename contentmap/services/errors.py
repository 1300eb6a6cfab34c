"""Exception hierarchy shared by the crawl pipeline and the analysis engine."""


class ContentMapError(Exception):
    """Base class for every error raised by contentmap services."""


class ConfigError(ContentMapError):
    """Invalid crawl/analysis configuration.  Always raised before any crawling."""


class InvalidURLError(ConfigError):
    """A URL that cannot be normalized (missing scheme or host)."""


class FetchError(ContentMapError):
    """Network-level failure while fetching a URL (timeout, DNS, TLS, refused)."""

    def __init__(self, url: str, message: str, retryable: bool = False):
        self.url = url
        self.message = message
        self.retryable = retryable
        super().__init__(f"{url}: {message}")


class StoreError(ContentMapError):
    """The page store is missing, unreadable, or not a contentmap store."""


class AnalysisError(ContentMapError):
    """An analysis phase was given input it cannot work with (e.g. zero pages)."""
