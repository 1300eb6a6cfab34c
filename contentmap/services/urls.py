"""URL canonicalisation and frontier classification.

Every URL that enters the frontier or the page store goes through
:func:`normalize` first, so two spellings of the same address always map to
the same page id.
"""

import hashlib
import re
from functools import lru_cache
from typing import Iterable, List, NamedTuple, Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

from contentmap.models.config import CrawlConfig
from contentmap.services.errors import InvalidURLError

ALLOWED_SCHEMES = {"http", "https"}
_DEFAULT_PORTS = {"http": 80, "https": 443}

ID_LENGTH = 16

# Static assets that never yield an HTML page
_NON_HTML_SUFFIXES = (
    ".pdf",
    ".jpg",
    ".jpeg",
    ".png",
    ".gif",
    ".svg",
    ".webp",
    ".ico",
    ".css",
    ".js",
    ".xml",
    ".zip",
    ".mp4",
    ".mp3",
)


class Classification(NamedTuple):
    in_frontier: bool
    reason: str


def normalize(url: str, base: Optional[str] = None) -> str:
    """Return the canonical spelling of *url*, resolved against *base* when given.

    Lower-cases scheme and host, drops default ports, the fragment and any
    credentials, strips a trailing slash (except on the root path) and sorts
    query parameters by key.  ``normalize(normalize(u)) == normalize(u)``.

    Raises:
        InvalidURLError: if the result has no scheme or no host.
    """
    raw = url.strip()
    if base:
        raw = urljoin(base, raw)

    parsed = urlsplit(raw)
    scheme = parsed.scheme.lower()
    host = parsed.hostname or ""
    if not scheme or not host:
        raise InvalidURLError(f"Not an absolute URL: {url!r}")

    try:
        port = parsed.port
    except ValueError as exc:
        raise InvalidURLError(f"Invalid port in URL: {url!r}") from exc

    if ":" in host:
        host = f"[{host}]"
    if port is not None and _DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{host}:{port}"
    else:
        netloc = host

    path = parsed.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"

    # sorted() is stable, so repeated keys keep their relative order
    pairs = sorted(parse_qsl(parsed.query, keep_blank_values=True), key=lambda kv: kv[0])
    query = urlencode(pairs)

    return urlunsplit((scheme, netloc, path, query, ""))


def to_id(url: str) -> str:
    """Return a stable, fixed-length page id for *url* (SHA-256 of the normalized URL)."""
    digest = hashlib.sha256(normalize(url).encode("utf-8")).hexdigest()
    return digest[:ID_LENGTH]


def origin(url: str) -> str:
    parsed = urlsplit(normalize(url))
    return f"{parsed.scheme}://{parsed.netloc}"


def path_of(url: str) -> str:
    return urlsplit(url).path or "/"


def path_segments(url: str) -> List[str]:
    return [s for s in path_of(url).split("/") if s]


def root_domain(hostname: str) -> str:
    """Return the registrable part of *hostname* (``blog.example.com`` → ``example.com``).

    Only the last two labels are kept; multi-part public suffixes such as
    ``.co.uk`` are not special-cased.
    """
    hostname = hostname.lower().rstrip(".")
    if re.fullmatch(r"[\d.]+", hostname) or ":" in hostname:
        return hostname
    parts = hostname.split(".")
    if len(parts) < 2:
        return hostname
    return ".".join(parts[-2:])


def subdomain_of(url: str, base_url: str) -> Optional[str]:
    """Return the subdomain of *url* relative to *base_url*'s root domain, or None."""
    host = (urlsplit(normalize(url)).hostname or "").lower()
    base_root = root_domain(urlsplit(normalize(base_url)).hostname or "")
    if host == base_root or not host.endswith("." + base_root):
        return None
    return host[: -len(base_root) - 1]


def is_allowed_subdomain(url: str, base_url: str, allowed: Iterable[str]) -> bool:
    """Return True when *url*'s subdomain is permitted by the *allowed* list.

    An empty list permits every subdomain; the bare root domain is always
    permitted.  Entries may be given as ``blog`` or ``blog.example.com``.
    """
    allowed = [a.lower().rstrip(".") for a in allowed if a]
    if not allowed:
        return True

    sub = subdomain_of(url, base_url)
    if sub is None:
        return True

    for entry in allowed:
        if sub == entry or sub.endswith("." + entry):
            return True
        if "." in entry:
            entry_sub = ".".join(entry.split(".")[:-2])
            if entry_sub and sub == entry_sub:
                return True
    return False


def same_site(url: str, base_url: str, follow_subdomains: bool) -> bool:
    """Origin equality, or root-domain equality when *follow_subdomains* is set."""
    if not follow_subdomains:
        return origin(url) == origin(base_url)
    host = urlsplit(normalize(url)).hostname or ""
    base_host = urlsplit(normalize(base_url)).hostname or ""
    return root_domain(host) == root_domain(base_host)


@lru_cache(maxsize=256)
def _compile_glob(pattern: str) -> "re.Pattern[str]":
    out: List[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**", i):
            out.append(".*")
            i += 2
            continue
        ch = pattern[i]
        if ch == "*":
            out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        else:
            out.append(re.escape(ch))
        i += 1

    body = "".join(out)
    if not pattern.startswith(("/", "**")):
        # Relative patterns may start at any segment boundary
        body = "(?:.*/)?" + body
    return re.compile("^" + body + "(?:/.*)?$", re.IGNORECASE)


def glob_match(path: str, pattern: str) -> bool:
    """Match a URL path against a glob.

    ``*`` matches within one path segment, ``**`` across segments and ``?``
    one non-separator character.  Matching is case-insensitive, anchored at
    the start of the path, and tolerates a trailing sub-path, so ``/admin/*``
    also matches ``/admin/users/42``.
    """
    return bool(_compile_glob(pattern).match(path or "/"))


def matches_any_glob(url: str, patterns: Iterable[str]) -> bool:
    path = path_of(url)
    return any(glob_match(path, p) for p in patterns if p)


def classify(url: str, base_url: str, config: CrawlConfig) -> Classification:
    """Decide whether *url* belongs in the crawl frontier for *base_url*."""
    try:
        normalized = normalize(url)
    except InvalidURLError:
        return Classification(False, "invalid")

    if urlsplit(normalized).scheme not in ALLOWED_SCHEMES:
        return Classification(False, "scheme")

    if not same_site(normalized, base_url, config.follow_subdomains):
        return Classification(False, "off-origin")

    if config.follow_subdomains and not is_allowed_subdomain(
        normalized, base_url, config.allowed_subdomains
    ):
        return Classification(False, "subdomain-not-allowed")

    if path_of(normalized).lower().endswith(_NON_HTML_SUFFIXES):
        return Classification(False, "non-html")

    if matches_any_glob(normalized, config.exclude_paths):
        return Classification(False, "excluded-path")

    if any(p in normalized for p in config.exclude if p):
        return Classification(False, "excluded-pattern")

    if config.include and not any(p in normalized for p in config.include if p):
        return Classification(False, "not-included")

    return Classification(True, "ok")
