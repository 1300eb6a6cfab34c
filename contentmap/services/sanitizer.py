import re

from bs4 import BeautifulSoup, Comment, Tag

# Matches `display:none` or `visibility:hidden` in inline style attributes
_HIDDEN_STYLE_RE = re.compile(
    r"(display\s*:\s*none|visibility\s*:\s*hidden)", re.IGNORECASE
)

# Tags whose entire subtree should be removed (non-content / binary / scripting)
_REMOVE_TAGS = {
    "script",
    "style",
    "noscript",
    "iframe",
    "object",
    "embed",
    "applet",
    "link",
    "meta",
    "svg",
    "canvas",
    "template",
}

# Page chrome: links inside these are captured separately as navigation
_CHROME_TAGS = {"header", "nav", "footer", "aside"}

_JUNK_ATTRS = re.compile(r"^(style|on\w+)$", re.IGNORECASE)

# CSS classes / ids that strongly indicate non-content elements
_NOISE_KEYWORDS = {
    "navbar",
    "navigation",
    "menu",
    "sidebar",
    "side-bar",
    "banner",
    "popup",
    "modal",
    "cookie",
    "gdpr",
    "advertisement",
    "tracking",
    "site-footer",
    "site-header",
    "breadcrumb",
    "pagination",
    "social",
    "share",
    "subscribe",
    "newsletter",
    "overlay",
    "widget",
    "search-form",
}


def has_noise_attr(tag: Tag) -> bool:
    """Return True when a tag's id or class suggests it is page chrome, not content."""
    if not tag.attrs:
        return False
    attrs_to_check = []
    if tag.get("id"):
        attrs_to_check.append(str(tag["id"]).lower())
    for cls in tag.get("class", []) or []:
        attrs_to_check.append(cls.lower())
    return any(keyword in attr for attr in attrs_to_check for keyword in _NOISE_KEYWORDS)


def sanitize(html: str) -> BeautifulSoup:
    """Return a BeautifulSoup tree of *html* with scripts, chrome and hidden blocks removed.

    What survives is the candidate main content: ``header``/``nav``/
    ``footer``/``aside`` subtrees, elements whose class or id marks them as
    menus, banners, cookie notices and the like, and anything hidden via
    inline CSS are dropped.
    """
    soup = BeautifulSoup(html, "lxml")

    for tag in soup.find_all(_REMOVE_TAGS | _CHROME_TAGS):
        tag.decompose()

    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()

    for tag in soup.find_all(True):
        # A parent decomposed earlier in this loop leaves detached children behind
        if not isinstance(tag, Tag) or tag.decomposed:
            continue
        if tag.name in ("html", "body", "main"):
            continue
        if has_noise_attr(tag):
            tag.decompose()
            continue
        inline_style = tag.get("style", "")
        if inline_style and _HIDDEN_STYLE_RE.search(inline_style):
            tag.decompose()
            continue
        junk = [attr for attr in tag.attrs if _JUNK_ATTRS.match(attr)]
        for attr in junk:
            del tag[attr]

    return soup
