"""
URL Classifier

Decides whether a discovered URL is a list page, an article, an image, or
out of scope. The decision comes entirely from a ``ClassifierRules`` table,
loaded from JSON or built from the target site's defaults.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlsplit

from whynot.core.constants import UrlKind

logger = logging.getLogger(__name__)

# Defaults for the wainao.me / Arc Publishing site layout
DEFAULT_LIST_PATTERNS = [
    r"^/$",
    r"^/(wainao-reads|english|wainao-watches)(/[a-z0-9-]+)?/?$",
    r"^/(topics|tags)/[^/]+/?$",
    r"[?&](page|offset)=\d+",
]
DEFAULT_ARTICLE_PATTERNS = [
    r"/\d{4}/\d{2}/\d{2}/[^/]+",
]
DEFAULT_IMAGE_PATTERNS = [
    r"\.(png|jpe?g|gif|webp|svg|avif)(\?|$)",
]
DEFAULT_IGNORE_PATTERNS = [
    r"^/(pf|api|login|account|search)(/|$)",
    r"\.(css|js|json|xml|rss)(\?|$)",
]


@dataclass
class ClassifierRules:
    """
    Site-specific classification table.

    Patterns are regular expressions searched against ``path`` or
    ``path?query`` of a canonical URL. Ignore patterns win over everything;
    then image, list and article patterns are tried in that order.
    """

    site_hosts: list[str]
    asset_hosts: list[str] = field(default_factory=list)
    list_patterns: list[str] = field(default_factory=list)
    article_patterns: list[str] = field(default_factory=list)
    image_patterns: list[str] = field(default_factory=list)
    ignore_patterns: list[str] = field(default_factory=list)

    def __post_init__(self):
        self.site_hosts = [h.lower() for h in self.site_hosts]
        self.asset_hosts = [h.lower() for h in self.asset_hosts]
        self._compiled = {
            "list": [re.compile(p) for p in self.list_patterns],
            "article": [re.compile(p) for p in self.article_patterns],
            "image": [re.compile(p, re.IGNORECASE) for p in self.image_patterns],
            "ignore": [re.compile(p) for p in self.ignore_patterns],
        }

    def matches(self, group: str, target: str) -> bool:
        return any(p.search(target) for p in self._compiled[group])

    @classmethod
    def defaults(cls, site_url: str, asset_hosts: Optional[list[str]] = None):
        host = (urlsplit(site_url).hostname or "").lower()
        return cls(
            site_hosts=[host],
            asset_hosts=list(asset_hosts or []),
            list_patterns=list(DEFAULT_LIST_PATTERNS),
            article_patterns=list(DEFAULT_ARTICLE_PATTERNS),
            image_patterns=list(DEFAULT_IMAGE_PATTERNS),
            ignore_patterns=list(DEFAULT_IGNORE_PATTERNS),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClassifierRules":
        if not data.get("site_hosts"):
            raise ValueError("Classifier rules need at least one site host")
        return cls(
            site_hosts=list(data["site_hosts"]),
            asset_hosts=list(data.get("asset_hosts", [])),
            list_patterns=list(data.get("list_patterns", [])),
            article_patterns=list(data.get("article_patterns", [])),
            image_patterns=list(data.get("image_patterns", [])),
            ignore_patterns=list(data.get("ignore_patterns", [])),
        )

    @classmethod
    def from_file(cls, path: str | Path) -> "ClassifierRules":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


class Classifier:
    """Applies ``ClassifierRules`` to canonical URLs."""

    def __init__(self, rules: ClassifierRules):
        self.rules = rules

    def is_internal(self, url: str) -> bool:
        """URL lives on the archived site itself."""
        return (urlsplit(url).hostname or "").lower() in self.rules.site_hosts

    def is_asset_host(self, url: str) -> bool:
        return (urlsplit(url).hostname or "").lower() in self.rules.asset_hosts

    def in_scope(self, url: str) -> bool:
        return self.is_internal(url) or self.is_asset_host(url)

    def classify(self, url: str, *, embedded: bool = False) -> Optional[UrlKind]:
        """
        Classify a canonical URL.

        Args:
            url: canonical absolute URL
            embedded: True for ``<img>``-like references, which are images
                whenever they are in scope

        Returns:
            The kind, or None when the URL is off-site, ignored or matches
            no rule
        """
        parts = urlsplit(url)
        target = parts.path + (f"?{parts.query}" if parts.query else "")

        if embedded:
            if not self.in_scope(url) or self.rules.matches("ignore", target):
                return None
            return UrlKind.IMAGE

        if self.rules.matches("ignore", target):
            return None
        if self.is_asset_host(url):
            return UrlKind.IMAGE if self.rules.matches("image", target) else None
        if not self.is_internal(url):
            return None
        if self.rules.matches("image", target):
            return UrlKind.IMAGE
        if self.rules.matches("list", target):
            return UrlKind.LIST
        if self.rules.matches("article", target):
            return UrlKind.ARTICLE
        return None


def load_rules(
    rules_file: Optional[str], site_url: str, asset_hosts: list[str]
) -> ClassifierRules:
    """Rules from ``rules_file`` when given, else the built-in defaults."""
    if rules_file:
        logger.info(f"Loading classifier rules from {rules_file}")
        return ClassifierRules.from_file(rules_file)
    return ClassifierRules.defaults(site_url, asset_hosts)
