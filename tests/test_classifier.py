"""
Classifier Tests
"""

import json

import pytest

from whynot.core.constants import UrlKind
from whynot.crawler.classifier import Classifier, ClassifierRules, load_rules

SITE = "https://www.wainao.me"
CDN = "cloudfront-us-east-1.images.arcpublishing.com"


@pytest.fixture
def site_classifier():
    return Classifier(ClassifierRules.defaults(SITE, [CDN]))


class TestDefaultRules:
    @pytest.mark.parametrize(
        "url",
        [
            f"{SITE}/",
            f"{SITE}/wainao-reads",
            f"{SITE}/english/",
            f"{SITE}/wainao-watches/documentary",
            f"{SITE}/tags/hong-kong/",
            f"{SITE}/wainao-reads?page=2",
        ],
    )
    def test_list_pages(self, site_classifier, url):
        assert site_classifier.classify(url) == UrlKind.LIST

    @pytest.mark.parametrize(
        "url",
        [
            f"{SITE}/2023/05/01/some-story/",
            f"{SITE}/wainao-reads/2024/01/31/another-story/",
        ],
    )
    def test_articles(self, site_classifier, url):
        assert site_classifier.classify(url) == UrlKind.ARTICLE

    def test_cdn_image(self, site_classifier):
        assert (
            site_classifier.classify(f"https://{CDN}/abc/DEF.JPG") == UrlKind.IMAGE
        )

    def test_cdn_non_image_is_dropped(self, site_classifier):
        assert site_classifier.classify(f"https://{CDN}/abc/page") is None

    def test_site_image(self, site_classifier):
        assert site_classifier.classify(f"{SITE}/logo.svg") == UrlKind.IMAGE

    @pytest.mark.parametrize(
        "url",
        [
            f"{SITE}/pf/resources/app.js",
            f"{SITE}/api/content",
            f"{SITE}/styles/site.css",
        ],
    )
    def test_ignored(self, site_classifier, url):
        assert site_classifier.classify(url) is None

    def test_off_site(self, site_classifier):
        assert site_classifier.classify("https://twitter.com/wainao") is None
        assert not site_classifier.in_scope("https://twitter.com/wainao")

    def test_unmatched_site_page(self, site_classifier):
        assert site_classifier.classify(f"{SITE}/about/team/members") is None


class TestEmbedded:
    def test_embedded_cdn_reference_is_image(self, site_classifier):
        url = f"https://{CDN}/resizer/abc=/800x0/filters:quality(70)/xyz"
        assert site_classifier.classify(url, embedded=True) == UrlKind.IMAGE

    def test_embedded_off_site_is_dropped(self, site_classifier):
        assert (
            site_classifier.classify("https://ads.example.com/x.png", embedded=True)
            is None
        )

    def test_embedded_ignored_path(self, site_classifier):
        assert (
            site_classifier.classify(f"{SITE}/pf/img/x.png", embedded=True) is None
        )


class TestRulesLoading:
    def test_from_dict_requires_site_hosts(self):
        with pytest.raises(ValueError):
            ClassifierRules.from_dict({"list_patterns": ["^/$"]})

    def test_hosts_are_lowercased(self):
        rules = ClassifierRules.from_dict({"site_hosts": ["Example.COM"]})
        assert rules.site_hosts == ["example.com"]

    def test_from_file(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(
            json.dumps(
                {
                    "site_hosts": ["example.com"],
                    "article_patterns": ["^/posts/"],
                }
            )
        )
        classifier = Classifier(ClassifierRules.from_file(path))
        assert classifier.classify("https://example.com/posts/1") == UrlKind.ARTICLE
        assert classifier.classify("https://example.com/other") is None

    def test_load_rules_prefers_file(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps({"site_hosts": ["example.com"]}))
        rules = load_rules(str(path), SITE, [CDN])
        assert rules.site_hosts == ["example.com"]

    def test_load_rules_defaults(self):
        rules = load_rules(None, SITE, [CDN])
        assert rules.site_hosts == ["www.wainao.me"]
        assert rules.asset_hosts == [CDN]

    def test_invalid_pattern_raises(self):
        import re

        with pytest.raises(re.error):
            ClassifierRules.from_dict({"site_hosts": ["a.com"], "list_patterns": ["("]})
