"""Tests for URL to mirror path mapping."""

import pytest

from sitemirror.scraper.mapping import PathMapper, page_file_path, relative_link


class TestPageFilePath:
    @pytest.mark.parametrize(
        "path,expected",
        [
            ("", "index.html"),
            ("/", "index.html"),
            ("/test", "/test.html"),
            ("/test/", "/test/index.html"),
            ("/test.aspx", "/test.aspx"),
            ("/a/b.html", "/a/b.html"),
        ],
    )
    def test_page_rules(self, path, expected):
        assert page_file_path(path) == expected


class TestPathMapper:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://github.com/", "google.com/_github.com/index.html"),
            ("https://github.com/#fragment", "google.com/_github.com/index.html"),
            ("https://github.com/test", "google.com/_github.com/test.html"),
            ("https://github.com/test/", "google.com/_github.com/test/index.html"),
            ("https://github.com/test.aspx", "google.com/_github.com/test.aspx"),
            ("https://google.com/settings", "google.com/settings.html"),
        ],
    )
    def test_pages(self, url, expected):
        assert PathMapper("google.com").map(url, True) == expected

    def test_fragment_and_query_do_not_change_path(self):
        mapper = PathMapper("example.org")
        assert mapper.map("https://example.org/a?x=1#top", True) == mapper.map(
            "https://example.org/a", True
        )

    def test_assets_keep_literal_path(self):
        mapper = PathMapper("example.org")
        assert mapper.map("https://example.org/img/logo", False) == "example.org/img/logo"
        assert mapper.map("https://example.org/style.css", False) == "example.org/style.css"

    def test_asset_naming_a_directory_gets_index(self):
        mapper = PathMapper("example.org")
        assert mapper.map("https://example.org/assets/", False) == "example.org/assets/index.html"

    def test_foreign_host_port_is_kept(self):
        mapper = PathMapper("example.org")
        assert mapper.map("http://cdn.example.net:8080/x.js", False) == (
            "example.org/_cdn.example.net:8080/x.js"
        )

    def test_percent_escapes_are_decoded(self):
        mapper = PathMapper("example.org")
        assert mapper.map("https://example.org/a%20b.png", False) == "example.org/a b.png"

    def test_dot_segments_cannot_escape_host_directory(self):
        mapper = PathMapper("example.org")
        assert mapper.map("https://example.org/%2e%2e/%2e%2e/etc/passwd", False) == (
            "example.org/etc/passwd"
        )

    def test_mapping_is_deterministic(self):
        mapper = PathMapper("example.org")
        urls = ["https://example.org/a", "https://other.org/b.css", "https://example.org/"]
        first = [mapper.map(url, True) for url in urls]
        second = [mapper.map(url, True) for url in reversed(urls)]
        assert first == list(reversed(second))

    def test_is_page_path(self):
        mapper = PathMapper("example.org")
        assert mapper.is_page_path("https://example.org/")
        assert mapper.is_page_path("https://example.org/about")
        assert mapper.is_page_path("https://example.org/a/index.HTM")
        assert not mapper.is_page_path("https://example.org/style.css")

    def test_requires_start_host(self):
        with pytest.raises(ValueError):
            PathMapper("")


class TestRelativeLink:
    def test_sibling(self):
        assert relative_link("example.org/index.html", "example.org/page2.html") == "page2.html"

    def test_parent_and_foreign(self):
        assert (
            relative_link("example.org/sub/index.html", "example.org/_cdn.net/app.js")
            == "../_cdn.net/app.js"
        )


class TestUnmap:
    @pytest.mark.parametrize(
        "path,expected",
        [
            ("example.org/index.html", "https://example.org/"),
            ("example.org/sub/index.html", "https://example.org/sub/"),
            ("example.org/page2.html", "https://example.org/page2.html"),
            ("example.org/_cdn.example.net/t.css", "https://cdn.example.net/t.css"),
            ("example.org/_cdn.example.net:8080/x.js", "https://cdn.example.net:8080/x.js"),
            ("example.org/_next/app.js", "https://example.org/_next/app.js"),
            ("example.org/a b.png", "https://example.org/a%20b.png"),
        ],
    )
    def test_paths(self, path, expected):
        assert PathMapper("example.org").unmap(path) == expected

    def test_scheme_is_applied(self):
        assert PathMapper("example.org").unmap("example.org/a.css", scheme="http") == (
            "http://example.org/a.css"
        )

    def test_path_outside_start_host(self):
        assert PathMapper("example.org").unmap("other.org/index.html") is None

    def test_inverts_asset_mapping(self):
        mapper = PathMapper("example.org")
        url = "https://static.example.net/js/app.js"
        assert mapper.unmap(mapper.map(url, False)) == url
