"""End-to-end crawl tests against an in-memory site."""

import threading
import time

import pytest
import requests

from sitemirror.scraper.errors import CrawlCancelled, TransportError, UnexpectedStatusError
from sitemirror.scraper.scheduler import Scheduler

INDEX_PAGE = """
<html>
<head>
<link href=' https://example.org/style.css#fragment' rel='stylesheet' type='text/css'>
</head>
<body>
<a href="https://example.org/page2">Example</a>
</body>
</html>
"""

PAGE2 = """
<html>
<body>
<!--link to index with fragment-->
<a href="/#fragment">a</a>
<!--link to page with fragment-->
<a href="/sub/#fragment">a</a>
</body>
</html>
"""


def _scheduler(site, make_config, **overrides):
    return Scheduler(make_config(**overrides), session_factory=site.session_factory)


class TestCrawl:
    def test_links_with_fragments(self, site, make_config, tmp_path):
        site.page("https://example.org/", INDEX_PAGE)
        site.page("https://example.org/page2", PAGE2)
        site.page("https://example.org/sub/", INDEX_PAGE)
        site.asset("https://example.org/style.css", b"", "text/css")

        scheduler = _scheduler(site, make_config, url="https://example.org/#fragment")
        scheduler.start()

        assert scheduler.processed.snapshot() == {
            "https://example.org/",
            "https://example.org/page2",
            "https://example.org/sub/",
            "https://example.org/style.css",
        }
        assert (tmp_path / "example.org" / "index.html").is_file()
        assert (tmp_path / "example.org" / "page2.html").is_file()
        assert (tmp_path / "example.org" / "sub" / "index.html").is_file()
        assert (tmp_path / "example.org" / "style.css").is_file()

    def test_body_background_and_data_urls(self, site, make_config):
        site.page(
            "https://example.org/",
            """<html><body background="bg.gif">
            <img src='data:image/gif;base64,R0lGODlhAQABAAD/ACwAAAAAAQABAAACADs%3D=' />
            </body></html>""",
        )
        site.asset("https://example.org/bg.gif", b"GIF89a", "image/gif")

        scheduler = _scheduler(site, make_config)
        scheduler.start()

        assert scheduler.processed.snapshot() == {
            "https://example.org/",
            "https://example.org/bg.gif",
        }

    def test_each_url_downloaded_once_under_concurrency(self, site, make_config):
        pages = [f"https://example.org/p{index}" for index in range(12)]
        links = "".join(f'<a href="/p{index}#x{index}">{index}</a>' for index in range(12))
        site.page("https://example.org/", links)
        for url in pages:
            site.page(url, links + '<a href="/">home</a><img src="/shared.png">')
        site.asset("https://example.org/shared.png", b"png", "image/png")

        scheduler = _scheduler(site, make_config, concurrency=4)
        stats = scheduler.start()

        for url in ["https://example.org/", "https://example.org/shared.png", *pages]:
            assert site.requested(url) == 1, url
        assert stats["fetch"]["fetches"] == 14
        assert stats["frontier"]["snapshot"]["pending"] == 0
        assert stats["frontier"]["snapshot"]["closed"] is True

    def test_depth_limit(self, site, make_config):
        site.page("https://example.org/", '<a href="/one">1</a>')
        site.page("https://example.org/one", '<a href="/two">2</a>')
        site.page("https://example.org/two", '<a href="/three">3</a>')

        _scheduler(site, make_config, max_depth=1).start()

        assert site.requested("https://example.org/one") == 1
        assert site.requested("https://example.org/two") == 0

    def test_filters(self, site, make_config):
        site.page(
            "https://example.org/",
            '<a href="/docs/a">a</a><a href="/blog/b">b</a><a href="/docs/skip">s</a>',
        )
        site.page("https://example.org/docs/a", "<p>a</p>")

        _scheduler(
            site, make_config, includes=[r"/docs/"], excludes=[r"skip$"]
        ).start()

        assert site.requested("https://example.org/docs/a") == 1
        assert site.requested("https://example.org/blog/b") == 0
        assert site.requested("https://example.org/docs/skip") == 0

    def test_off_host_resources_fetched_once_not_followed(self, site, make_config, tmp_path):
        site.page(
            "https://example.org/",
            '<link rel="stylesheet" href="https://cdn.example.net/theme.css">'
            '<img src="https://cdn.example.net/logo.png">'
            '<a href="https://elsewhere.org/">away</a>',
        )
        site.asset(
            "https://cdn.example.net/theme.css",
            b"body { background: url(bg.png) }",
            "text/css",
        )
        site.asset("https://cdn.example.net/logo.png", b"png", "image/png")

        _scheduler(site, make_config).start()

        assert site.requested("https://cdn.example.net/theme.css") == 1
        assert site.requested("https://cdn.example.net/logo.png") == 1
        assert site.requested("https://cdn.example.net/bg.png") == 0
        assert site.requested("https://elsewhere.org/") == 0
        assert (tmp_path / "example.org" / "_cdn.example.net" / "logo.png").is_file()
        index = (tmp_path / "example.org" / "index.html").read_text(encoding="utf-8")
        assert 'href="_cdn.example.net/theme.css"' in index
        assert 'href="https://elsewhere.org/"' in index

    def test_seed_redirect_rebases_host(self, site, make_config, tmp_path, response_factory):
        site.add(
            "https://example.org/",
            response_factory(
                "https://example.org/",
                200,
                b'<a href="/about">about</a><a href="https://example.org/old">old</a>',
                effective_url="https://www.example.org/",
            ),
        )
        site.page("https://www.example.org/about", "<p>about</p>")

        scheduler = _scheduler(site, make_config)
        scheduler.start()

        assert scheduler.scope.host == "www.example.org"
        assert site.requested("https://www.example.org/about") == 1
        assert site.requested("https://example.org/old") == 0
        assert "https://www.example.org/" in scheduler.processed
        assert (tmp_path / "www.example.org" / "about.html").is_file()


class TestStatusHandling:
    def test_rate_limit_then_success(self, site, make_config, response_factory, tmp_path):
        url = "https://example.org/busy"
        site.page("https://example.org/", '<a href="/busy">busy</a>')
        site.add(
            url,
            response_factory(url, 429, content_type=None),
            response_factory(url, 200, b"<p>done</p>"),
        )

        scheduler = _scheduler(site, make_config)
        throttle = scheduler.downloader.fetcher.throttle
        delays_after_slow_down = []
        original_slow_down = throttle.slow_down

        def recording_slow_down():
            original_slow_down()
            delays_after_slow_down.append(throttle.delay)

        throttle.slow_down = recording_slow_down
        stats = scheduler.start()

        assert site.requested(url) == 2
        assert stats["frontier"]["requeued"] == 1
        assert stats["fetch"]["status_code_counts"]["429"] == 1
        assert len(delays_after_slow_down) == 1
        assert delays_after_slow_down[0] > 0
        assert throttle.delay == 0.0
        stored = sorted(
            path.relative_to(tmp_path / "example.org").as_posix()
            for path in (tmp_path / "example.org").rglob("*")
            if path.is_file()
        )
        assert stored == ["busy.html", "index.html"]

    def test_client_errors_do_not_abort(self, site, make_config):
        site.page("https://example.org/", '<a href="/missing">m</a><a href="/ok">ok</a>')
        site.status("https://example.org/missing", 404)
        site.page("https://example.org/ok", "<p>ok</p>")

        _scheduler(site, make_config).start()

        assert site.requested("https://example.org/ok") == 1

    def test_no_content_is_retried_then_dropped(self, site, make_config):
        site.page("https://example.org/", '<a href="/empty">e</a>')
        site.status("https://example.org/empty", 204)

        stats = _scheduler(site, make_config, tries=2).start()

        assert site.requested("https://example.org/empty") == 3
        assert stats["frontier"]["dropped"] == 1

    def test_unexpected_status_aborts(self, site, make_config):
        site.page("https://example.org/", '<a href="/weird">w</a>')
        site.status("https://example.org/weird", 302)

        with pytest.raises(UnexpectedStatusError):
            _scheduler(site, make_config).start()

    def test_transport_failure_aborts(self, site, make_config):
        site.add("https://example.org/", requests.ReadTimeout("too slow"))

        with pytest.raises(TransportError):
            _scheduler(site, make_config).start()


class TestIncremental:
    def test_not_modified_pages_still_lead_to_their_links(self, site, make_config, response_factory):
        site.page("https://example.org/", '<a href="/page2.html">2</a>')
        site.page("https://example.org/page2.html", '<a href="/page3.html">3</a>')
        site.page("https://example.org/page3.html", "<p>end</p>")
        _scheduler(site, make_config).start()

        for url in ["https://example.org/", "https://example.org/page2.html", "https://example.org/page3.html"]:
            site.status(url, 304)
        site.calls.clear()

        _scheduler(site, make_config).start()

        assert site.requested("https://example.org/page3.html") == 1
        assert all("If-Modified-Since" in headers for _, headers in site.calls)

    def test_second_run_follows_rewritten_links_back_to_origin(self, site, make_config):
        home = "https://example.org/"
        site.page(
            home,
            '<link rel="stylesheet" href="https://cdn.example.net/t.css">'
            '<a href="/page2">2</a><a href="/sub/">sub</a>',
        )
        site.page(home + "page2", '<a href="/page3">3</a>')
        site.page(home + "sub/", "<p>sub</p>")
        site.page(home + "page3", "<p>end</p>")
        site.asset("https://cdn.example.net/t.css", b"p { color: red }", "text/css")
        _scheduler(site, make_config).start()

        origins = [
            home,
            home + "page2",
            home + "sub/",
            home + "page3",
            "https://cdn.example.net/t.css",
        ]
        for url in origins:
            site.status(url, 304)
        site.calls.clear()

        _scheduler(site, make_config).start()

        assert sorted(url for url, _ in site.calls) == sorted(origins)
        assert site.requested(home + "page2.html") == 0
        assert site.requested(home + "_cdn.example.net/t.css") == 0


class TestCancellation:
    def test_cancel_before_start(self, site, make_config):
        site.page("https://example.org/", "<p>x</p>")
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(CrawlCancelled):
            _scheduler(site, make_config).start(cancel=cancel)

    def test_cancel_mid_crawl(self, site, make_config, tmp_path, response_factory):
        cancel = threading.Event()
        links = "".join(f'<a href="/p{index}">{index}</a>' for index in range(50))
        site.page("https://example.org/", links)

        def slow_page(url, headers):
            cancel.set()
            time.sleep(0.3)
            return response_factory(url, 200, b"<p>page</p>")

        for index in range(50):
            site.add(f"https://example.org/p{index}", slow_page)

        with pytest.raises(CrawlCancelled):
            _scheduler(site, make_config, concurrency=2).start(cancel=cancel)

        assert len(site.calls) <= 3
        assert list(tmp_path.rglob("*.tmp")) == []
