"""Tests for mirror configuration parsing and persistence."""

import json
from datetime import datetime, timezone

import pytest

from sitemirror.scraper.config import (
    Cookie,
    CrawlConfig,
    load_config,
    load_cookies,
    make_headers,
    save_config,
)
from sitemirror.scraper.constants import DEFAULT_RETRY_DELAY_SECONDS


class TestCrawlConfig:
    def test_defaults(self):
        config = CrawlConfig(url=" https://example.org/ ")
        assert config.url == "https://example.org/"
        assert config.concurrency == 1
        assert config.max_depth == 0
        assert config.image_quality == 0
        assert config.tries == 1

    def test_out_of_range_values_fall_back(self):
        config = CrawlConfig(
            url="https://example.org/", concurrency=0, tries=-3, retry_delay_seconds=0
        )
        assert config.concurrency == 1
        assert config.tries == 1
        assert config.retry_delay_seconds == DEFAULT_RETRY_DELAY_SECONDS

    @pytest.mark.parametrize(
        "overrides",
        [
            {"url": "ftp://example.org/"},
            {"url": ""},
            {"max_depth": -1},
            {"image_quality": 101},
            {"timeout_seconds": 0},
            {"throttle_min_seconds": 2.0, "throttle_max_seconds": 1.0},
            {"throttle_step_seconds": 0},
        ],
    )
    def test_invalid_values(self, overrides):
        values = {"url": "https://example.org/", **overrides}
        with pytest.raises(ValueError):
            CrawlConfig(**values)

    def test_auth_header(self):
        config = CrawlConfig(url="https://example.org/", username="user", password="pass")
        assert config.auth_header == "Basic dXNlcjpwYXNz"
        assert CrawlConfig(url="https://example.org/").auth_header is None

    def test_request_headers_extra_wins(self):
        config = CrawlConfig(
            url="https://example.org/",
            user_agent="agent/1.0",
            headers={"User-Agent": "override", "X-Token": "abc"},
        )
        headers = config.request_headers()
        assert headers["User-Agent"] == "override"
        assert headers["X-Token"] == "abc"

    def test_cookie_dicts_are_converted(self):
        config = CrawlConfig(url="https://example.org/", cookies=[{"name": "s", "value": "1"}])
        assert config.cookies == [Cookie(name="s", value="1")]

    def test_from_dict_requires_url(self):
        with pytest.raises(ValueError, match="url"):
            CrawlConfig.from_dict({"concurrency": 2})

    def test_from_dict_rejects_bad_numbers(self):
        with pytest.raises(ValueError, match="concurrency"):
            CrawlConfig.from_dict({"url": "https://example.org/", "concurrency": "many"})


class TestPersistence:
    @pytest.mark.parametrize("suffix", [".json", ".yaml", ".yml"])
    def test_round_trip(self, tmp_path, suffix):
        config = CrawlConfig(
            url="https://example.org/",
            includes=["/docs/"],
            concurrency=3,
            headers={"X-Token": "abc"},
            cookies=[
                Cookie(
                    name="session",
                    value="v",
                    expires=datetime(2030, 1, 1, tzinfo=timezone.utc),
                )
            ],
        )
        path = tmp_path / "nested" / f"mirror{suffix}"
        save_config(config, path)
        assert load_config(path) == config

    def test_unsupported_suffix(self, tmp_path):
        config = CrawlConfig(url="https://example.org/")
        with pytest.raises(ValueError):
            save_config(config, tmp_path / "mirror.toml")
        with pytest.raises(ValueError):
            load_config(tmp_path / "mirror.toml")

    def test_yaml_must_be_mapping(self, tmp_path):
        path = tmp_path / "mirror.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_config(path)


class TestHelpers:
    def test_make_headers(self, caplog):
        headers = make_headers(["Accept: text/html", "X-Empty:", "broken", ": novalue"])
        assert headers == {"Accept": "text/html", "X-Empty": ""}
        assert "broken" in caplog.text

    def test_load_cookies(self, tmp_path):
        path = tmp_path / "cookies.json"
        path.write_text(
            json.dumps(
                [
                    {"name": "a", "value": "1"},
                    {"name": "b", "expires": "2030-01-01T00:00:00Z"},
                ]
            ),
            encoding="utf-8",
        )
        cookies = load_cookies(path)
        assert cookies[0] == Cookie(name="a", value="1")
        assert cookies[1].expires == datetime(2030, 1, 1, tzinfo=timezone.utc)

    def test_load_cookies_requires_list(self, tmp_path):
        path = tmp_path / "cookies.json"
        path.write_text('{"name": "a"}', encoding="utf-8")
        with pytest.raises(ValueError):
            load_cookies(path)

    def test_cookie_needs_name(self):
        with pytest.raises(ValueError):
            Cookie.from_json({"value": "x"})
