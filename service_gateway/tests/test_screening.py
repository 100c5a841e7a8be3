"""
Unit tests for request screening and client address extraction.
"""

import pytest

from service_gateway.app.security import RequestScreener, get_client_ip, is_private_ip


class TestRequestScreener:
    """Test cases for RequestScreener."""

    @pytest.fixture
    def screener(self):
        return RequestScreener()

    def test_clean_request_passes(self, screener):
        verdict = screener.screen(
            "POST",
            user_agent="Mozilla/5.0",
            content_type="application/json",
            body='{"message": "hello"}',
        )

        assert verdict is None

    @pytest.mark.parametrize("agent", ["sqlmap/1.7", "Mozilla/5.0 (Nikto)", "MASSCAN/1.3"])
    def test_scanner_user_agents_are_refused(self, screener, agent):
        verdict = screener.screen("GET", user_agent=agent)

        assert verdict.trigger == "suspicious_agent"
        assert verdict.status_code == 403

    @pytest.mark.parametrize(
        "body",
        ['{"q": "1 UNION SELECT password"}', '{"name": "<script>x</script>"}', '{"a": "DROP TABLE users"}'],
    )
    def test_attack_patterns_in_body(self, screener, body):
        verdict = screener.screen("POST", content_type="application/json", body=body)

        assert verdict.trigger == "attack_pattern"
        assert verdict.status_code == 400

    def test_attack_pattern_in_query(self, screener):
        verdict = screener.screen("GET", query="redirect=javascript:alert(1)")

        assert verdict.trigger == "attack_pattern"

    def test_post_with_unsupported_content_type(self, screener):
        verdict = screener.screen("POST", content_type="text/plain", body="hello")

        assert verdict.trigger == "invalid_content_type"
        assert verdict.status_code == 400

    def test_content_type_parameters_are_ignored(self, screener):
        verdict = screener.screen(
            "PUT", content_type="application/json; charset=utf-8", body='{"ok": true}'
        )

        assert verdict is None

    def test_bodyless_post_skips_content_type_check(self, screener):
        assert screener.screen("POST", content_type="") is None

    def test_get_is_not_content_type_checked(self, screener):
        assert screener.screen("GET", content_type="text/plain", body="hello") is None


class TestClientIp:
    """Test cases for client address extraction."""

    @pytest.fixture(autouse=True)
    def no_google_env(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_CLOUD_PROJECT", raising=False)

    @pytest.mark.parametrize(
        "address, expected",
        [
            ("10.1.2.3", True),
            ("172.20.0.1", True),
            ("192.168.1.1", True),
            ("127.0.0.1", True),
            ("::1", True),
            ("::ffff:8.8.8.8", True),
            ("localhost", True),
            ("8.8.8.8", False),
            ("172.32.0.1", False),
            ("203.0.113.5", False),
        ],
    )
    def test_is_private_ip(self, address, expected):
        assert is_private_ip(address) is expected

    def test_first_public_forwarded_hop(self):
        headers = {"x-forwarded-for": "10.0.0.1, 203.0.113.5, 198.51.100.7"}

        assert get_client_ip(headers, "10.0.0.2") == "203.0.113.5"

    def test_last_public_hop_behind_google_front_end(self):
        headers = {
            "x-forwarded-for": "203.0.113.5, 198.51.100.7, 10.0.0.1",
            "x-cloud-trace-context": "abc/1;o=1",
        }

        assert get_client_ip(headers) == "198.51.100.7"

    def test_google_project_env_selects_last_hop(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_CLOUD_PROJECT", "duckbuck")

        assert get_client_ip({"x-forwarded-for": "203.0.113.5, 198.51.100.7"}) == "198.51.100.7"

    def test_only_private_hops_falls_back_to_first(self):
        assert get_client_ip({"x-forwarded-for": "10.0.0.1, 10.0.0.2"}) == "10.0.0.1"

    def test_real_ip_then_cloudflare_then_peer(self):
        assert get_client_ip({"x-real-ip": "203.0.113.9"}, "10.0.0.2") == "203.0.113.9"
        assert get_client_ip({"cf-connecting-ip": "203.0.113.10"}, "10.0.0.2") == "203.0.113.10"
        assert get_client_ip({}, "10.0.0.2") == "10.0.0.2"
        assert get_client_ip({}) == "unknown"
