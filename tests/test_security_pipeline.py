import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient
import redis

from app.core.context import ClientRequestContext, get_request_context
from app.core.errors import ErrorBoundaryMiddleware
from app.core.param_pollution import ParameterPollutionMiddleware
from app.core.request_body import BodyIngestionMiddleware
from app.db.session import get_db
from tests.base import ApiTestBase
from tests.test_content_security_policy import parse_policy

RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again in an hour!"


class SecurityHeadersTests(ApiTestBase):
    def test_api_and_non_api_responses_carry_csp(self):
        for path in ("/health", "/api/v1/tours"):
            response = self.client.get(path)
            self.assertEqual(response.status_code, 200, path)
            directives = parse_policy(response.headers["content-security-policy"])
            self.assertEqual(directives["default-src"], ["'self'"])

    def test_hardening_headers_and_request_id(self):
        response = self.client.get("/health")
        self.assertEqual(response.headers.get("x-content-type-options"), "nosniff")
        self.assertEqual(response.headers.get("x-frame-options"), "DENY")
        self.assertEqual(response.headers.get("referrer-policy"), "no-referrer")
        self.assertEqual(response.headers.get("cache-control"), "no-store")
        self.assertRegex(str(response.headers.get("x-request-id")), r"^[A-Za-z0-9._-]{1,128}$")

    def test_valid_request_id_is_preserved(self):
        response = self.client.get("/health", headers={"X-Request-ID": "release-check-2026"})
        self.assertEqual(response.headers.get("x-request-id"), "release-check-2026")

    def test_each_response_gets_a_fresh_script_nonce(self):
        nonces = []
        for _ in range(2):
            script_src = parse_policy(self.client.get("/health").headers["content-security-policy"])["script-src"]
            nonces.extend(token for token in script_src if token.startswith("'nonce-"))
        self.assertEqual(len(nonces), 2)
        self.assertNotEqual(nonces[0], nonces[1])

    def test_error_responses_keep_security_headers(self):
        response = self.client.get("/api/v1/nowhere")
        self.assertEqual(response.status_code, 404)
        self.assertIn("default-src 'self'", response.headers["content-security-policy"])


class RouteDispatchErrorTests(ApiTestBase):
    def test_unregistered_path_returns_operational_404(self):
        response = self.client.get("/api/v1/unknown?x=1")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(
            response.json(),
            {"status": "fail", "message": "Can't find /api/v1/unknown?x=1 on this server!"},
        )

    def test_non_api_unregistered_path_returns_404(self):
        response = self.client.post("/no/such/page")
        self.assertEqual(response.status_code, 404)
        self.assertIn("/no/such/page", response.json()["message"])

    def test_unexpected_failure_is_hidden_from_client(self):
        def broken_db():
            raise RuntimeError("connection string postgres://admin:hunter2@db leaked")

        self.app.dependency_overrides[get_db] = broken_db
        with self.assertLogs("app.errors", "ERROR") as logs:
            response = self.client.get("/api/v1/tours")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"status": "error", "message": "Something went very wrong!"})
        self.assertNotIn("hunter2", response.text)
        self.assertIn("hunter2", "\n".join(logs.output))
        self.assertIn("default-src 'self'", response.headers["content-security-policy"])


class RateLimitStageTests(ApiTestBase):
    def test_hundred_and_first_request_is_rejected_until_window_ends(self):
        for index in range(100):
            response = self.client.get("/api/v1/tours")
            self.assertEqual(response.status_code, 200, index)
        self.assertEqual(response.headers.get("x-ratelimit-remaining"), "0")

        blocked = self.client.get("/api/v1/tours")
        self.assertEqual(blocked.status_code, 429)
        self.assertEqual(blocked.json(), {"status": "fail", "message": RATE_LIMIT_MESSAGE})
        self.assertEqual(blocked.headers.get("retry-after"), "3600")

        self.clock.advance(3599)
        self.assertEqual(self.client.get("/api/v1/tours").status_code, 429)

        self.clock.advance(1)
        self.assertEqual(self.client.get("/api/v1/tours").status_code, 200)

    def test_non_api_paths_are_not_limited(self):
        for _ in range(101):
            self.client.get("/api/v1/tours")
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertNotIn("x-ratelimit-limit", response.headers)

    def test_first_api_response_reports_remaining_budget(self):
        response = self.client.get("/api/v1/tours")
        self.assertEqual(response.headers.get("x-ratelimit-limit"), "100")
        self.assertEqual(response.headers.get("x-ratelimit-remaining"), "99")

    def test_limiter_outage_returns_generic_error_with_headers(self):
        broken = Mock()
        broken.hit.side_effect = redis.ConnectionError("redis://:s3cret@cache went away")
        with (
            patch("app.core.rate_limiting.get_rate_limiter", return_value=broken),
            self.assertLogs("app.errors", "ERROR") as logs,
        ):
            response = self.client.get("/api/v1/tours")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"status": "error", "message": "Something went very wrong!"})
        self.assertNotIn("s3cret", response.text)
        self.assertIn("s3cret", "\n".join(logs.output))
        self.assertIn("default-src 'self'", response.headers["content-security-policy"])
        self.assertEqual(response.headers.get("x-content-type-options"), "nosniff")


class BodyLimitStageTests(ApiTestBase):
    def _count_tours(self) -> int:
        return self.client.get("/api/v1/tours").json()["results"]

    def test_oversized_body_is_rejected_before_handler(self):
        payload = {
            "name": "The Oversized Tour",
            "duration": 5,
            "maxGroupSize": 10,
            "difficulty": "easy",
            "price": 100,
            "summary": "x" * (11 * 1024),
        }
        response = self.client.post("/api/v1/tours", json=payload)
        self.assertEqual(response.status_code, 413)
        self.assertEqual(response.json()["status"], "fail")
        self.assertEqual(self._count_tours(), 0)

    def test_streamed_body_without_length_is_capped(self):
        def chunks():
            for _ in range(12):
                yield b"x" * 1024

        response = self.client.post(
            "/api/v1/tours",
            content=chunks(),
            headers={"Content-Type": "application/json"},
        )
        self.assertEqual(response.status_code, 413)

    def test_malformed_json_is_rejected(self):
        response = self.client.post(
            "/api/v1/tours",
            content=b'{"name": ',
            headers={"Content-Type": "application/json"},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Invalid JSON payload")


class OriginPolicyTests(ApiTestBase):
    def test_preflight_for_allowed_origin(self):
        response = self.client.options(
            "/api/v1/tours/anything",
            headers={"Origin": "http://127.0.0.1:3000", "Access-Control-Request-Method": "PATCH"},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.headers.get("access-control-allow-origin"), "http://127.0.0.1:3000")
        self.assertEqual(response.headers.get("access-control-allow-credentials"), "true")

    def test_preflight_for_unknown_origin_is_refused(self):
        response = self.client.options(
            "/api/v1/tours",
            headers={"Origin": "https://evil.example", "Access-Control-Request-Method": "GET"},
        )
        self.assertEqual(response.status_code, 400)
        self.assertNotIn("access-control-allow-origin", response.headers)


class StaticAssetStageTests(ApiTestBase):
    def setUp(self):
        self._static_dir = tempfile.TemporaryDirectory()
        css_dir = Path(self._static_dir.name) / "css"
        css_dir.mkdir()
        (css_dir / "style.css").write_text("body { color: #55c57a; }")
        self.settings_overrides = {"STATIC_DIR": self._static_dir.name}
        super().setUp()

    def tearDown(self):
        super().tearDown()
        self._static_dir.cleanup()

    def test_existing_asset_bypasses_pipeline(self):
        response = self.client.get("/css/style.css")
        self.assertEqual(response.status_code, 200)
        self.assertIn("#55c57a", response.text)
        self.assertNotIn("content-security-policy", response.headers)

    def test_missing_asset_falls_through_to_routes(self):
        response = self.client.get("/css/missing.css")
        self.assertEqual(response.status_code, 404)
        self.assertIn("content-security-policy", response.headers)


class DevLoggingStageTests(ApiTestBase):
    settings_overrides = {"APP_ENV": "development"}

    def test_requests_are_logged_in_development(self):
        with self.assertLogs("app.http", "INFO") as logs:
            self.client.get("/health")
        self.assertTrue(any("GET /health 200" in line for line in logs.output))


class ProductionLoggingTests(ApiTestBase):
    settings_overrides = {"APP_ENV": "production"}

    def test_requests_are_not_logged_in_production(self):
        with self.assertNoLogs("app.http", "INFO"):
            self.client.get("/health")


def _context_echo_app(max_bytes: int = 64) -> FastAPI:
    app = FastAPI()
    app.add_middleware(ErrorBoundaryMiddleware)
    app.add_middleware(
        ParameterPollutionMiddleware,
        api_prefix="/api",
        whitelist=["difficulty"],
    )
    app.add_middleware(BodyIngestionMiddleware, api_prefix="/api", max_bytes=max_bytes)

    @app.post("/api/echo")
    def echo(payload: dict, request: Request, context: ClientRequestContext = Depends(get_request_context)):
        return {
            "cookies": context.cookies,
            "body": context.body,
            "payload": payload,
            "query": request.query_params.multi_items(),
            "polluted": context.query_polluted,
        }

    @app.get("/plain")
    def plain(context: ClientRequestContext = Depends(get_request_context)):
        return {"cookies": context.cookies}

    return app


class RequestContextStagesTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(_context_echo_app())

    def tearDown(self):
        self.client.close()

    def test_body_and_cookies_reach_handler(self):
        response = self.client.post(
            "/api/echo",
            json={"a": 1},
            headers={"Cookie": "jwt=token-value; theme=dark"},
        )
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["cookies"], {"jwt": "token-value", "theme": "dark"})
        self.assertEqual(data["body"], {"a": 1})
        self.assertEqual(data["payload"], {"a": 1})

    def test_query_pollution_is_collapsed_for_handlers(self):
        response = self.client.post(
            "/api/echo?sort=a&sort=b&difficulty=easy&difficulty=medium",
            json={},
        )
        data = response.json()
        self.assertEqual(
            data["query"],
            [["sort", "b"], ["difficulty", "easy"], ["difficulty", "medium"]],
        )
        self.assertEqual(data["polluted"], {"sort": ["a", "b"]})

    def test_body_cap_uses_configured_limit(self):
        response = self.client.post("/api/echo", json={"text": "y" * 100})
        self.assertEqual(response.status_code, 413)

    def test_non_api_paths_skip_body_stage(self):
        response = self.client.get("/plain", headers={"Cookie": "jwt=abc"})
        self.assertEqual(response.json(), {"cookies": {}})


if __name__ == "__main__":
    unittest.main()
