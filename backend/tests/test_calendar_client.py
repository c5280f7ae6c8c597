"""
Tests for the Google Calendar client and gateway against a mocked HTTP transport.
"""
import json
import unittest
from datetime import timedelta

import httpx

from waitlist.core.errors import AuthError, TokenExpiredError, TransientError
from waitlist.models.calendar_connection import CalendarConnection
from waitlist.services.calendar import CalendarGateway, GoogleCalendarClient, GoogleCalendarConfig

from tests.helpers import NOW

CONFIG = GoogleCalendarConfig(client_id="cid", client_secret="csecret", api_base_url="https://cal.test/v3")
START = NOW + timedelta(hours=3)
END = START + timedelta(hours=1)


def make_client(handler, max_retries: int = 2) -> GoogleCalendarClient:
    return GoogleCalendarClient(
        CONFIG,
        max_retries=max_retries,
        transport=httpx.MockTransport(handler),
        sleep=lambda s: None,
    )


def free_busy_body(busy=None, errors=None, calendar_id="primary"):
    cal = {"busy": busy or []}
    if errors:
        cal["errors"] = errors
    return {"calendars": {calendar_id: cal}}


class TestFreeBusy(unittest.TestCase):
    def test_parses_busy_intervals(self):
        """Test that busy intervals with a Z suffix parse to aware datetimes."""
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=free_busy_body([{"start": "2026-03-02T11:00:00Z", "end": "2026-03-02T11:30:00Z"}]))

        busy = make_client(handler).free_busy("tok", "primary", START, END)
        self.assertEqual(len(busy), 1)
        self.assertEqual(busy[0].start, START)
        self.assertEqual(seen["auth"], "Bearer tok")
        self.assertEqual(seen["body"]["items"], [{"id": "primary"}])

    def test_malformed_interval_is_skipped(self):
        def handler(request):
            return httpx.Response(200, json=free_busy_body([{"start": "nonsense"}]))

        self.assertEqual(make_client(handler).free_busy("tok", "primary", START, END), [])

    def test_401_is_token_expired(self):
        def handler(request):
            return httpx.Response(401, json={"error": "invalid_token"})

        with self.assertRaises(TokenExpiredError):
            make_client(handler).free_busy("tok", "primary", START, END)

    def test_403_is_auth_error(self):
        def handler(request):
            return httpx.Response(403, json={"error": "forbidden"})

        with self.assertRaises(AuthError) as ctx:
            make_client(handler).free_busy("tok", "primary", START, END)
        self.assertNotIsInstance(ctx.exception, TokenExpiredError)

    def test_server_error_retried_then_transient(self):
        """Test that 5xx responses are retried and finally surface as TransientError."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        with self.assertRaises(TransientError):
            make_client(handler, max_retries=2).free_busy("tok", "primary", START, END)
        self.assertEqual(len(calls), 3)

    def test_retry_recovers(self):
        responses = [httpx.Response(500), httpx.Response(200, json=free_busy_body())]

        def handler(request):
            return responses.pop(0)

        self.assertEqual(make_client(handler).free_busy("tok", "primary", START, END), [])

    def test_network_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with self.assertRaises(TransientError):
            make_client(handler, max_retries=0).free_busy("tok", "primary", START, END)

    def test_backend_error_is_transient(self):
        def handler(request):
            return httpx.Response(200, json=free_busy_body(errors=[{"domain": "global", "reason": "backendError"}]))

        with self.assertRaises(TransientError):
            make_client(handler).free_busy("tok", "primary", START, END)

    def test_not_found_calendar_is_auth_error(self):
        def handler(request):
            return httpx.Response(200, json=free_busy_body(errors=[{"domain": "global", "reason": "notFound"}]))

        with self.assertRaises(AuthError):
            make_client(handler).free_busy("tok", "primary", START, END)


class TestTokenEndpoint(unittest.TestCase):
    def test_refresh_returns_token_set(self):
        def handler(request):
            self.assertIn(b"grant_type=refresh_token", request.content)
            return httpx.Response(200, json={"access_token": "new", "expires_in": 1800})

        tokens = make_client(handler).refresh("r1")
        self.assertEqual((tokens.access_token, tokens.expires_in, tokens.refresh_token), ("new", 1800, None))

    def test_invalid_grant_is_auth_error(self):
        """Test that a revoked refresh token is an AuthError and is not retried."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"error": "invalid_grant"})

        with self.assertRaises(AuthError):
            make_client(handler).refresh("r1")
        self.assertEqual(len(calls), 1)

    def test_refresh_401_is_not_token_expired(self):
        def handler(request):
            return httpx.Response(401, json={"error": "invalid_client"})

        with self.assertRaises(AuthError) as ctx:
            make_client(handler).refresh("r1")
        self.assertNotIsInstance(ctx.exception, TokenExpiredError)

    def test_refresh_without_token(self):
        with self.assertRaises(AuthError):
            make_client(lambda request: httpx.Response(200)).refresh("")

    def test_exchange_code(self):
        def handler(request):
            self.assertIn(b"grant_type=authorization_code", request.content)
            return httpx.Response(200, json={"access_token": "a", "refresh_token": "r", "expires_in": 3600})

        tokens = make_client(handler).exchange_code("code-1", "https://book.test/cb")
        self.assertEqual(tokens.refresh_token, "r")

    def test_authorize_url_requests_offline_access(self):
        url = make_client(lambda request: httpx.Response(200)).authorize_url("https://book.test/cb", "st")
        self.assertIn("access_type=offline", url)
        self.assertIn("state=st", url)


class TestCalendarGateway(unittest.TestCase):
    def connection(self, **values):
        fields = {"id": 1, "owner_id": "o", "access_token": "tok", "calendar_id": "primary"}
        fields.update(values)
        return CalendarConnection(**fields)

    def test_free_when_no_overlap(self):
        """Test that an event ending exactly at slot start does not make the slot busy."""

        def handler(request):
            return httpx.Response(
                200,
                json=free_busy_body([{"start": (START - timedelta(hours=1)).isoformat(), "end": START.isoformat()}]),
            )

        result = CalendarGateway(make_client(handler)).check_free(self.connection(), START, END)
        self.assertTrue(result.free)
        self.assertEqual(result.busy, [])

    def test_busy_when_overlapping(self):
        def handler(request):
            return httpx.Response(
                200,
                json=free_busy_body([{"start": START.isoformat(), "end": (START + timedelta(minutes=15)).isoformat()}]),
            )

        result = CalendarGateway(make_client(handler)).check_free(self.connection(), START, END)
        self.assertFalse(result.free)
        self.assertEqual(len(result.busy), 1)

    def test_no_calendar_selected(self):
        gateway = CalendarGateway(make_client(lambda request: httpx.Response(200)))
        with self.assertRaises(AuthError):
            gateway.check_free(self.connection(calendar_id=None), START, END)


if __name__ == "__main__":
    unittest.main()
