"""
Tests for outbound notifications: Twilio SMS, message templates, delivery logs and link tokens.
"""
import unittest
from datetime import timedelta
from urllib.parse import parse_qs

import httpx

from waitlist.core.constants import CHANNEL_EMAIL, CHANNEL_SMS, TOKEN_CONFIRMATION, TOKEN_REGISTRATION
from waitlist.core.errors import NotFoundError
from waitlist.models.delivery_log import DeliveryLog
from waitlist.services.notify import NotificationSender, TwilioSmsClient
from waitlist.services.notify.templates import TEMPLATE_OFFER, render_email, render_sms
from waitlist.services.offer_token_service import OfferTokenService

from tests.helpers import NOW, FakeSender, add_entry, add_slot, build_watcher, make_session_factory


def twilio(handler) -> TwilioSmsClient:
    return TwilioSmsClient(
        account_sid="AC123",
        auth_token="secret",
        from_number="+15550001111",
        transport=httpx.MockTransport(handler),
    )


class TestTwilioSms(unittest.TestCase):
    def test_send_returns_sid(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(201, json={"sid": "SM1"})

        result = twilio(handler).send_sms("+33600000001", "hello")
        self.assertTrue(result.success)
        self.assertEqual(result.message_id, "SM1")
        self.assertTrue(seen["url"].endswith("/Accounts/AC123/Messages.json"))
        self.assertEqual(seen["form"]["To"], ["+33600000001"])

    def test_non_e164_number_rejected_without_request(self):
        calls = []
        result = twilio(lambda request: calls.append(request)).send_sms("0600000001", "hello")
        self.assertFalse(result.success)
        self.assertEqual(calls, [])

    def test_unconfigured_client_does_not_send(self):
        client = TwilioSmsClient(account_sid="", auth_token="", from_number="")
        result = client.send_sms("+33600000001", "hello")
        self.assertFalse(result.success)
        self.assertEqual(result.error, "Twilio not configured")

    def test_provider_error_is_a_failed_result(self):
        """Test that a Twilio 4xx comes back as a failed result rather than an exception."""
        result = twilio(lambda request: httpx.Response(400, json={"message": "bad"})).send_sms("+33600000001", "x")
        self.assertFalse(result.success)
        self.assertIn("400", result.error)

    def test_network_error_is_a_failed_result(self):
        def handler(request):
            raise httpx.ConnectTimeout("timeout", request=request)

        self.assertFalse(twilio(handler).send_sms("+33600000001", "x").success)


class TestTemplates(unittest.TestCase):
    def test_offer_sms_mentions_link_and_window(self):
        body = render_sms(
            TEMPLATE_OFFER,
            {"business_name": "Salon 42", "slot_start": NOW, "link": "https://book.test/waitlist/t", "offer_minutes": 30},
        )
        self.assertIn("https://book.test/waitlist/t", body)
        self.assertIn("30 min", body)
        self.assertIn("Mon 02 Mar, 08:00", body)

    def test_registration_email(self):
        subject, body = render_email("registration", {"business_name": "Salon 42", "link": "L"})
        self.assertIn("waitlist", subject)
        self.assertIn("L", body)

    def test_unknown_channel(self):
        sender = NotificationSender(TwilioSmsClient(account_sid="", auth_token="", from_number=""))
        self.assertFalse(sender.send("fax", "x", {}).success)


class TestNotificationDispatcher(unittest.TestCase):
    def setUp(self):
        self.db = make_session_factory()()
        self.sender = FakeSender()
        self.watcher = build_watcher(sender=self.sender)
        self.dispatcher = self.watcher.matcher.dispatcher
        self.slot = add_slot(self.db, NOW + timedelta(hours=3))

    def tearDown(self):
        self.db.close()

    def test_registration_goes_to_sms_and_email(self):
        entry = add_entry(self.watcher, self.db, self.slot, email="ana@example.com")
        token, link = self.dispatcher.send_registration(self.db, entry, self.slot, NOW)
        self.assertEqual(link, f"https://book.test/waitlist/{token}")
        self.assertEqual([s[0] for s in self.sender.sent], [CHANNEL_SMS, CHANNEL_EMAIL])
        logs = self.db.query(DeliveryLog).filter(DeliveryLog.entry_id == entry.id).all()
        self.assertEqual(len(logs), 2)
        self.assertTrue(all(log.kind == TOKEN_REGISTRATION and log.success for log in logs))
        self.db.refresh(entry)
        self.assertEqual(entry.last_message_id, "msg-2")

    def test_crashing_sender_is_logged(self):
        """Test that an exception from the send channel is recorded as a failed delivery."""

        class Boom:
            def send(self, channel, to, template_vars):
                raise RuntimeError("socket closed")

        self.dispatcher.sender = Boom()
        entry = add_entry(self.watcher, self.db, self.slot)
        self.dispatcher.send_registration(self.db, entry, self.slot, NOW)
        log = self.db.query(DeliveryLog).one()
        self.assertFalse(log.success)
        self.assertEqual(log.error_message, "socket closed")


class TestOfferTokens(unittest.TestCase):
    def setUp(self):
        self.db = make_session_factory()()
        self.watcher = build_watcher()
        self.entry = add_entry(self.watcher, self.db, add_slot(self.db, NOW + timedelta(hours=3)))
        self.tokens = OfferTokenService(secret="test-secret")

    def tearDown(self):
        self.db.close()

    def test_issue_and_resolve(self):
        token = self.tokens.issue(self.db, self.entry.id, TOKEN_CONFIRMATION, NOW + timedelta(minutes=30))
        row = self.tokens.resolve(self.db, token, kind=TOKEN_CONFIRMATION)
        self.assertEqual(row.entry_id, self.entry.id)
        self.assertTrue(self.tokens.is_usable(row, NOW))
        self.assertFalse(self.tokens.is_usable(row, NOW + timedelta(minutes=30)))

    def test_forged_token_is_not_found(self):
        forged = OfferTokenService(secret="other-secret").issue(self.db, self.entry.id, TOKEN_CONFIRMATION, NOW)
        with self.assertRaises(NotFoundError):
            self.tokens.resolve(self.db, forged)

    def test_wrong_kind_is_not_found(self):
        token = self.tokens.issue(self.db, self.entry.id, TOKEN_REGISTRATION, NOW + timedelta(hours=1))
        with self.assertRaises(NotFoundError):
            self.tokens.resolve(self.db, token, kind=TOKEN_CONFIRMATION)

    def test_consume_once(self):
        """Test that a token is consumed exactly once."""
        token = self.tokens.issue(self.db, self.entry.id, TOKEN_CONFIRMATION, NOW + timedelta(minutes=30))
        row = self.tokens.resolve(self.db, token)
        self.assertTrue(self.tokens.consume(self.db, row, NOW))
        self.assertFalse(self.tokens.consume(self.db, row, NOW))

    def test_purge_expired(self):
        self.tokens.issue(self.db, self.entry.id, TOKEN_CONFIRMATION, NOW - timedelta(days=2))
        live = self.tokens.issue(self.db, self.entry.id, TOKEN_CONFIRMATION, NOW + timedelta(days=2))
        self.assertEqual(self.tokens.purge_expired(self.db, NOW), 1)
        self.tokens.resolve(self.db, live)


if __name__ == "__main__":
    unittest.main()
