import asyncio
import json
import unittest

import httpx

from services.geo import AddressSuggester, DeliveryCalculator, haversine_km
from services.notifications import (
    EmailChannel,
    NotificationResult,
    Notifier,
    TelegramChannel,
    render_email,
    render_telegram_text,
)
from services.schemas import NotificationPayload

MOSCOW = (55.7558, 37.6173)
ST_PETERSBURG = (59.9343, 30.3351)

ORDER_DATA = {
    "orderId": "abc-123",
    "customerName": "Ivan <b>Petrov</b>",
    "customerPhone": "79001234567",
    "customerEmail": "",
    "customerAddress": "Moscow, Arbat 5",
    "items": [{"name": "Cement_M400", "price": 320.0, "quantity": 2}],
    "totalAmount": 710.0,
    "delivery": {"distance_km": 9.2, "cost_rub": 70},
    "timestamp": "01.02.2025, 10:00:00",
}

CONTACT_DATA = {
    "name": "Anna_S",
    "phone": "79007654321",
    "email": None,
    "message": "Need *2 tons* of sand",
    "preferredContact": "telegram",
    "timestamp": "01.02.2025, 10:00:00",
}


class FakeChannel:
    def __init__(self, name, result=True, delay=0.0, error=None):
        self.name = name
        self.result = result
        self.delay = delay
        self.error = error
        self.payloads = []

    async def send(self, payload):
        self.payloads.append(payload)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return NotificationResult(self.name, self.result, None if self.result else "refused")


class DeliveryTestCase(unittest.TestCase):
    def test_haversine(self):
        self.assertEqual(haversine_km(*MOSCOW, *MOSCOW), 0.0)
        self.assertAlmostEqual(haversine_km(*MOSCOW, *ST_PETERSBURG), 634, delta=5)

    def test_quote_bills_every_started_kilometre(self):
        calc = DeliveryCalculator(*MOSCOW, rate_per_km=7)
        same = calc.quote(*MOSCOW)
        self.assertEqual((same.distance_km, same.cost_rub), (0.0, 0))

        far = calc.quote(*ST_PETERSBURG)
        self.assertGreater(far.cost_rub, far.distance_km * 7)
        self.assertEqual(far.cost_rub % 7, 0)
        self.assertLess(far.cost_rub - far.distance_km * 7, 7)

    def test_quote_rejects_bad_input(self):
        with self.assertRaises(ValueError):
            DeliveryCalculator(*MOSCOW).quote(91.0, 37.0)
        unconfigured = DeliveryCalculator(None, None)
        self.assertFalse(unconfigured.configured)
        with self.assertRaises(ValueError):
            unconfigured.quote(*MOSCOW)


class AddressSuggesterTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_suggestions_from_geocoder(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "suggestions": [
                        {"value": "Moscow, Arbat 5", "data": {"geo_lat": "55.75", "geo_lon": "37.59"}},
                        {"value": "Moscow, Arbat", "data": {"geo_lat": None, "geo_lon": ""}},
                        {"value": "", "data": {}},
                        "junk",
                    ]
                },
            )

        suggester = AddressSuggester("k", transport=httpx.MockTransport(handler))
        suggestions = await suggester.suggest("Arbat", count=5)

        self.assertEqual([s.value for s in suggestions], ["Moscow, Arbat 5", "Moscow, Arbat"])
        self.assertTrue(suggestions[0].has_coords)
        self.assertEqual(suggestions[0].lat, 55.75)
        self.assertFalse(suggestions[1].has_coords)
        self.assertEqual(seen[0].headers["Authorization"], "Token k")
        self.assertEqual(json.loads(seen[0].content), {"query": "Arbat", "count": 5})

    async def test_short_query_or_missing_key_skips_request(self):
        seen = []
        transport = httpx.MockTransport(lambda r: seen.append(r) or httpx.Response(200, json={}))
        self.assertEqual(await AddressSuggester("k", transport=transport).suggest("Ar"), [])
        self.assertEqual(await AddressSuggester(None, transport=transport).suggest("Arbat"), [])
        self.assertEqual(seen, [])

    async def test_geocoder_failure_reads_as_empty(self):
        failing = AddressSuggester("k", transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        self.assertEqual(await failing.suggest("Arbat"), [])


class RenderTestCase(unittest.TestCase):
    def test_order_renderings(self):
        payload = NotificationPayload(type="order", data=ORDER_DATA)
        subject, body = render_email(payload)
        self.assertEqual(subject, "New order #abc-123")
        self.assertIn("Ivan &lt;b&gt;Petrov&lt;/b&gt;", body)
        self.assertIn("9.2 km", body)
        self.assertNotIn("<strong>Email:</strong>", body)

        text = render_telegram_text(payload)
        self.assertIn("Cement\\_M400 - 2 pcs", text)
        self.assertIn("9.2 km, 70₽", text)
        self.assertIn("*Email:* not given", text)

    def test_contact_renderings(self):
        payload = NotificationPayload(type="contact", data=CONTACT_DATA)
        subject, body = render_email(payload)
        self.assertEqual(subject, "New message from Anna_S")
        self.assertIn("Need *2 tons* of sand", body)

        text = render_telegram_text(payload)
        self.assertIn("Anna\\_S", text)
        self.assertIn("Need \\*2 tons\\* of sand", text)
        self.assertIn("💙 Telegram", text)


class ChannelTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_email_channel(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"id": "msg-1"})

        channel = EmailChannel("re_key", "shop@example.ru", "staff@example.ru", httpx.MockTransport(handler))
        result = await channel.send(NotificationPayload(type="order", data=ORDER_DATA))
        self.assertTrue(result.success)
        body = json.loads(seen[0].content)
        self.assertEqual(body["to"], "staff@example.ru")
        self.assertEqual(body["subject"], "New order #abc-123")
        self.assertEqual(seen[0].headers["Authorization"], "Bearer re_key")

        unconfigured = EmailChannel(None, "a@b.ru", "c@d.ru")
        self.assertFalse((await unconfigured.send(NotificationPayload(type="order", data=ORDER_DATA))).success)

        rejecting = EmailChannel("re_key", "a@b.ru", "c@d.ru", httpx.MockTransport(lambda r: httpx.Response(422)))
        self.assertFalse((await rejecting.send(NotificationPayload(type="order", data=ORDER_DATA))).success)

    async def test_telegram_channel(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        channel = TelegramChannel("bot-token", "42", httpx.MockTransport(handler))
        result = await channel.send(NotificationPayload(type="contact", data=CONTACT_DATA))
        self.assertTrue(result.success)
        self.assertIn("/botbot-token/sendMessage", seen[0].url.path)
        body = json.loads(seen[0].content)
        self.assertEqual(body["chat_id"], "42")
        self.assertEqual(body["parse_mode"], "Markdown")

        api_error = TelegramChannel(
            "bot-token",
            "42",
            httpx.MockTransport(lambda r: httpx.Response(400, json={"description": "chat not found"})),
        )
        failed = await api_error.send(NotificationPayload(type="contact", data=CONTACT_DATA))
        self.assertFalse(failed.success)
        self.assertIn("chat not found", failed.error)

        self.assertFalse((await TelegramChannel(None, "42").send(
            NotificationPayload(type="contact", data=CONTACT_DATA))).success)


class NotifierTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_both_channels_get_the_same_payload(self):
        email, telegram = FakeChannel("email"), FakeChannel("telegram")
        sent = await Notifier(email, telegram).dispatch("order", ORDER_DATA)
        self.assertEqual(sent, (True, True))
        self.assertEqual(email.payloads[0], telegram.payloads[0])
        self.assertEqual(email.payloads[0].type, "order")

    async def test_one_channel_failing_does_not_affect_the_other(self):
        sent = await Notifier(FakeChannel("email", result=False), FakeChannel("telegram")).dispatch(
            "contact", CONTACT_DATA
        )
        self.assertEqual(sent, (False, True))

        sent = await Notifier(
            FakeChannel("email"), FakeChannel("telegram", error=RuntimeError("boom"))
        ).dispatch("contact", CONTACT_DATA)
        self.assertEqual(sent, (True, False))

    async def test_slow_channel_times_out(self):
        notifier = Notifier(FakeChannel("email", delay=5), FakeChannel("telegram"), timeout=0.05)
        sent = await asyncio.wait_for(notifier.dispatch("order", ORDER_DATA), timeout=2)
        self.assertEqual(sent, (False, True))


if __name__ == "__main__":
    unittest.main()
