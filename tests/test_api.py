import sys
import os
import time
import asyncio
import unittest
from unittest.mock import MagicMock, patch

import httpx
from fastapi.testclient import TestClient

# Add project root to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from fastbill.api.server import app
from fastbill.domain.schemas import ParsedIntent
from fastbill.services import registry
from fastbill.services.learning_store import InMemoryLearningStore

client = TestClient(app)

PRODUCTS = [
    {"id": "d1", "name": "Dabur Red Paste", "brand": "Dabur", "category": "Toothpaste", "mrp": 118, "gst_rate": 18},
    {"id": "c1", "name": "Colgate Toothpaste 100g", "brand": "Colgate", "mrp": 55, "gst_rate": 18},
    {"id": "c2", "name": "Colgate MaxFresh Gel 150g", "brand": "Colgate", "mrp": 99, "gst_rate": 18},
]


class TestPricingAPI(unittest.TestCase):

    def test_health(self):
        response = client.get("/health", headers={"X-Request-ID": "req-42"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")
        self.assertEqual(response.headers["X-Request-ID"], "req-42")

    def test_normalize(self):
        response = client.post("/pricing/normalize", json={"pricing_mode": "MRP_INCLUSIVE", "gst_rate": 18, "mrp": "118"})
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["unit_price_net"], "100.00")
        self.assertEqual(data["tax_per_unit"], "18.00")
        self.assertEqual(data["effective_rate"], "0.18")

    def test_line(self):
        line = {"name": "Loose sugar", "price": 50, "quantity": 3, "discount_percent": 10}
        response = client.post("/pricing/line", json=line)
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["breakdown"]["line_gross_after_disc"], "135.00")
        self.assertIsNone(data["preview"])

    def test_totals_with_flag_settings(self):
        body = {
            "lines": [{"name": "Service", "price": 100}],
            "settings": {"include_cgst": True, "include_sgst": True, "cgst_rate": 9, "sgst_rate": 9},
        }
        response = client.post("/pricing/totals", json=body)
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["totals"]["tax_breakdown"]["cgst"], "9.00")
        self.assertEqual(data["totals"]["grand_total"], "118.00")
        self.assertEqual(data["tax_total"], "18.00")
        self.assertEqual(len(data["preview_taxes"]), 1)


class TestIntentAPI(unittest.TestCase):

    def test_parse(self):
        response = client.post("/intents/parse", json={"text": "delivery charge 50"})
        data = response.json()
        self.assertEqual(data["intent"], "set_charge")
        self.assertEqual(data["entities"], {"key": "delivery", "amount": "50", "percent": False})

    def test_fallback(self):
        data = client.post("/intents/parse", json={"text": "2 colgate"}).json()
        self.assertIsNone(data["intent"])
        self.assertEqual(data["fallback"], {"qty": "2", "query": "colgate"})


class TestProductAPI(unittest.TestCase):

    def setUp(self):
        self.store_patch = patch.object(registry, "learning_store", InMemoryLearningStore())
        self.store_patch.start()

    def tearDown(self):
        self.store_patch.stop()

    def test_brand_prompt(self):
        data = client.post("/products/match", json={"query": "colgate", "products": PRODUCTS}).json()
        self.assertTrue(data["brand_selection"]["should_show"])
        self.assertEqual(data["matches"], [])

    def test_ranked_matches(self):
        data = client.post("/products/match", json={"query": "red paste", "products": PRODUCTS}).json()
        self.assertIsNone(data["brand_selection"])
        self.assertEqual(data["matches"][0]["product"]["id"], "d1")

    def test_empty_query_rejected(self):
        response = client.post("/products/match", json={"query": ""})
        self.assertEqual(response.status_code, 422)


class TestVoiceAPI(unittest.TestCase):

    def setUp(self):
        self.store_patch = patch.object(registry, "learning_store", InMemoryLearningStore())
        self.store_patch.start()
        response = client.post("/voice/sessions", json={"business_id": "biz-1", "products": PRODUCTS})
        self.assertEqual(response.status_code, 200)
        self.session_id = response.json()["session_id"]

    def tearDown(self):
        registry.close_session(self.session_id)
        self.store_patch.stop()

    def utter(self, text):
        return client.post(f"/voice/sessions/{self.session_id}/utterances", json={"text": text})

    def test_add_and_finalize(self):
        data = self.utter("add 2 dabur red paste").json()
        self.assertEqual(data["result"]["status"], "applied")
        self.assertEqual(data["session"]["totals"]["grand_total"], "236.00")

        response = client.post(f"/voice/sessions/{self.session_id}/finalize")
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertTrue(data["invoice_id"].startswith("INV-"))
        self.assertEqual(data["totals"]["grand_total"], "236.00")
        self.assertEqual(data["session"]["cart"], [])

    def test_brand_prompt_and_pick(self):
        data = self.utter("colgate").json()
        self.assertEqual(data["result"]["status"], "prompt")
        self.assertEqual(data["session"]["state"], "disambiguating")
        self.assertEqual(len(data["session"]["suggestions"]), 2)

        response = client.post(f"/voice/sessions/{self.session_id}/pick", json={"index": 2})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["session"]["cart"][0]["id"], "c2")

    def test_bad_pick(self):
        response = client.post(f"/voice/sessions/{self.session_id}/pick", json={"index": 5})
        self.assertEqual(response.status_code, 400)

        response = client.post(f"/voice/sessions/{self.session_id}/pick", json={})
        self.assertEqual(response.status_code, 400)

    def test_dismiss(self):
        self.utter("colgate")
        data = client.post(f"/voice/sessions/{self.session_id}/dismiss").json()
        self.assertEqual(data["suggestions"], [])
        self.assertEqual(data["state"], "idle")

    def test_finalize_empty_cart_conflict(self):
        response = client.post(f"/voice/sessions/{self.session_id}/finalize")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["detail"]["reason"], "empty_cart")

    def test_close_session(self):
        other = client.post("/voice/sessions", json={"products": PRODUCTS}).json()["session_id"]
        self.assertEqual(client.delete(f"/voice/sessions/{other}").status_code, 200)
        self.assertEqual(client.get(f"/voice/sessions/{other}").status_code, 404)
        self.assertEqual(client.delete(f"/voice/sessions/{other}").status_code, 404)

    def test_unknown_session(self):
        self.assertEqual(client.get("/voice/sessions/nope").status_code, 404)
        self.assertEqual(client.post("/voice/sessions/nope/utterances", json={"text": "hi"}).status_code, 404)

class TestSessionExpiry(unittest.TestCase):

    def setUp(self):
        self.store_patch = patch.object(registry, "learning_store", InMemoryLearningStore())
        self.store_patch.start()
        self.now = 1000.0
        self.clock_patch = patch.object(registry, "_clock", lambda: self.now)
        self.clock_patch.start()

    def tearDown(self):
        self.clock_patch.stop()
        self.store_patch.stop()

    def test_idle_session_is_dropped(self):
        idle = client.post("/voice/sessions", json={"products": PRODUCTS}).json()["session_id"]
        self.now += registry.SESSION_IDLE_SECONDS / 2
        active = client.post("/voice/sessions", json={"products": PRODUCTS}).json()["session_id"]

        self.now += registry.SESSION_IDLE_SECONDS / 2 + 1
        self.assertEqual(client.get(f"/voice/sessions/{idle}").status_code, 404)
        self.assertNotIn(idle, registry.SESSIONS)
        self.assertNotIn(idle, registry.LAST_SEEN)
        self.assertEqual(client.get(f"/voice/sessions/{active}").status_code, 200)
        registry.close_session(active)

    def test_use_keeps_session_alive(self):
        sid = client.post("/voice/sessions", json={"products": PRODUCTS}).json()["session_id"]
        for _ in range(3):
            self.now += registry.SESSION_IDLE_SECONDS - 1
            self.assertEqual(client.get(f"/voice/sessions/{sid}").status_code, 200)
        registry.close_session(sid)


class TestConcurrentSessions(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.store_patch = patch.object(registry, "learning_store", InMemoryLearningStore())
        self.store_patch.start()
        self.slow = registry.create_session(products=PRODUCTS)
        self.other = registry.create_session(products=PRODUCTS)

        def slow_parse(text, intent_hints=None):
            time.sleep(1.0)
            return ParsedIntent(intent="set_payment", entities={"mode": "upi"})

        self.slow.remote_parser = MagicMock()
        self.slow.remote_parser.parse.side_effect = slow_parse

    def tearDown(self):
        registry.close_session(self.slow.session_id)
        registry.close_session(self.other.session_id)
        self.store_patch.stop()

    async def test_slow_parser_does_not_stall_other_sessions(self):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:

            async def timed(coro):
                started = time.monotonic()
                response = await coro
                return response, time.monotonic() - started

            async def other_request():
                await asyncio.sleep(0.05)
                return await timed(ac.get(f"/voice/sessions/{self.other.session_id}"))

            (slow_resp, slow_elapsed), (fast_resp, fast_elapsed) = await asyncio.gather(
                timed(ac.post(f"/voice/sessions/{self.slow.session_id}/utterances", json={"text": "payment upi"})),
                other_request(),
            )

        self.assertEqual(slow_resp.status_code, 200)
        self.assertEqual(slow_resp.json()["session"]["settings"]["payment_mode"], "upi")
        self.assertGreaterEqual(slow_elapsed, 1.0)
        self.assertEqual(fast_resp.status_code, 200)
        self.assertLess(fast_elapsed, 0.5)


if __name__ == '__main__':
    unittest.main()
