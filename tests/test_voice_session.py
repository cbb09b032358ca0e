import sys
import os
import unittest
from decimal import Decimal
from unittest.mock import MagicMock

# Add project root to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from fastbill.domain.errors import FinalizeBlocked, InvalidPick, RemoteParserError
from fastbill.domain.schemas import CgstSgstScheme, GstScheme, IgstScheme, NoTax, ParsedIntent
from fastbill.services.learning_store import InMemoryLearningStore
from fastbill.services.remote_parser import CircuitBreaker
from fastbill.services.session import OFFLINE_NOTICE, SessionState, VoiceBillingSession
from fastbill.services.stores import InMemoryCustomerStore, InMemoryInventory, InMemoryInvoiceStore


PRODUCTS = [
    {"id": "d1", "name": "Dabur Red Paste", "brand": "Dabur", "category": "Toothpaste",
     "mrp": 118, "gst_rate": 18},
    {"id": "m1", "name": "Amul Milk 500ml", "brand": "Amul", "category": "Dairy", "mrp": 30, "gst_rate": 5},
    {"id": "m2", "name": "Amul Milk 1L", "brand": "Amul", "category": "Dairy", "mrp": 58, "gst_rate": 5},
    {"id": "s1", "name": "Tata Salt 1kg", "brand": "Tata", "category": "Salt", "sku": "SALT1",
     "mrp": 28, "gst_rate": 5},
]

CUSTOMERS = [
    {"id": "1", "name": "Ravi Kumar", "phone": "9876543210"},
    {"id": "2", "name": "Ravi Shah", "phone": "9123456780"},
]


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class SessionTestCase(unittest.TestCase):

    def setUp(self):
        self.customers = InMemoryCustomerStore(CUSTOMERS)
        self.invoices = InMemoryInvoiceStore()
        self.learning = InMemoryLearningStore()
        self.session = self.make_session()

    def make_session(self, products=PRODUCTS, **kwargs):
        return VoiceBillingSession(
            inventory=InMemoryInventory(products),
            customers=self.customers,
            invoices=self.invoices,
            learning_store=self.learning,
            session_id="test-session",
            **kwargs
        )

    def say(self, text):
        self.session.start_listening()
        return self.session.submit_transcript(text)

    def chip_texts(self):
        return [c.text for c in self.session.chips]


class TestCartCommands(SessionTestCase):

    def test_add_single_match_and_learn(self):
        result = self.say("add 2 dabur red paste")
        self.assertEqual(result.status, "applied")
        self.assertEqual(result.message, "Added 2 × Dabur Red Paste")
        self.assertEqual(len(self.session.cart), 1)
        self.assertEqual(self.session.cart[0].quantity, Decimal(2))
        self.assertEqual(self.session.totals().grand_total, Decimal("236.00"))
        self.assertEqual(self.learning.get_all()[0].original_input, "dabur red paste")
        self.assertEqual(self.session.state, SessionState.IDLE)

    def test_same_product_merges(self):
        self.say("add 2 dabur red paste")
        self.say("add dabur red paste")
        self.assertEqual(len(self.session.cart), 1)
        self.assertEqual(self.session.cart[0].quantity, Decimal(3))

    def test_variants_prompt_then_pick(self):
        result = self.say("milk")
        self.assertEqual(result.status, "prompt")
        self.assertEqual(self.session.state, SessionState.DISAMBIGUATING)
        self.assertEqual([s.key for s in self.session.suggestions], ["m1", "m2"])

        picked = self.session.pick(2)
        self.assertEqual(picked.status, "applied")
        self.assertEqual(self.session.cart[0].id, "m2")
        self.assertEqual(self.session.suggestions, [])
        self.assertEqual(self.session.state, SessionState.IDLE)
        self.assertEqual(self.learning.get_all()[-1].selected_product["id"], "m2")

    def test_brand_prompt(self):
        products = PRODUCTS + [{"id": "d2", "name": "Dabur Honey 250g", "brand": "Dabur", "mrp": 99}]
        self.session = self.make_session(products)
        result = self.say("dabur")
        self.assertEqual(result.status, "prompt")
        self.assertEqual(result.message, 'Found 2 products for brand "dabur". Please choose:')
        self.assertEqual({s.key for s in self.session.suggestions}, {"d1", "d2"})

    def test_unknown_product(self):
        result = self.say("xyzzy")
        self.assertEqual(result.status, "not_found")
        self.assertEqual(self.chip_texts()[-1], 'No products found for "xyzzy"')
        self.assertEqual(self.session.cart, [])

    def test_sku_skips_matching(self):
        result = self.session.route_intent(ParsedIntent(intent="add_item", entities={"sku": "SALT1", "qty": 2}))
        self.assertEqual(result.status, "applied")
        self.assertEqual(self.session.cart[0].id, "s1")
        self.assertEqual(self.learning.get_all(), [])

    def test_change_quantity(self):
        self.say("add 2 dabur red paste")
        result = self.say("change dabur to 5")
        self.assertEqual(result.message, "Dabur Red Paste quantity set to 5")
        self.assertEqual(self.session.cart[0].quantity, Decimal(5))

        self.say("change dabur to 0")
        self.assertEqual(self.session.cart, [])

    def test_remove(self):
        self.say("add 2 dabur red paste")
        self.assertEqual(self.say("remove salt").status, "not_found")
        self.assertEqual(self.say("remove dabur").status, "applied")
        self.assertEqual(self.session.cart, [])

    def test_discount(self):
        self.say("add 2 dabur red paste")
        result = self.say("discount 10 percent on dabur")
        self.assertEqual(result.message, "Discount 10% on Dabur Red Paste")
        self.assertEqual(self.session.totals().grand_total, Decimal("212.40"))


class TestSettingsCommands(SessionTestCase):

    def test_gst_rate_prompt(self):
        result = self.say("gst")
        self.assertEqual(result.status, "prompt")
        self.assertEqual([s.key for s in self.session.suggestions], ["0", "5", "12", "18"])

        result = self.session.pick(4)
        self.assertEqual(result.message, "GST 18% applied")
        self.assertEqual(self.session.settings.tax_scheme, GstScheme(rate=Decimal(18)))
        self.assertIsNone(self.session.pending_gst_mode)

    def test_cgst_sgst_choice_is_split(self):
        self.say("cgst sgst")
        self.session.pick(2)
        self.assertEqual(self.session.settings.tax_scheme, CgstSgstScheme(cgst_rate=Decimal(3), sgst_rate=Decimal(2)))

    def test_igst_then_off(self):
        self.assertEqual(self.say("igst 12").message, "IGST 12% applied")
        self.assertIsInstance(self.session.settings.tax_scheme, IgstScheme)
        self.assertEqual(self.say("no gst").message, "GST disabled")
        self.assertIsInstance(self.session.settings.tax_scheme, NoTax)

    def test_split_without_amounts_asks(self):
        result = self.say("payment split")
        self.assertEqual(result.message, "Payment: Split")
        self.assertTrue(self.chip_texts()[-1].startswith("Tell the split amounts"))

    def test_credit_without_terms_asks(self):
        self.say("payment credit")
        self.assertEqual(self.session.settings.payment_mode, "credit")
        self.assertTrue(self.chip_texts()[-1].startswith("Credit terms?"))

    def test_upi(self):
        self.assertEqual(self.say("payment upi").message, "Payment: UPI")

    def test_charge_and_invoice_type(self):
        self.say("delivery charge 40")
        self.say("invoice type estimate")
        self.assertEqual(self.session.settings.extras.delivery_fee, Decimal(40))
        self.assertEqual(self.session.settings.invoice_type, "Estimate")


class TestCustomers(SessionTestCase):

    def test_ambiguous_customer(self):
        result = self.say("customer ravi")
        self.assertEqual(result.status, "prompt")
        self.assertEqual(len(self.session.suggestions), 2)
        self.session.pick(1)
        self.assertEqual(self.session.customer.id, "1")

    def test_draft_customer_saved_on_finalize(self):
        self.say("customer suresh 9000000001")
        self.assertTrue(self.session.customer.is_draft)
        self.say("add dabur red paste")

        result = self.say("save bill")
        self.assertEqual(result.status, "applied")
        saved = self.customers.find_by_phone("9000000001")
        self.assertIsNotNone(saved)
        self.assertFalse(saved.is_draft)
        self.assertEqual(self.invoices.invoices[result.invoice_id]["customer"]["name"], "suresh")

    def test_consecutive_drafts_keep_earlier_customers(self):
        for name in ("anil", "bina"):
            self.say(f"customer {name}")
            self.assertTrue(self.session.customer.is_draft)
            self.say("add dabur red paste")
            self.assertEqual(self.say("save bill").status, "applied")

        names = [c.name for c in self.customers.list()]
        self.assertEqual(names, ["Ravi Kumar", "Ravi Shah", "anil", "bina"])
        self.assertEqual(len({c.id for c in self.customers.list()}), 4)

    def test_known_phone_uses_store_lookup(self):
        self.customers = MagicMock(wraps=InMemoryCustomerStore(CUSTOMERS))
        self.session = self.make_session()

        result = self.say("customer 9123456780")
        self.assertEqual(result.status, "applied")
        self.assertEqual(self.session.customer.id, "2")
        self.customers.find_by_phone.assert_called_once_with("9123456780")
        self.customers.list.assert_not_called()


class TestStaleSuggestions(SessionTestCase):

    def test_new_utterance_drops_product_suggestions(self):
        self.assertEqual(self.say("milk").status, "prompt")
        self.assertTrue(self.session.suggestions)

        self.say("payment upi")
        self.assertEqual(self.session.suggestions, [])
        self.assertEqual(self.session.state, SessionState.IDLE)
        with self.assertRaises(InvalidPick):
            self.session.pick(1)
        self.assertEqual(self.session.cart, [])

    def test_new_utterance_drops_gst_rate_choice(self):
        self.say("gst")
        self.assertEqual(self.session.pending_gst_mode, "gst")
        self.say("payment card")
        self.assertIsNone(self.session.pending_gst_mode)
        self.assertEqual(self.session.suggestions, [])


class TestFinalize(SessionTestCase):

    def test_empty_cart(self):
        result = self.say("save bill")
        self.assertEqual(result.status, "blocked")
        self.assertEqual(self.chip_texts()[-1], "Cannot save: Cart is empty")
        with self.assertRaises(FinalizeBlocked) as ctx:
            self.session.finalize()
        self.assertEqual(ctx.exception.reason, FinalizeBlocked.EMPTY_CART)

    def test_zero_total(self):
        self.session.add_manual_line("Free sample", 0)
        with self.assertRaises(FinalizeBlocked) as ctx:
            self.session.finalize()
        self.assertEqual(ctx.exception.reason, FinalizeBlocked.NON_POSITIVE_TOTAL)

    def test_split_mismatch_writes_nothing(self):
        self.say("add dabur red paste")
        self.say("payment split 100 cash")
        result = self.say("save bill")
        self.assertEqual(result.status, "blocked")
        self.assertEqual(result.message, FinalizeBlocked.SPLIT_MISMATCH)
        self.assertEqual(self.invoices.invoices, {})
        self.assertEqual(len(self.session.cart), 1)

    def test_saved_invoice(self):
        self.say("invoice type tax")
        self.say("igst 18")
        self.say("add 2 dabur red paste")

        result = self.session.finalize()

        self.assertTrue(result["invoice_id"].startswith("INV-"))
        self.assertEqual(result["totals"].grand_total, Decimal("236.00"))
        self.assertIn("customer", result["stripped_paths"])
        payload = self.invoices.invoices[result["invoice_id"]]
        self.assertNotIn("customer", payload)
        self.assertEqual(payload["totals"]["grand_total"], "236.00")
        self.assertEqual(payload["totals"]["tax_breakdown"]["igst"], "0")
        self.assertTrue(payload["is_paid"])
        self.assertEqual(payload["cart_lines"][0]["line_gross_after_discount"], "236.00")

        # cart cleared, invoice type and tax scheme kept
        self.assertEqual(self.session.cart, [])
        self.assertEqual(self.session.settings.invoice_type, "Tax")
        self.assertIsInstance(self.session.settings.tax_scheme, IgstScheme)
        self.assertEqual(self.session.visible_chips[0].invoice_id, result["invoice_id"])

    def test_credit_payload(self):
        self.say("add dabur red paste")
        self.say("payment credit 15 days")
        result = self.session.finalize()
        payload = self.invoices.invoices[result["invoice_id"]]
        self.assertFalse(payload["is_paid"])
        self.assertTrue(payload["payment_flags"]["is_credit"])
        self.assertEqual(payload["payment_summary"]["balance_due"], "118.00")
        self.assertIn("credit_due_date", payload)


class TestRemoteParser(SessionTestCase):

    def setUp(self):
        super().setUp()
        self.clock = FakeClock()
        self.remote = MagicMock()
        self.session = self.make_session(
            remote_parser=self.remote,
            breaker=CircuitBreaker(threshold=3, cooldown=120, notice_interval=60, clock=self.clock),
        )

    def test_remote_intent_is_used(self):
        self.remote.parse.return_value = ParsedIntent(intent="add_item", entities={"name": "dabur red paste", "qty": 3})
        result = self.say("teen dabur red paste")
        self.assertEqual(result.status, "applied")
        self.assertEqual(self.session.cart[0].quantity, Decimal(3))

    def test_unknown_remote_intent_falls_back_to_local_rules(self):
        self.remote.parse.return_value = ParsedIntent(intent="greeting")
        result = self.say("payment upi")
        self.assertEqual(result.intent, "set_payment")
        self.assertEqual(self.session.settings.payment_mode, "upi")

    def test_customer_words_skip_remote(self):
        self.say("customer ravi kumar")
        self.remote.parse.assert_not_called()
        self.assertEqual(self.session.customer.id, "1")

    def test_breaker_trips_and_notifies(self):
        self.remote.parse.side_effect = RemoteParserError("down", status_code=503)

        for _ in range(3):
            self.assertEqual(self.say("payment upi").status, "applied")
        self.assertEqual(self.chip_texts().count(OFFLINE_NOTICE), 1)

        self.say("payment cash")
        self.assertEqual(self.remote.parse.call_count, 3)
        self.assertEqual(self.chip_texts().count(OFFLINE_NOTICE), 1)
        self.assertEqual(self.session.settings.payment_mode, "cash")

        self.clock.now += 60
        self.say("payment card")
        self.assertEqual(self.chip_texts().count(OFFLINE_NOTICE), 2)

        self.clock.now += 60
        self.say("payment upi")
        self.assertEqual(self.remote.parse.call_count, 4)


class TestListeningAndChips(SessionTestCase):

    def test_stop_is_idempotent(self):
        self.assertEqual(self.session.start_listening(), SessionState.LISTENING)
        self.assertEqual(self.session.stop_listening(), SessionState.IDLE)
        self.assertEqual(self.session.stop_listening(), SessionState.IDLE)

    def test_blank_transcript_ignored(self):
        self.assertEqual(self.say("   ").status, "ignored")
        self.assertEqual(self.session.state, SessionState.IDLE)

    def test_pick_errors(self):
        self.assertIsNone(self.session.pick_first())
        with self.assertRaises(InvalidPick):
            self.session.pick(1)
        self.say("milk")
        with self.assertRaises(InvalidPick):
            self.session.pick(3)
        self.session.dismiss()
        self.assertEqual(self.session.state, SessionState.IDLE)
        self.assertEqual(self.session.cart, [])

    def test_visible_chips_newest_first(self):
        for i in range(15):
            self.session.add_chip(f"chip {i}")
        visible = self.session.visible_chips
        self.assertEqual(len(visible), 10)
        self.assertEqual(visible[0].text, "chip 14")

    def test_snapshot(self):
        self.say("add dabur red paste")
        snap = self.session.snapshot()
        self.assertEqual(snap["session_id"], "test-session")
        self.assertEqual(snap["last_intent"], "add_item")
        self.assertEqual(snap["totals"]["grand_total"], "118.00")
        self.assertIsNone(snap["remote_parser"])


if __name__ == '__main__':
    unittest.main()
