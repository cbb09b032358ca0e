import sys
import os
import unittest
from decimal import Decimal

# Add project root to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from fastbill.domain.intents import (
    clean_product_query,
    find_absent_paths,
    parse_local_intent,
    parse_quantity_and_query,
    strip_absent,
)


def parse(text):
    parsed = parse_local_intent(text)
    return (parsed.intent, parsed.entities) if parsed else None


class TestPaymentIntents(unittest.TestCase):

    def test_simple_modes(self):
        self.assertEqual(parse("payment upi"), ("set_payment", {"mode": "upi"}))
        self.assertEqual(parse("Pay with cash"), ("set_payment", {"mode": "cash"}))
        self.assertEqual(parse("paise nagad"), ("set_payment", {"mode": "cash"}))
        self.assertEqual(parse("payment yupi"), ("set_payment", {"mode": "upi"}))

    def test_credit_card_is_card(self):
        self.assertEqual(parse("pay by credit card"), ("set_payment", {"mode": "card"}))

    def test_split(self):
        intent, entities = parse("payment split 800 cash 500 upi 200 card")
        self.assertEqual(intent, "set_payment")
        self.assertEqual(entities["mode"], "split")
        self.assertEqual(entities["split_payment"],
                         {"cash": Decimal(800), "upi": Decimal(500), "card": Decimal(200)})

    def test_credit_terms(self):
        self.assertEqual(parse("payment credit 15 days"),
                         ("set_payment", {"mode": "credit", "credit_due_days": 15}))
        self.assertEqual(parse("payment credit on 15/02/2025"),
                         ("set_payment", {"mode": "credit", "credit_due_date": "15/02/2025"}))

    def test_advance(self):
        self.assertEqual(parse("payment advance 500 due on 20 march"),
                         ("set_payment", {"mode": "advance", "advance_paid": Decimal(500),
                                          "advance_due_date": "20 march"}))


class TestSettingsIntents(unittest.TestCase):

    def test_invoice_type(self):
        self.assertEqual(parse("invoice type proforma"), ("set_invoice_type", {"type": "Proforma"}))
        self.assertEqual(parse("tax invoice"), ("set_invoice_type", {"type": "Tax"}))
        self.assertEqual(parse("retail"), ("set_invoice_type", {"type": "Retail"}))

    def test_plain_gst(self):
        self.assertEqual(parse("gst 18 percent"), ("set_gst", {
            "include_gst": True, "gst_rate": 18,
            "include_igst": False, "include_cgst": False, "include_sgst": False,
        }))

    def test_cgst_sgst_from_total_rate(self):
        intent, entities = parse("cgst sgst gst 18")
        self.assertEqual(intent, "set_gst")
        self.assertEqual(entities["cgst_rate"], 9)
        self.assertEqual(entities["sgst_rate"], 9)
        self.assertTrue(entities["include_cgst"])
        self.assertFalse(entities["include_gst"])
        self.assertFalse(entities["include_igst"])

    def test_igst(self):
        intent, entities = parse("apply igst 12")
        self.assertTrue(entities["include_igst"])
        self.assertEqual(entities["igst_rate"], 12)
        self.assertFalse(entities["include_gst"])

    def test_gst_off(self):
        _, entities = parse("no gst")
        self.assertEqual(entities, {"include_gst": False, "include_igst": False,
                                    "include_cgst": False, "include_sgst": False})
        _, entities = parse("disable igst")
        self.assertFalse(entities["include_igst"])

    def test_customer(self):
        self.assertEqual(parse("Customer Ravi 9876543210"),
                         ("set_customer", {"phone": "9876543210", "name": "ravi"}))

    def test_charges(self):
        self.assertEqual(parse("delivery charge 50"),
                         ("set_charge", {"key": "delivery", "amount": Decimal(50), "percent": False}))
        self.assertEqual(parse("insurance 2 percent"),
                         ("set_charge", {"key": "insurance", "amount": Decimal(2), "percent": True}))
        self.assertEqual(parse("packing 20")[1]["key"], "packaging")

    def test_discount(self):
        self.assertEqual(parse("discount 10 percent on colgate"),
                         ("set_discount", {"discount": Decimal(10), "discount_type": "percent", "name": "colgate"}))
        self.assertEqual(parse("discount 50 rupees"),
                         ("set_discount", {"discount": Decimal(50), "discount_type": "amount"}))


class TestCartIntents(unittest.TestCase):

    def test_finalize(self):
        self.assertEqual(parse("save bill"), ("finalize", {}))
        self.assertEqual(parse("done"), ("finalize", {}))
        self.assertEqual(parse("please finalize the invoice now"), ("finalize", {}))

    def test_remove(self):
        self.assertEqual(parse("remove colgate"), ("remove_item", {"name": "colgate"}))
        self.assertEqual(parse("maggi hatao"), ("remove_item", {"name": "maggi"}))

    def test_set_qty(self):
        self.assertEqual(parse("change colgate to 3"), ("set_qty", {"name": "colgate", "qty": Decimal(3)}))
        self.assertEqual(parse("colgate qty 4"), ("set_qty", {"name": "colgate", "qty": Decimal(4)}))

    def test_explicit_add(self):
        self.assertEqual(parse("add 2 colgate"), ("add_item", {"name": "colgate", "qty": Decimal(2)}))
        self.assertEqual(parse("3 kg sugar daalo"), ("add_item", {"name": "sugar", "qty": Decimal(3)}))

    def test_bare_product_is_not_an_intent(self):
        self.assertIsNone(parse("colgate"))
        self.assertIsNone(parse("   "))
        self.assertIsNone(parse("add"))


class TestQueryHelpers(unittest.TestCase):

    def test_clean_query(self):
        self.assertEqual(clean_product_query("put 2 kg the sugar please"), "sugar")

    def test_quantity_and_query(self):
        self.assertEqual(parse_quantity_and_query("add 2.5 kg rice"), (Decimal("2.5"), "rice"))
        self.assertEqual(parse_quantity_and_query("amul butter"), (Decimal(1), "amul butter"))


class TestPayloadHygiene(unittest.TestCase):

    def test_absent_paths(self):
        payload = {"a": None, "b": [1, None, {"c": float("nan")}], "d": {"e": Decimal("NaN")}, "f": 0}
        self.assertEqual(find_absent_paths(payload), ["a", "b[1]", "b[2].c", "d.e"])
        self.assertEqual(find_absent_paths(None), ["<root>"])

    def test_strip(self):
        payload = {"a": None, "b": [1, None, {"c": float("inf")}], "f": 0, "g": ""}
        self.assertEqual(strip_absent(payload), {"b": [1, {}], "f": 0, "g": ""})


if __name__ == '__main__':
    unittest.main()
