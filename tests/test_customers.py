import sys
import os
import unittest

# Add project root to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from fastbill.domain.matching import (
    extract_customer_entities,
    extract_phone_from_utterance,
    normalize_phone,
    resolve_customer,
    same_phone,
)
from unittest.mock import patch

from fastbill.domain.matching.customers import mentions_customer, new_customer_id
from fastbill.domain.schemas import Customer
from fastbill.services.stores import InMemoryCustomerStore


CUSTOMERS = [
    Customer(id="1", name="Ravi Kumar", phone="9876543210", address="MG Road"),
    Customer(id="2", name="Ravi Shah", phone="9123456780"),
    Customer(id="3", name="Priya", email="priya@example.com"),
]


class TestPhoneHelpers(unittest.TestCase):

    def test_normalize(self):
        self.assertEqual(normalize_phone("+91 98765-43210"), "919876543210")
        self.assertEqual(normalize_phone(None), "")

    def test_last_ten_digits(self):
        self.assertTrue(same_phone("+91 98765 43210", "9876543210"))
        self.assertFalse(same_phone("12345", "9876543210"))
        self.assertFalse(same_phone("", ""))

    def test_extract_from_utterance(self):
        self.assertEqual(extract_phone_from_utterance("customer ravi 98765 43210"), "9876543210")
        self.assertEqual(extract_phone_from_utterance("add 2 colgate"), "")


class TestCustomerEntities(unittest.TestCase):

    def test_name_and_phone(self):
        self.assertEqual(extract_customer_entities("customer ravi 9876543210"),
                         {"phone": "9876543210", "name": "ravi"})

    def test_name_is_phrase(self):
        entities = extract_customer_entities("customer name is Priya phone 98765 43210")
        self.assertEqual(entities["name"], "priya")
        self.assertEqual(entities["phone"], "9876543210")

    def test_email(self):
        entities = extract_customer_entities("client email priya@example.com")
        self.assertEqual(entities, {"email": "priya@example.com"})

    def test_mentions(self):
        self.assertTrue(mentions_customer("Grahak Ravi"))
        self.assertFalse(mentions_customer("customers list"))


class TestResolveCustomer(unittest.TestCase):

    def test_phone_wins(self):
        result = resolve_customer({"phone": "+91 98765 43210", "name": "Priya"}, "", CUSTOMERS)
        self.assertEqual(result.outcome, "selected")
        self.assertEqual(result.customer.id, "1")
        self.assertEqual(result.message, "Customer: Ravi Kumar • MG Road")

    def test_email(self):
        result = resolve_customer({"email": "PRIYA@example.com"}, "", CUSTOMERS)
        self.assertEqual(result.customer.id, "3")

    def test_unique_exact_name(self):
        result = resolve_customer({"name": "priya"}, "", CUSTOMERS)
        self.assertEqual(result.outcome, "selected")
        self.assertEqual(result.customer.id, "3")

    def test_ambiguous_name_prompts(self):
        result = resolve_customer({"name": "ravi"}, "", CUSTOMERS)
        self.assertEqual(result.outcome, "prompt")
        self.assertEqual({c.id for c in result.candidates}, {"1", "2"})

    def test_unknown_name_is_draft(self):
        result = resolve_customer({"name": "suresh"}, "", CUSTOMERS)
        self.assertEqual(result.outcome, "draft")
        self.assertTrue(result.customer.is_draft)
        self.assertEqual(result.customer.name, "suresh")
        self.assertEqual(result.message, "New customer will be created on Save")

    def test_nothing_spoken_is_walk_in(self):
        result = resolve_customer({"name": "customer"}, "customer", CUSTOMERS)
        self.assertEqual(result.outcome, "draft")
        self.assertEqual(result.customer.name, "Walk-in")


class TestDraftCustomers(unittest.TestCase):

    def test_ids_do_not_depend_on_the_clock(self):
        with patch("time.time", return_value=1000.0):
            first = new_customer_id()
            second = new_customer_id()
        self.assertNotEqual(first, second)
        self.assertTrue(first.startswith("CUST-"))

    def test_two_drafts_are_both_stored(self):
        store = InMemoryCustomerStore(CUSTOMERS)
        anil = resolve_customer({"name": "anil"}, "", store.list()).customer
        bina = resolve_customer({"name": "bina"}, "", store.list()).customer
        store.upsert(anil)
        store.upsert(bina)

        names = [c.name for c in store.list()]
        self.assertEqual(names, ["Ravi Kumar", "Ravi Shah", "Priya", "anil", "bina"])
        self.assertFalse(any(c.is_draft for c in store.list()))

    def test_upsert_replaces_same_id(self):
        store = InMemoryCustomerStore(CUSTOMERS)
        store.upsert(Customer(id="2", name="Ravi Shah", phone="9000000000"))
        self.assertEqual(len(store.list()), 3)
        self.assertEqual(store.find_by_phone("9000000000").id, "2")


if __name__ == '__main__':
    unittest.main()
