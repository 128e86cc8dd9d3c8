"""Tests for backend error decoding and the Stripe backend."""
import json
from unittest.mock import patch

import pytest
import stripe

from paydriver.exceptions import MalformedRemoteErrorError
from paydriver.payments.base import BackendResult, decode_remote_error
from paydriver.payments.stripe import StripeBackend, error_payload


class TestDecodeRemoteError:
    def test_message_is_extracted(self):
        assert decode_remote_error('{"message": "No such customer", "type": "invalid_request_error"}') == "No such customer"

    def test_capitalized_key(self):
        assert decode_remote_error(b'{"Message": "Card declined"}') == "Card declined"

    @pytest.mark.parametrize("payload", ["not json", "[1, 2]", '{"type": "api_error"}', '{"message": ""}', None])
    def test_malformed_payload_raises(self, payload):
        with pytest.raises(MalformedRemoteErrorError) as exc_info:
            decode_remote_error(payload)
        assert exc_info.value.payload == payload


def test_backend_result():
    assert BackendResult.success("cus_1").ok
    failed = BackendResult.failure('{"message": "nope"}')
    assert not failed.ok
    assert failed.value is None


class TestStripeBackend:
    def setup_method(self):
        self.backend = StripeBackend(api_key="sk_test_123")

    def test_create_customer(self):
        with patch("stripe.Customer.create", return_value=stripe.Customer.construct_from({"id": "cus_X"}, "sk_test_123")) as create:
            result = self.backend.create_customer("a@b.com")

        assert result.ok
        assert result.value == "cus_X"
        create.assert_called_once_with(email="a@b.com", api_key="sk_test_123")

    def test_create_customer_error_keeps_stripe_error_object(self):
        err = stripe.InvalidRequestError(
            "Invalid email address: nope",
            param="email",
            json_body={"error": {"message": "Invalid email address: nope", "type": "invalid_request_error"}},
            http_status=400,
        )
        with patch("stripe.Customer.create", side_effect=err):
            result = self.backend.create_customer("nope")

        assert not result.ok
        assert decode_remote_error(result.error) == "Invalid email address: nope"

    def test_create_card_source(self):
        card = stripe.Card.construct_from({"id": "card_1", "object": "card"}, "sk_test_123")
        with patch("stripe.Customer.create_source", return_value=card) as create_source:
            result = self.backend.create_card_source("cus_X", "tok_1")

        assert result.value == "card_1"
        create_source.assert_called_once_with("cus_X", source="tok_1", api_key="sk_test_123")

    def test_delete_card_source(self):
        with patch("stripe.Customer.delete_source") as delete_source:
            result = self.backend.delete_card_source("card_1", "cus_X")

        assert result.ok
        delete_source.assert_called_once_with("cus_X", "card_1", api_key="sk_test_123")

    def test_create_charge(self):
        charge = stripe.Charge.construct_from(
            {"id": "ch_1", "amount": 500, "currency": "usd", "status": "succeeded", "paid": True},
            "sk_test_123",
        )
        with patch("stripe.Charge.create", return_value=charge) as create:
            result = self.backend.create_charge(500, "usd", "cus_X", "card_1")

        assert result.value.id == "ch_1"
        assert result.value.amount == 500
        assert result.value.customer_id == "cus_X"
        create.assert_called_once_with(
            amount=500, currency="usd", customer="cus_X", source="card_1", api_key="sk_test_123",
        )

    def test_declined_charge(self):
        err = stripe.CardError(
            "Your card was declined.",
            param=None,
            code="card_declined",
            json_body={"error": {"message": "Your card was declined.", "code": "card_declined"}},
            http_status=402,
        )
        with patch("stripe.Charge.create", side_effect=err):
            result = self.backend.create_charge(500, "usd", "cus_X", "card_1")

        assert decode_remote_error(result.error) == "Your card was declined."


def test_error_payload_without_json_body():
    err = stripe.APIConnectionError("Network error")
    assert json.loads(error_payload(err)) == {"message": "Network error"}
