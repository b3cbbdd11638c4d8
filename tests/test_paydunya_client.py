import json

import httpx
import pytest

from paygate.paydunya_client import PaydunyaClient, ProviderError


def make_client(settings, handler):
    return PaydunyaClient(settings, transport=httpx.MockTransport(handler))


def test_create_invoice_sends_keys_and_payload(settings):
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "response_code": "00",
            "response_text": "https://paydunya.test/checkout/T123",
            "token": "T123",
        })

    invoice = make_client(settings, handler).create_invoice(
        plan_id="DONATION_QUETE_1",
        amount=5000,
        description="Don quete",
        callback_url="https://cb",
        return_url="https://ret",
        cancel_url="https://cancel",
    )

    assert invoice.token == "T123"
    assert invoice.checkout_url == "https://paydunya.test/checkout/T123"
    assert seen["url"] == "https://app.paydunya.com/sandbox-api/v1/checkout-invoice/create"
    assert seen["headers"]["PAYDUNYA-PRIVATE-KEY"] == "test_private_key"
    assert seen["body"]["invoice"]["total_amount"] == 5000
    assert seen["body"]["invoice"]["custom_data"] == {"planId": "DONATION_QUETE_1"}
    assert seen["body"]["actions"]["callback_url"] == "https://cb"


def test_create_invoice_rejects_error_code(settings):
    handler = lambda request: httpx.Response(200, json={"response_code": "1001", "response_text": "Bad keys"})
    with pytest.raises(ProviderError, match="Bad keys"):
        make_client(settings, handler).create_invoice("P", 100, "d", "c", "r", "x")


def test_create_invoice_requires_token(settings):
    handler = lambda request: httpx.Response(200, json={"response_code": "00"})
    with pytest.raises(ProviderError, match="missing token"):
        make_client(settings, handler).create_invoice("P", 100, "d", "c", "r", "x")


def test_confirm_returns_raw_payload(settings):
    def handler(request):
        assert request.url.path.endswith("/checkout-invoice/confirm/T1")
        return httpx.Response(200, json={"response_code": "00", "status": "completed"})

    assert make_client(settings, handler).confirm("T1")["status"] == "completed"


@pytest.mark.parametrize("response", [
    httpx.Response(500, json={"response_code": "00"}),
    httpx.Response(200, text="<html>oops</html>"),
    httpx.Response(200, json=["not", "an", "object"]),
])
def test_confirm_bad_responses_raise_provider_error(settings, response):
    with pytest.raises(ProviderError):
        make_client(settings, lambda request: response).confirm("T1")


def test_confirm_network_error_raises_provider_error(settings):
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(ProviderError):
        make_client(settings, handler).confirm("T1")


def test_live_mode_uses_live_api(settings):
    from dataclasses import replace

    live = replace(settings, paydunya_mode="live")
    assert PaydunyaClient(live).settings.api_base == "https://app.paydunya.com/api/v1"
