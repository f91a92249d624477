import json
from datetime import datetime, timedelta

import httpx
import pytest

from app.core.config import Settings
from app.models.payment import PaymentMethod, PaymentProvider, PaymentStatus
from app.services.payment_gateway import (
    GatewayCallError,
    PaymentGatewayService,
    PaymentRequest,
    map_gateway_status,
)


def _request(method=PaymentMethod.ORANGE_MONEY, phone="+23276123456"):
    return PaymentRequest(
        amount=15000,
        payment_method=method,
        consultation_id="c-1",
        user_id="u-1",
        phone_number=phone,
        email="aminata@example.com",
        customer_name="Aminata Kamara",
    )


def _gateway(settings, handler):
    return PaymentGatewayService(settings=settings, transport=httpx.MockTransport(handler))


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("successful", PaymentStatus.COMPLETED),
        ("Completed", PaymentStatus.COMPLETED),
        ("failed", PaymentStatus.FAILED),
        ("cancelled", PaymentStatus.FAILED),
        ("pending", PaymentStatus.PENDING),
        ("new", PaymentStatus.PENDING),
        (None, PaymentStatus.PENDING),
    ],
)
def test_map_gateway_status(raw, expected):
    assert map_gateway_status(raw) == expected


class TestMockMode:
    @pytest.mark.asyncio
    async def test_unconfigured_gateway_outside_production_uses_mock(self):
        gateway = PaymentGatewayService(settings=Settings(ENVIRONMENT="test"))
        response = await gateway.initiate(_request(PaymentMethod.AFRICELL_MONEY))

        assert gateway.use_mock()
        assert response.success
        assert response.status == PaymentStatus.PENDING
        assert response.provider == PaymentProvider.MOCK
        assert response.transaction_id.startswith("AF")
        assert response.reference == f"MOCK-{response.transaction_id}"
        assert "*133#" in response.payment_instructions

    @pytest.mark.asyncio
    async def test_cash_instructions(self, mock_gateway):
        response = await mock_gateway.initiate(_request(PaymentMethod.CASH))

        assert response.transaction_id.startswith("CSH")
        assert "Visit agent" in response.payment_instructions
        assert response.payment_instructions.endswith(response.reference)

    def test_production_never_falls_back_to_mock(self):
        gateway = PaymentGatewayService(settings=Settings(ENVIRONMENT="production"))
        assert not gateway.use_mock()

    @pytest.mark.asyncio
    async def test_production_without_keys_fails_softly(self):
        gateway = PaymentGatewayService(settings=Settings(ENVIRONMENT="production"))
        response = await gateway.initiate(_request())

        assert not response.success
        assert response.status == PaymentStatus.FAILED
        assert "not configured" in response.message


class TestFlutterwave:
    @pytest.mark.asyncio
    async def test_cash_reference_is_the_id_shown_to_the_agent(self, live_settings):
        def handler(request):
            raise AssertionError("cash payments never call the provider")

        response = await _gateway(live_settings, handler).initiate(_request(PaymentMethod.CASH))

        assert response.success
        assert response.provider == PaymentProvider.MANUAL
        assert response.reference == response.transaction_id
        assert response.reference.startswith("CSH")
        assert response.payment_instructions.endswith(f"Show this transaction ID: {response.reference}")

    @pytest.mark.asyncio
    async def test_mobile_money_charge(self, live_settings):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = request.url
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={"status": "success", "data": {"id": 4411, "tx_ref": seen["body"]["tx_ref"]}},
            )

        response = await _gateway(live_settings, handler).initiate(_request(PaymentMethod.QMONEY))

        assert seen["url"].path == "/v3/charges"
        assert seen["url"].params["type"] == "mobile_money_sierra_leone"
        assert seen["auth"] == "Bearer FLWSECK_TEST-x"
        assert seen["body"]["network"] == "mtn"
        assert seen["body"]["tx_ref"].startswith("HC-c-1-")
        assert response.success
        assert response.status == PaymentStatus.PENDING
        assert response.transaction_id == "FLW-4411"
        assert response.reference == seen["body"]["tx_ref"]
        assert response.payment_instructions == "Dial *155# and follow prompts to pay Le 15,000"

    @pytest.mark.asyncio
    async def test_mobile_money_requires_phone(self, live_settings):
        def handler(request):
            raise AssertionError("gateway must not be called")

        response = await _gateway(live_settings, handler).initiate(_request(phone=None))

        assert not response.success
        assert response.status == PaymentStatus.FAILED
        assert "Phone number is required" in response.message

    @pytest.mark.asyncio
    async def test_card_returns_hosted_link(self, live_settings):
        def handler(request):
            return httpx.Response(200, json={"status": "success", "data": {"link": "https://checkout.test/pay/abc"}})

        response = await _gateway(live_settings, handler).initiate(_request(PaymentMethod.CARD))

        assert response.success
        assert response.payment_link == "https://checkout.test/pay/abc"
        assert response.provider == PaymentProvider.FLUTTERWAVE

    @pytest.mark.asyncio
    async def test_non_success_envelope_becomes_failed_response(self, live_settings):
        def handler(request):
            return httpx.Response(400, json={"status": "error", "message": "Invalid phone number"})

        response = await _gateway(live_settings, handler).initiate(_request())

        assert not response.success
        assert response.status == PaymentStatus.FAILED
        assert response.message == "Invalid phone number"

    @pytest.mark.asyncio
    async def test_timeout_becomes_failed_response(self, live_settings):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        response = await _gateway(live_settings, handler).initiate(_request())

        assert not response.success
        assert response.status == PaymentStatus.FAILED
        assert "timed out" in response.message

    @pytest.mark.asyncio
    async def test_bank_transfer_falls_back_to_static_instructions(self, live_settings):
        def handler(request):
            return httpx.Response(400, json={"status": "error", "message": "Virtual accounts unavailable"})

        response = await _gateway(live_settings, handler).initiate(_request(PaymentMethod.BANK_TRANSFER))

        assert response.success
        assert response.status == PaymentStatus.PENDING
        assert response.reference in response.payment_instructions

    @pytest.mark.asyncio
    async def test_verify_maps_status(self, live_settings):
        def handler(request):
            assert request.url.params["tx_ref"] == "HC-c-1-1"
            return httpx.Response(
                200,
                json={"status": "success", "data": {"id": 7, "tx_ref": "HC-c-1-1", "status": "successful", "amount": 15000}},
            )

        verification = await _gateway(live_settings, handler).verify("HC-c-1-1", PaymentMethod.ORANGE_MONEY)

        assert verification.verified
        assert verification.status == PaymentStatus.COMPLETED
        assert verification.transaction_id == "FLW-7"

    @pytest.mark.asyncio
    async def test_verify_failure_is_unverified(self, live_settings):
        def handler(request):
            return httpx.Response(404, json={"status": "error", "message": "No transaction found"})

        verification = await _gateway(live_settings, handler).verify("HC-x")

        assert not verification.verified

    @pytest.mark.asyncio
    async def test_list_transactions_walks_every_page(self, live_settings):
        pages = []

        def handler(request):
            page = int(request.url.params["page"])
            pages.append(page)
            return httpx.Response(
                200,
                json={
                    "status": "success",
                    "meta": {"page_info": {"total_pages": 2, "current_page": page}},
                    "data": [
                        {"id": page, "tx_ref": f"R{page}", "amount": 15000, "status": "successful"},
                        {"id": page + 100, "flw_ref": f"FLW-REF-{page}", "amount": 5000, "status": "failed"},
                    ],
                },
            )

        end = datetime(2026, 10, 19)
        transactions = await _gateway(live_settings, handler).list_transactions(end - timedelta(days=30), end)

        assert pages == [1, 2]
        assert [t.reference for t in transactions] == ["R1", "FLW-REF-1", "R2", "FLW-REF-2"]

    @pytest.mark.asyncio
    async def test_list_transactions_raises_on_error(self, live_settings):
        def handler(request):
            return httpx.Response(401, json={"status": "error", "message": "Invalid authorization key"})

        with pytest.raises(GatewayCallError):
            await _gateway(live_settings, handler).list_transactions(datetime(2026, 9, 1), datetime(2026, 10, 1))

    @pytest.mark.asyncio
    async def test_refund_posts_to_transaction(self, live_settings):
        def handler(request):
            assert request.url.path == "/v3/transactions/4411/refund"
            assert json.loads(request.content) == {"amount": 15000}
            return httpx.Response(200, json={"status": "success", "message": "Refund initiated", "data": {"id": 55}})

        result = await _gateway(live_settings, handler).refund("FLW-4411", 15000)

        assert result.success
        assert result.refund_id == "55"
