"""
Payment gateway adapter.

Initiates consultation payments with Flutterwave (card, Sierra Leone mobile
money, bank transfer) or handles them locally (cash, mock mode), and
normalises every provider answer into a :class:`PaymentResponse`.

The adapter never blocks waiting for settlement: every rail answers
``pending`` and the final status arrives later through the webhook or the
reconciliation job. Failures are returned, not raised, from :meth:`initiate`.
"""

from __future__ import annotations

import logging
import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from app.core.config import Settings, get_settings
from app.models.payment import MOBILE_MONEY_METHODS, PaymentMethod, PaymentProvider, PaymentStatus

logger = logging.getLogger(__name__)


MOBILE_MONEY_NETWORKS = {
    PaymentMethod.ORANGE_MONEY: "orange_money",
    PaymentMethod.AFRICELL_MONEY: "africell",
    PaymentMethod.MTN_MONEY: "mtn",
    # QMoney is not a Flutterwave network; it settles through MTN
    PaymentMethod.QMONEY: "mtn",
}

USSD_CODES = {
    PaymentMethod.ORANGE_MONEY: "*144#",
    PaymentMethod.AFRICELL_MONEY: "*133#",
    PaymentMethod.MTN_MONEY: "*134#",
    PaymentMethod.QMONEY: "*155#",
}

MOCK_PREFIXES = {
    PaymentMethod.CARD: "CARD",
    PaymentMethod.ORANGE_MONEY: "OM",
    PaymentMethod.AFRICELL_MONEY: "AF",
    PaymentMethod.MTN_MONEY: "MTN",
    PaymentMethod.QMONEY: "QM",
    PaymentMethod.BANK_TRANSFER: "BT",
    PaymentMethod.CASH: "CSH",
}

SUCCESS_STATUSES = {"successful", "completed", "success"}
FAILURE_STATUSES = {"failed", "cancelled", "canceled", "error"}


def map_gateway_status(gateway_status: Optional[str]) -> PaymentStatus:
    """Collapse the provider's status vocabulary into pending/completed/failed."""
    value = (gateway_status or "").strip().lower()
    if value in SUCCESS_STATUSES:
        return PaymentStatus.COMPLETED
    if value in FAILURE_STATUSES:
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING


def format_leone(amount: int) -> str:
    return f"Le {amount:,}"


def mobile_money_instruction(method: PaymentMethod, amount: int) -> str:
    code = USSD_CODES.get(method)
    if code:
        return f"Dial {code} and follow prompts to pay {format_leone(amount)}"
    return f"Complete payment via {method.value} for {format_leone(amount)}"


def _random_suffix(length: int = 9) -> str:
    alphabet = string.ascii_uppercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def _millis() -> int:
    return int(time.time() * 1000)


class GatewayCallError(Exception):
    """Provider answered with a non-success envelope"""


@dataclass
class PaymentRequest:
    amount: int
    payment_method: PaymentMethod
    consultation_id: str
    user_id: str
    phone_number: Optional[str] = None
    email: Optional[str] = None
    customer_name: Optional[str] = None
    description: Optional[str] = None
    redirect_url: Optional[str] = None


@dataclass
class PaymentResponse:
    success: bool
    transaction_id: str
    status: PaymentStatus
    message: str
    reference: Optional[str] = None
    provider: PaymentProvider = PaymentProvider.FLUTTERWAVE
    payment_link: Optional[str] = None
    payment_instructions: Optional[str] = None
    gateway_response: Optional[Dict[str, Any]] = field(default=None, repr=False)


@dataclass
class PaymentVerification:
    transaction_id: str
    reference: Optional[str]
    status: PaymentStatus
    verified: bool
    amount: Optional[float] = None
    currency: Optional[str] = None


@dataclass
class GatewayTransaction:
    id: str
    reference: Optional[str]
    amount: float
    status: str
    currency: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class RefundResult:
    success: bool
    message: str
    refund_id: Optional[str] = None


class PaymentGatewayService:
    """Flutterwave-backed implementation of the payment gateway contract."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self.base_url = self.settings.FLUTTERWAVE_BASE_URL.rstrip("/")
        self.timeout = self.settings.GATEWAY_TIMEOUT_SECONDS
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.settings.FLUTTERWAVE_SECRET_KEY and self.settings.FLUTTERWAVE_PUBLIC_KEY)

    def use_mock(self) -> bool:
        return self.settings.ENABLE_MOCK_PAYMENTS or (
            not self.is_configured() and not self.settings.is_production
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.settings.FLUTTERWAVE_SECRET_KEY}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
            transport=self._transport,
        )

    def _tx_ref(self, consultation_id: str) -> str:
        return f"HC-{consultation_id}-{_millis()}"

    def _customer_email(self, request: PaymentRequest) -> str:
        return request.email or f"user{request.user_id}@healthconnect.app"

    async def _post(self, path: str, payload: Dict[str, Any], params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        async with self._client() as client:
            response = await client.post(path, json=payload, params=params)
        data = response.json()
        if response.is_error or data.get("status") != "success":
            raise GatewayCallError(data.get("message") or f"Gateway returned HTTP {response.status_code}")
        return data

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    async def initiate(self, request: PaymentRequest) -> PaymentResponse:
        """Start a payment; always returns a normalised response."""
        try:
            if self.use_mock():
                return self._initiate_mock(request)

            if not self.is_configured():
                raise GatewayCallError(
                    "Flutterwave is not configured. Set FLUTTERWAVE_SECRET_KEY and FLUTTERWAVE_PUBLIC_KEY."
                )

            method = PaymentMethod(request.payment_method)
            if method == PaymentMethod.CARD:
                return await self._initiate_card(request)
            if method in MOBILE_MONEY_METHODS:
                return await self._initiate_mobile_money(request, method)
            if method == PaymentMethod.BANK_TRANSFER:
                return await self._initiate_bank_transfer(request)
            return self._initiate_cash(request)

        except httpx.TimeoutException:
            logger.error(f"Payment gateway timed out after {self.timeout}s for consultation {request.consultation_id}")
            return self._failed("Payment gateway timed out. Please retry.")
        except (httpx.HTTPError, GatewayCallError, ValueError) as e:
            logger.error(f"Payment gateway error for consultation {request.consultation_id}: {e}")
            return self._failed(str(e) or "Payment processing failed")

    def _failed(self, message: str) -> PaymentResponse:
        return PaymentResponse(
            success=False,
            transaction_id=f"TXN{_millis()}",
            status=PaymentStatus.FAILED,
            message=message,
        )

    async def _initiate_card(self, request: PaymentRequest) -> PaymentResponse:
        tx_ref = self._tx_ref(request.consultation_id)
        redirect_url = request.redirect_url or f"{self.settings.APP_URL}/payments/callback"
        data = await self._post(
            "/payments",
            {
                "tx_ref": tx_ref,
                "amount": request.amount,
                "currency": self.settings.PAYMENT_CURRENCY,
                "redirect_url": redirect_url,
                "payment_options": "card",
                "customer": {
                    "email": self._customer_email(request),
                    "phone_number": request.phone_number or "",
                    "name": request.customer_name or "Customer",
                },
                "customizations": {
                    "title": "HealthConnect Consultation Payment",
                    "description": request.description or f"Payment for consultation {request.consultation_id}",
                },
                "meta": {
                    "consultation_id": request.consultation_id,
                    "user_id": request.user_id,
                    "payment_method": PaymentMethod.CARD.value,
                },
            },
        )
        payload = data.get("data") or {}
        return PaymentResponse(
            success=True,
            transaction_id=f"FLW-{payload.get('id')}" if payload.get("id") else tx_ref,
            reference=payload.get("tx_ref") or tx_ref,
            status=PaymentStatus.PENDING,
            message="Payment link generated. Please complete payment.",
            payment_link=payload.get("link"),
            gateway_response=data,
        )

    async def _initiate_mobile_money(self, request: PaymentRequest, method: PaymentMethod) -> PaymentResponse:
        if not request.phone_number:
            raise ValueError("Phone number is required for mobile money payment")

        tx_ref = self._tx_ref(request.consultation_id)
        data = await self._post(
            "/charges",
            {
                "tx_ref": tx_ref,
                "amount": request.amount,
                "currency": self.settings.PAYMENT_CURRENCY,
                "network": MOBILE_MONEY_NETWORKS[method],
                "email": self._customer_email(request),
                "phone_number": request.phone_number,
                "fullname": request.customer_name or "Customer",
                "meta": {
                    "consultation_id": request.consultation_id,
                    "user_id": request.user_id,
                    "payment_method": method.value,
                },
            },
            params={"type": "mobile_money_sierra_leone"},
        )
        payload = data.get("data") or {}
        return PaymentResponse(
            success=True,
            transaction_id=f"FLW-{payload.get('id')}" if payload.get("id") else tx_ref,
            reference=payload.get("tx_ref") or tx_ref,
            status=PaymentStatus.PENDING,
            message="Mobile money payment initiated. Please follow the prompts.",
            payment_instructions=mobile_money_instruction(method, request.amount),
            gateway_response=data,
        )

    async def _initiate_bank_transfer(self, request: PaymentRequest) -> PaymentResponse:
        tx_ref = self._tx_ref(request.consultation_id)
        name_parts = (request.customer_name or "Customer").split(" ")
        try:
            data = await self._post(
                "/virtual-account-numbers",
                {
                    "email": self._customer_email(request),
                    "is_permanent": False,
                    "tx_ref": tx_ref,
                    "firstname": name_parts[0],
                    "lastname": " ".join(name_parts[1:]),
                    "amount": request.amount,
                    "currency": self.settings.PAYMENT_CURRENCY,
                    "meta": {
                        "consultation_id": request.consultation_id,
                        "user_id": request.user_id,
                    },
                },
            )
        except GatewayCallError as e:
            # No virtual account; fall back to static transfer instructions
            logger.warning(f"Virtual account creation failed, returning static instructions: {e}")
            return PaymentResponse(
                success=True,
                transaction_id=f"BT{_millis()}",
                reference=tx_ref,
                status=PaymentStatus.PENDING,
                message="Bank transfer instructions provided.",
                payment_instructions=(
                    f"Transfer {format_leone(request.amount)} to the HealthConnect account "
                    f"quoting reference {tx_ref}"
                ),
            )

        payload = data.get("data") or {}
        return PaymentResponse(
            success=True,
            transaction_id=f"FLW-{payload.get('id')}" if payload.get("id") else tx_ref,
            reference=payload.get("tx_ref") or tx_ref,
            status=PaymentStatus.PENDING,
            message="Bank transfer details generated.",
            payment_instructions=(
                f"Transfer {format_leone(request.amount)} to Account: {payload.get('account_number')}, "
                f"Bank: {payload.get('bank_name')}"
            ),
            gateway_response=data,
        )

    def _initiate_cash(self, request: PaymentRequest) -> PaymentResponse:
        transaction_id = f"CSH{_millis()}{_random_suffix()}"
        return PaymentResponse(
            success=True,
            transaction_id=transaction_id,
            reference=transaction_id,
            provider=PaymentProvider.MANUAL,
            status=PaymentStatus.PENDING,
            message="Cash payment instructions provided.",
            payment_instructions=(
                f"Visit any authorized HealthConnect agent to pay {format_leone(request.amount)} in cash. "
                f"Show this transaction ID: {transaction_id}"
            ),
        )

    def _initiate_mock(self, request: PaymentRequest) -> PaymentResponse:
        logger.warning("Using MOCK payment gateway - not for production")
        method = PaymentMethod(request.payment_method)
        transaction_id = f"{MOCK_PREFIXES.get(method, 'TXN')}{_millis()}{_random_suffix()}"
        reference = f"MOCK-{transaction_id}"

        if method == PaymentMethod.CASH:
            instructions = f"[MOCK] Visit agent to pay {format_leone(request.amount)}. Transaction ID: {reference}"
        else:
            instructions = f"[MOCK] {mobile_money_instruction(method, request.amount)}"

        return PaymentResponse(
            success=True,
            transaction_id=transaction_id,
            reference=reference,
            provider=PaymentProvider.MOCK,
            status=PaymentStatus.PENDING,
            message=f"[MOCK] Payment initiated via {method.value}. Use admin override to mark as completed.",
            payment_instructions=instructions,
        )

    # ------------------------------------------------------------------
    # Status polling, listing, refunds
    # ------------------------------------------------------------------

    async def verify(self, transaction_id: str, method: Optional[PaymentMethod] = None) -> PaymentVerification:
        """Poll the provider for the current status of a stored reference."""
        if self.use_mock():
            return PaymentVerification(
                transaction_id=transaction_id,
                reference=transaction_id,
                status=PaymentStatus.PENDING,
                verified=True,
            )

        if method == PaymentMethod.CASH:
            # Cash is settled by an agent, the provider knows nothing about it
            return PaymentVerification(
                transaction_id=transaction_id,
                reference=transaction_id,
                status=PaymentStatus.PENDING,
                verified=False,
            )

        try:
            async with self._client() as client:
                response = await client.get(
                    "/transactions/verify_by_reference",
                    params={"tx_ref": transaction_id},
                )
            data = response.json()
            if response.is_error or data.get("status") != "success":
                raise GatewayCallError(data.get("message") or "Payment verification failed")

            transaction = data.get("data") or {}
            return PaymentVerification(
                transaction_id=f"FLW-{transaction.get('id')}",
                reference=transaction.get("tx_ref") or transaction_id,
                status=map_gateway_status(transaction.get("status")),
                verified=True,
                amount=transaction.get("amount"),
                currency=transaction.get("currency"),
            )
        except (httpx.HTTPError, GatewayCallError, ValueError) as e:
            logger.error(f"Payment verification error for {transaction_id}: {e}")
            return PaymentVerification(
                transaction_id=transaction_id,
                reference=transaction_id,
                status=PaymentStatus.FAILED,
                verified=False,
            )

    async def list_transactions(self, start: datetime, end: datetime) -> List[GatewayTransaction]:
        """Every provider transaction between ``start`` and ``end``, all pages.

        Raises on transport or envelope errors; the reconciliation job treats
        a failed listing as fatal for the run.
        """
        if not self.settings.FLUTTERWAVE_SECRET_KEY:
            raise GatewayCallError("FLUTTERWAVE_SECRET_KEY not configured")

        transactions: List[GatewayTransaction] = []
        page = 1
        async with self._client() as client:
            while True:
                response = await client.get(
                    "/transactions",
                    params={
                        "from": start.strftime("%Y-%m-%d"),
                        "to": end.strftime("%Y-%m-%d"),
                        "page": str(page),
                        "perPage": str(self.settings.GATEWAY_PAGE_SIZE),
                    },
                )
                data = response.json()
                if response.is_error or data.get("status") != "success":
                    raise GatewayCallError(data.get("message") or "Failed to fetch Flutterwave transactions")

                for item in data.get("data") or []:
                    transactions.append(
                        GatewayTransaction(
                            id=str(item.get("id", "unknown")),
                            reference=item.get("tx_ref") or item.get("flw_ref"),
                            amount=item.get("amount") or 0,
                            status=item.get("status") or "unknown",
                            currency=item.get("currency"),
                            created_at=item.get("created_at"),
                        )
                    )

                page_info = (data.get("meta") or {}).get("page_info") or {}
                total_pages = int(page_info.get("total_pages") or 1)
                if page >= total_pages:
                    break
                page += 1

        logger.info(f"Fetched {len(transactions)} transaction(s) from Flutterwave")
        return transactions

    async def refund(self, gateway_transaction_id: str, amount: int) -> RefundResult:
        """Full or partial refund of a settled provider transaction."""
        if self.use_mock():
            return RefundResult(success=True, refund_id=f"MOCK-RF{_millis()}", message="[MOCK] Refund accepted")

        flw_id = gateway_transaction_id.replace("FLW-", "")
        try:
            data = await self._post(f"/transactions/{flw_id}/refund", {"amount": amount})
        except httpx.TimeoutException:
            return RefundResult(success=False, message="Payment gateway timed out")
        except (httpx.HTTPError, GatewayCallError, ValueError) as e:
            return RefundResult(success=False, message=str(e))

        payload = data.get("data") or {}
        return RefundResult(
            success=True,
            refund_id=str(payload.get("id")) if payload.get("id") else None,
            message=data.get("message") or "Refund initiated",
        )


_gateway: Optional[PaymentGatewayService] = None


def get_payment_gateway() -> PaymentGatewayService:
    global _gateway
    if _gateway is None:
        _gateway = PaymentGatewayService()
    return _gateway
