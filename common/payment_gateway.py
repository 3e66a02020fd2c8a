"""Moyasar payment gateway client built on httpx."""
from __future__ import annotations

import logging
import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Generator, List, Optional

import httpx

from .config import Settings, get_settings

logger = logging.getLogger(__name__)

MIN_AMOUNT = 1
MAX_AMOUNT = 100_000
USER_AGENT = "HotelPMS/1.0"

_CARD_NUMBER = re.compile(r"^\d{16}$")
_CVC = re.compile(r"^\d{3,4}$")
_STC_PHONE = re.compile(r"^9665\d{8}$")


class PaymentGatewayError(Exception):
    """Gateway call failed; ``status_code`` is the upstream HTTP status when there was one."""

    def __init__(self, message: str, status_code: Optional[int] = None, error_type: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_type = error_type

    @property
    def http_status(self) -> int:
        if self.status_code == 404:
            return 404
        if self.status_code is not None and 400 <= self.status_code < 500:
            return 400
        return 500


class PaymentValidationError(PaymentGatewayError):
    """Request rejected locally before reaching the gateway."""

    @property
    def http_status(self) -> int:
        return 400


def to_minor_units(amount: float) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def validate_amount(amount: float) -> None:
    if not MIN_AMOUNT <= amount <= MAX_AMOUNT:
        raise PaymentValidationError(
            f"Invalid payment amount: {amount}. Amount must be between {MIN_AMOUNT} and {MAX_AMOUNT:,}"
        )


def validate_card_number(number: str) -> bool:
    return bool(_CARD_NUMBER.match(re.sub(r"\s", "", number)))


def validate_expiry(month: int, year: int, today: Optional[date] = None) -> bool:
    today = today or date.today()
    if year < 100:
        year += 2000
    if not 1 <= month <= 12:
        return False
    return (year, month) >= (today.year, today.month)


def validate_cvc(cvc: str) -> bool:
    return bool(_CVC.match(cvc))


def validate_source(source: Dict[str, Any], today: Optional[date] = None) -> None:
    source_type = source.get("type")
    if source_type == "creditcard":
        if not validate_card_number(str(source.get("number", ""))):
            raise PaymentValidationError("Invalid card number provided")
        if not validate_expiry(int(source.get("month", 0)), int(source.get("year", 0)), today):
            raise PaymentValidationError("Invalid card expiry date provided")
        if not validate_cvc(str(source.get("cvc", ""))):
            raise PaymentValidationError("Invalid CVC provided")
    elif source_type == "stcpay":
        if not _STC_PHONE.match(str(source.get("phone", ""))):
            raise PaymentValidationError("Invalid STC Pay phone number. Expected format: 9665XXXXXXXX")
    elif source_type != "url":
        raise PaymentValidationError(f"Unsupported payment source: {source_type}")


def _source_payload(source: Dict[str, Any]) -> Dict[str, Any]:
    source_type = source["type"]
    if source_type == "creditcard":
        return {
            "type": "creditcard",
            "name": source["name"],
            "number": re.sub(r"\s", "", str(source["number"])),
            "month": int(source["month"]),
            "year": int(source["year"]),
            "cvc": str(source["cvc"]),
        }
    if source_type == "stcpay":
        return {"type": "stcpay", "mobile": source["phone"]}
    return {"type": source_type}


class MoyasarClient:
    """Thin synchronous client; every call is a single request with a fixed timeout."""

    def __init__(
        self,
        secret_key: str,
        base_url: str,
        timeout: float = 15.0,
        currency: str = "SAR",
        supported_networks: Optional[List[str]] = None,
        environment: str = "development",
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.currency = currency
        self.supported_networks = supported_networks or ["mada", "visa", "mastercard"]
        self.environment = environment
        self._client = httpx.Client(
            base_url=self.base_url,
            auth=(secret_key, ""),
            timeout=timeout,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[httpx.BaseTransport] = None) -> "MoyasarClient":
        return cls(
            secret_key=settings.moyasar_secret_key,
            base_url=settings.gateway_base_url,
            timeout=settings.moyasar_timeout,
            currency=settings.moyasar_currency,
            supported_networks=settings.moyasar_supported_networks,
            environment=settings.environment,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        logger.info("Gateway %s %s%s", method, self.base_url, path)
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.error("Gateway request timed out: %s %s", method, path)
            raise PaymentGatewayError("Payment request timed out. Please try again later.") from exc
        except httpx.ConnectError as exc:
            logger.error("Could not connect to gateway at %s: %s", self.base_url, exc)
            raise PaymentGatewayError("Could not connect to the payment gateway.") from exc
        except httpx.HTTPError as exc:
            logger.error("Gateway request failed: %s", exc)
            raise PaymentGatewayError(f"Payment gateway request failed: {exc}") from exc

        if response.is_error:
            raise self._error_from_response(response)
        return response.json()

    @staticmethod
    def _error_from_response(response: httpx.Response) -> PaymentGatewayError:
        logger.error("Gateway error %s: %s", response.status_code, response.text)
        try:
            body = response.json()
        except ValueError:
            return PaymentGatewayError(f"Payment gateway error: {response.text}", status_code=response.status_code)
        error_type = body.get("type") if isinstance(body, dict) else None
        message = body.get("message") if isinstance(body, dict) else None
        if error_type == "authentication_error":
            text = f"Authentication failed: {message}. Please check your API keys."
        elif error_type == "validation_error":
            text = f"Validation error: {message}"
        else:
            text = f"Payment gateway error: {message or response.text}"
        return PaymentGatewayError(text, status_code=response.status_code, error_type=error_type)

    def _metadata(self, metadata: Optional[Dict[str, Any]]) -> Dict[str, str]:
        merged = {key: str(value) for key, value in (metadata or {}).items()}
        merged.setdefault("request_source", "hotel_pms")
        merged.setdefault("environment", self.environment)
        return merged

    def create_checkout(
        self,
        amount: float,
        currency: Optional[str] = None,
        description: str = "Hotel Booking Payment",
        metadata: Optional[Dict[str, Any]] = None,
        callback_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a hosted-checkout payment and return where to redirect the payer."""
        validate_amount(amount)
        body: Dict[str, Any] = {
            "amount": to_minor_units(amount),
            "currency": currency or self.currency,
            "description": description,
            "metadata": {**self._metadata(metadata), "created_at": datetime.utcnow().isoformat()},
        }
        if callback_url:
            body["callback_url"] = callback_url
        payment = self._request("POST", "payments", json=body)
        if not payment.get("id"):
            raise PaymentGatewayError("Invalid response received from payment gateway")
        source = payment.get("source") or {}
        checkout_url = source.get("transaction_url") or f"{self.base_url.replace('/v1/', '')}/payment/{payment['id']}"
        return {
            "checkout_url": checkout_url,
            "payment_id": payment["id"],
            "amount": payment.get("amount", body["amount"]),
            "currency": payment.get("currency", body["currency"]),
            "status": payment.get("status", "initiated"),
        }

    def create_payment(
        self,
        amount: float,
        source: Dict[str, Any],
        currency: Optional[str] = None,
        description: str = "Hotel Booking Payment",
        metadata: Optional[Dict[str, Any]] = None,
        callback_url: Optional[str] = None,
        return_url: Optional[str] = None,
        installments: Optional[int] = None,
    ) -> Dict[str, Any]:
        validate_amount(amount)
        validate_source(source)
        body: Dict[str, Any] = {
            "amount": to_minor_units(amount),
            "currency": currency or self.currency,
            "description": description,
            "source": _source_payload(source),
            "metadata": self._metadata(metadata),
            "supported_networks": self.supported_networks,
            "installments": installments or 1,
        }
        if callback_url:
            body["callback_url"] = callback_url
        if return_url:
            body["return_url"] = return_url
        return self._request("POST", "payments", json=body)

    def get_payment(self, payment_id: str) -> Dict[str, Any]:
        return self._request("GET", f"payments/{payment_id}")

    def list_payments(self, page: int = 1, status: Optional[str] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {"page": page}
        if status:
            params["status"] = status
        return self._request("GET", "payments", params=params)

    def capture_payment(self, payment_id: str, amount: Optional[float] = None) -> Dict[str, Any]:
        body = {"amount": to_minor_units(amount)} if amount is not None else {}
        return self._request("POST", f"payments/{payment_id}/capture", json=body)

    def refund_payment(self, payment_id: str, amount: Optional[float] = None, reason: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        if amount is not None:
            body["amount"] = to_minor_units(amount)
        if reason:
            body["reason"] = reason
        return self._request("POST", f"payments/{payment_id}/refund", json=body)


def get_gateway_client() -> Generator[MoyasarClient, None, None]:
    settings = get_settings()
    if not settings.moyasar_secret_key:
        raise PaymentGatewayError("MOYASAR_SECRET_KEY is not configured")
    if settings.is_production and settings.uses_test_gateway_key:
        raise PaymentGatewayError("Configuration error: Cannot use test key in production environment")
    client = MoyasarClient.from_settings(settings)
    try:
        yield client
    finally:
        client.close()
