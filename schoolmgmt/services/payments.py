import httpx
import logging
from decimal import Decimal
from typing import Dict, Any, List, Optional

from schoolmgmt.config import settings

logger = logging.getLogger(__name__)


class PaymentGatewayError(ValueError):
    """The gateway refused a request or could not be reached."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _headers() -> Dict[str, str]:
    if not settings.PAYSTACK_SECRET_KEY:
        logger.error("Paystack secret key not configured")
        raise PaymentGatewayError("Payment gateway is not properly configured", status_code=500)

    return {
        "Authorization": f"Bearer {settings.PAYSTACK_SECRET_KEY}",
        "Content-Type": "application/json"
    }


def to_minor_units(amount) -> int:
    """Paystack amounts are in the smallest currency unit (kobo)."""
    return int((Decimal(str(amount)) * 100).to_integral_value())


def from_minor_units(amount) -> Decimal:
    return (Decimal(str(amount or 0)) / 100).quantize(Decimal("0.01"))


async def initialize_payment(
    email: str,
    amount,
    reference: str,
    callback_url: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    subaccount: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Initialize a payment transaction with Paystack.

    Args:
        email: Customer's email address
        amount: Amount to charge in the main currency unit (e.g., naira)
        reference: Unique transaction reference generated by us
        callback_url: URL to redirect to after payment
        metadata: Additional data to store with the transaction
        subaccount: School settlement subaccount for split payments

    Returns:
        Dict containing authorization_url, access_code and reference
    """
    headers = _headers()

    payload = {
        "email": email,
        "amount": to_minor_units(amount),
        "reference": reference,
    }

    if callback_url:
        payload["callback_url"] = callback_url

    if metadata:
        payload["metadata"] = metadata

    if subaccount:
        payload["subaccount"] = subaccount

    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{settings.PAYSTACK_BASE_URL}/transaction/initialize",
                headers=headers,
                json=payload,
                timeout=30.0
            )
    except httpx.RequestError as e:
        logger.error(f"Error initializing Paystack payment: {str(e)}")
        raise PaymentGatewayError(f"Payment service connection error: {str(e)}", status_code=500)

    response_data = response.json()

    if response.status_code == 200 and response_data.get("status"):
        return response_data["data"]

    logger.error(f"Paystack initialization failed: {response_data}")
    raise PaymentGatewayError(f"Payment initialization failed: {response_data.get('message', 'Unknown error')}")


async def verify_payment(reference: str) -> Dict[str, Any]:
    """
    Verify a payment transaction with Paystack.

    Returns a dict with ``status`` (the gateway's transaction status:
    "success", "failed", "abandoned", ...), ``amount`` in the main currency
    unit, ``channel``, ``paid_at``, ``metadata``, ``gateway_response`` (the raw
    transaction data) and ``message``.

    Raises:
        PaymentGatewayError: the gateway could not be reached or does not know
        the reference
    """
    headers = _headers()

    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(
                f"{settings.PAYSTACK_BASE_URL}/transaction/verify/{reference}",
                headers=headers,
                timeout=30.0
            )
    except httpx.RequestError as e:
        logger.error(f"Error verifying Paystack payment: {str(e)}")
        raise PaymentGatewayError(f"Payment verification failed: {str(e)}", status_code=500)

    response_data = response.json()

    if response.status_code != 200 or not response_data.get("status"):
        logger.error(f"Paystack verification failed: {response_data}")
        raise PaymentGatewayError(f"Unable to verify payment: {response_data.get('message', 'Verification failed')}")

    data = response_data["data"]

    return {
        "status": data.get("status"),
        "amount": from_minor_units(data.get("amount")),
        "reference": data.get("reference", reference),
        "channel": data.get("channel"),
        "paid_at": data.get("paid_at"),
        "metadata": data.get("metadata") or {},
        "gateway_response": data,
        "message": data.get("gateway_response") or response_data.get("message"),
    }


async def fetch_banks(country: str = "nigeria", currency: str = "NGN") -> List[Dict[str, Any]]:
    """List the banks the gateway can settle to."""
    headers = _headers()

    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(
                f"{settings.PAYSTACK_BASE_URL}/bank",
                headers=headers,
                params={"country": country, "currency": currency},
                timeout=30.0
            )
    except httpx.RequestError as e:
        logger.error(f"Paystack banks fetch error: {str(e)}")
        raise PaymentGatewayError(f"Payment service connection error: {str(e)}", status_code=500)

    response_data = response.json()

    if response.status_code == 200 and response_data.get("status"):
        return response_data["data"]

    logger.error(f"Paystack banks fetch failed: {response_data}")
    raise PaymentGatewayError(response_data.get("message", "Failed to fetch banks"))


async def create_subaccount(
    business_name: str,
    settlement_bank: str,
    account_number: str,
    percentage_charge: float = 2,
) -> Dict[str, Any]:
    """Create a settlement subaccount so a school's fees are split to its own bank account."""
    headers = _headers()

    payload = {
        "business_name": business_name,
        "settlement_bank": settlement_bank,
        "account_number": account_number,
        "percentage_charge": percentage_charge,
    }

    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{settings.PAYSTACK_BASE_URL}/subaccount",
                headers=headers,
                json=payload,
                timeout=30.0
            )
    except httpx.RequestError as e:
        logger.error(f"Paystack subaccount creation error: {str(e)}")
        raise PaymentGatewayError(f"Payment service connection error: {str(e)}", status_code=500)

    response_data = response.json()

    if response.status_code in (200, 201) and response_data.get("status"):
        return response_data["data"]

    logger.error(f"Paystack subaccount creation failed: {response_data}")
    raise PaymentGatewayError(response_data.get("message", "Failed to create subaccount"))
