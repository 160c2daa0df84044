# unhash/payments/middleware.py
"""
FastAPI middleware for x402 payment verification on uploads.

This module provides HTTP middleware that:
1. Intercepts requests to the upload endpoints
2. Prices the upload from its declared Content-Length
3. Charges a prepaid Pay-Token balance when one covers the price
4. Otherwise verifies the X-PAYMENT header via the facilitator
5. Settles payments via the facilitator and credits any surplus to the Pay-Token
6. Returns 402 Payment Required when needed

Payment is checked before the upload handler reads a single body byte.
Uses the official x402 Python SDK for payment handling.
"""
import json
import logging
from typing import Callable, List, Optional, Tuple

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from x402.types import PaymentRequirements, PaymentPayload, SettleResponse
from x402.facilitator import FacilitatorClient
from x402.encoding import safe_base64_decode, safe_base64_encode

from unhash.core.config import Settings
from unhash.payments.balance import BalanceLedger
from unhash.payments.channel import PLACEHOLDER_ADDRESS, is_valid_pay_token
from unhash.payments.pricing import PriceSchedule

logger = logging.getLogger(__name__)

# x402 protocol constants
X402_VERSION = 1
X_PAYMENT_HEADER = "X-PAYMENT"
X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"

# Prepaid balance headers
PAY_TOKEN_HEADER = "Pay-Token"
PAY_BALANCE_HEADER = "Pay-Balance"

# USDC contract addresses by network
USDC_ADDRESSES = {
    "base": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    "base-sepolia": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
}


def protected_endpoints(settings: Settings) -> List[Tuple[str, str]]:
    """Endpoints that require payment under the given configuration."""
    endpoints = [("POST", "/upload")]
    if settings.UNHASH_ROOT_UPLOAD_ENABLED:
        endpoints.append(("POST", "/"))
    return endpoints


def is_protected_endpoint(method: str, path: str, endpoints: List[Tuple[str, str]]) -> bool:
    """Check if the request matches a protected endpoint (trailing slash insensitive)."""
    normalized = path.rstrip("/") or "/"
    for protected_method, protected_path in endpoints:
        if method == protected_method and normalized == (protected_path.rstrip("/") or "/"):
            return True
    return False


def get_client_ip(request: Request) -> str:
    """Address recorded against an upload payment in the gate logs.

    The left-most X-Forwarded-For hop wins, then X-Real-IP, then the socket peer.
    """
    for header in ("X-Forwarded-For", "X-Real-IP"):
        value = request.headers.get(header)
        if value:
            return value.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def declared_content_length(request: Request) -> Optional[int]:
    """Parse Content-Length, returning None if absent or malformed."""
    content_length = request.headers.get("Content-Length")
    if content_length is None or not content_length.isdigit():
        return None
    return int(content_length)


def create_payment_requirements(
    request: Request,
    settings: Settings,
    price_units: int,
    description: str = "Object upload"
) -> PaymentRequirements:
    """
    Create PaymentRequirements for x402 402 response.

    Args:
        request: The incoming request
        settings: Application settings (network and payee)
        price_units: Price in settlement units (USDC has 6 decimals)
        description: Description of the resource/operation

    Returns:
        PaymentRequirements object for the x402 response
    """
    network = settings.X402_NETWORK
    pay_to = settings.X402_PAY_TO_ADDRESS

    if not pay_to:
        logger.warning("X402_PAY_TO_ADDRESS not configured")
        pay_to = PLACEHOLDER_ADDRESS

    asset = USDC_ADDRESSES.get(network, USDC_ADDRESSES["base-sepolia"])

    return PaymentRequirements(
        scheme="exact",
        network=network,
        max_amount_required=str(price_units),
        resource=str(request.url),
        description=description,
        mime_type="application/json",
        pay_to=pay_to,
        max_timeout_seconds=300,  # 5 minutes
        asset=asset,
        extra=None
    )


def create_402_response(
    payment_requirements: PaymentRequirements,
    error_message: str = "Payment required"
) -> JSONResponse:
    """402 offering the single x402 term that would pay for this upload."""
    return JSONResponse(
        status_code=402,
        content={
            "x402Version": X402_VERSION,
            "error": error_message,
            "accepts": [payment_requirements.model_dump(by_alias=True)],
        },
    )


def decode_payment_header(header_value: str) -> Optional[PaymentPayload]:
    """
    Parse the payer's X-PAYMENT header.

    Args:
        header_value: Base64 JSON as produced by an x402 client

    Returns:
        The PaymentPayload, or None when the header is unusable; the gate
        answers None with a fresh 402 instead of an error.
    """
    if not header_value:
        logger.warning("Upload payment rejected: X-PAYMENT is empty")
        return None

    try:
        # the SDK helper raises on bad base64 or non-UTF-8 bytes
        payload_json = safe_base64_decode(header_value)
        return PaymentPayload.model_validate(json.loads(payload_json))
    except json.JSONDecodeError as e:
        logger.warning(f"Upload payment rejected: X-PAYMENT is not JSON ({e})")
    except ValueError as e:
        logger.warning(f"Upload payment rejected: X-PAYMENT is not a valid payload ({e})")
    return None


def encode_payment_response(settle_response: SettleResponse) -> str:
    """Settlement receipt returned to the uploader in X-PAYMENT-RESPONSE."""
    receipt = json.dumps(settle_response.model_dump(by_alias=True))
    return safe_base64_encode(receipt.encode("utf-8"))


def authorized_amount(payment_payload: PaymentPayload) -> Optional[int]:
    """Amount the payer authorized, in settlement units, if the scheme carries one."""
    try:
        return int(payment_payload.payload.authorization.value)
    except (AttributeError, TypeError, ValueError):
        return None


class X402Middleware(BaseHTTPMiddleware):
    """
    x402 payment gate for the upload endpoints.

    When X402_ENABLED=true, this middleware:
    - Prices the upload from Content-Length (default quote size if absent)
    - Charges a prepaid Pay-Token balance when it covers the price
    - Returns HTTP 402 with payment requirements if no valid payment
    - Verifies and settles payments via the configured facilitator

    When X402_ENABLED=false, all requests pass through unchanged.
    """

    def __init__(
        self,
        app,
        settings: Settings,
        schedule: Optional[PriceSchedule] = None,
        ledger: Optional[BalanceLedger] = None,
        facilitator_client: Optional[FacilitatorClient] = None,
    ):
        super().__init__(app)
        self.settings = settings
        self.schedule = schedule or PriceSchedule.from_settings(settings)
        self.ledger = ledger if ledger is not None else BalanceLedger()
        self.endpoints = protected_endpoints(settings)
        self._facilitator_client = facilitator_client

    @property
    def facilitator_client(self) -> FacilitatorClient:
        """Lazy initialization of facilitator client."""
        if self._facilitator_client is None:
            self._facilitator_client = FacilitatorClient(
                {"url": self.settings.X402_FACILITATOR_URL}
            )
        return self._facilitator_client

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        if not self.settings.X402_ENABLED:
            return await call_next(request)

        if not is_protected_endpoint(request.method, request.url.path, self.endpoints):
            return await call_next(request)

        client_ip = get_client_ip(request)
        logger.info(f"x402: Processing upload from {client_ip}: {request.method} {request.url.path}")

        size_bytes = declared_content_length(request)
        if size_bytes is None:
            size_bytes = self.schedule.default_size
        price = self.schedule.price(size_bytes)

        pay_token = request.headers.get(PAY_TOKEN_HEADER)
        if not is_valid_pay_token(pay_token):
            pay_token = None

        if pay_token and self.ledger.debit(pay_token, price):
            return await self._call_with_balance(request, call_next, pay_token, price)

        payment_requirements = create_payment_requirements(
            request=request,
            settings=self.settings,
            price_units=price,
            description=f"Object upload ({size_bytes} bytes)"
        )

        payment_header = request.headers.get(X_PAYMENT_HEADER)
        if not payment_header:
            logger.info(f"x402: No X-PAYMENT header, returning 402 for {price} units")
            return create_402_response(
                payment_requirements=payment_requirements,
                error_message="X-PAYMENT header is required"
            )

        payment_payload = decode_payment_header(payment_header)
        if payment_payload is None:
            logger.warning(f"x402: Invalid X-PAYMENT header from {client_ip}")
            return create_402_response(
                payment_requirements=payment_requirements,
                error_message="Invalid X-PAYMENT header format"
            )

        try:
            verify_response = await self.facilitator_client.verify(
                payment_payload, payment_requirements
            )
        except Exception as e:
            logger.error(f"x402: Facilitator verification failed: {e}")
            return JSONResponse(
                status_code=502,
                content={"error": "Payment verification failed", "detail": str(e)}
            )

        if not verify_response.is_valid:
            logger.warning(f"x402: Payment verification failed: {verify_response.invalid_reason}")
            return create_402_response(
                payment_requirements=payment_requirements,
                error_message=f"Payment verification failed: {verify_response.invalid_reason or 'Unknown reason'}"
            )

        logger.info(f"x402: Payment verified for payer {verify_response.payer}")

        response = await call_next(request)

        if not 200 <= response.status_code < 300:
            return response

        try:
            settle_response = await self.facilitator_client.settle(
                payment_payload, payment_requirements
            )
        except Exception as e:
            # The object is already stored; report success and leave reconciliation to the operator
            logger.error(f"x402: Payment settlement failed: {e}")
            return response

        if not settle_response.success:
            logger.error(f"x402: Settlement rejected: {settle_response.error_reason}")
            return response

        logger.info("x402: Payment settled successfully")
        response.headers[X_PAYMENT_RESPONSE_HEADER] = encode_payment_response(settle_response)

        if pay_token:
            surplus = (authorized_amount(payment_payload) or price) - price
            if surplus > 0:
                self.ledger.credit(pay_token, surplus)
            response.headers[PAY_BALANCE_HEADER] = str(self.ledger.balance(pay_token))

        return response

    async def _call_with_balance(
        self,
        request: Request,
        call_next: Callable[[Request], Response],
        pay_token: str,
        price: int,
    ) -> Response:
        """Run a request already paid from a prepaid balance, refunding on failure."""
        logger.info(f"x402: Charged {price} units to prepaid token {pay_token[:8]}...")
        try:
            response = await call_next(request)
        except Exception:
            self.ledger.credit(pay_token, price)
            raise

        if not 200 <= response.status_code < 300:
            self.ledger.credit(pay_token, price)

        response.headers[PAY_BALANCE_HEADER] = str(self.ledger.balance(pay_token))
        response.headers["X-Payment-Mode"] = "prepaid"
        return response
