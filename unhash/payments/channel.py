# unhash/payments/channel.py
"""
Payment channel addressing for price quotes.

A quote tells the client where to pay and which shared secret identifies its
payments. The destination format depends on the configured plugin:
- x402: "<network>:<pay_to address>"
- ilp-psk: "<account>.~recv.<token>"

Shared secrets are HMAC-SHA256(credentials.secret, token), so they can be
re-derived from the token without storing anything.

Configuration is loaded from unhash/core/config.py:
- UNHASH_PAYMENT_PLUGIN: Plugin name (key of CHANNEL_PLUGINS)
- UNHASH_PAYMENT_CREDENTIALS: JSON object with "secret" and, for ilp-psk, "account"
"""
import base64
import hashlib
import hmac
import logging
import re
import secrets
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Type

from unhash.core.config import Settings

logger = logging.getLogger(__name__)

PAY_TOKEN_REGEX = re.compile(r"^[A-Za-z0-9_-]{16,128}$")
PLACEHOLDER_ADDRESS = "0x0000000000000000000000000000000000000000"


def new_pay_token() -> str:
    """Generate an unpredictable token identifying a payer's channel."""
    return secrets.token_urlsafe(24)


def is_valid_pay_token(token: Optional[str]) -> bool:
    return bool(token) and PAY_TOKEN_REGEX.match(token) is not None


def derive_shared_secret(secret: bytes, token: str) -> str:
    """Derive the per-token shared secret, base64url without padding."""
    digest = hmac.new(secret, token.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


@dataclass(frozen=True)
class ChannelAddress:
    """Where and how a client should pay for a quote."""
    destination: str
    shared_secret: str
    token: str


class ChannelProvider:
    """Base class for payment channel plugins."""

    name = "base"

    def __init__(self, settings: Settings):
        credentials: Mapping[str, str] = settings.UNHASH_PAYMENT_CREDENTIALS or {}
        secret = credentials.get("secret")
        if secret:
            self._secret = secret.encode("utf-8")
        else:
            logger.warning(
                "UNHASH_PAYMENT_CREDENTIALS has no secret - shared secrets will "
                "not survive a restart"
            )
            self._secret = secrets.token_bytes(32)
        self.credentials = credentials
        self.settings = settings

    def destination(self, token: str) -> str:
        raise NotImplementedError

    def address(self, token: Optional[str] = None) -> ChannelAddress:
        """
        Address a payment channel for a quote.

        Args:
            token: The client's Pay-Token; a new one is issued if missing or invalid
        """
        if not is_valid_pay_token(token):
            token = new_pay_token()
        return ChannelAddress(
            destination=self.destination(token),
            shared_secret=derive_shared_secret(self._secret, token),
            token=token,
        )


class X402ChannelProvider(ChannelProvider):
    """Pay the gateway's x402 address; the token only scopes the secret."""

    name = "x402"

    def destination(self, token: str) -> str:
        pay_to = self.settings.X402_PAY_TO_ADDRESS
        if not pay_to:
            logger.warning("X402_PAY_TO_ADDRESS not configured - using placeholder")
            pay_to = PLACEHOLDER_ADDRESS
        return f"{self.settings.X402_NETWORK}:{pay_to}"


class IlpPskChannelProvider(ChannelProvider):
    """Interledger PSK style receive address under the configured account."""

    name = "ilp-psk"

    def __init__(self, settings: Settings):
        super().__init__(settings)
        account = self.credentials.get("account")
        if not account:
            raise ValueError("ilp-psk plugin requires an 'account' in UNHASH_PAYMENT_CREDENTIALS")
        self.account = account

    def destination(self, token: str) -> str:
        return f"{self.account}.~recv.{token}"


CHANNEL_PLUGINS: Dict[str, Type[ChannelProvider]] = {
    X402ChannelProvider.name: X402ChannelProvider,
    IlpPskChannelProvider.name: IlpPskChannelProvider,
}


def create_channel_provider(settings: Settings) -> ChannelProvider:
    """
    Instantiate the plugin named by UNHASH_PAYMENT_PLUGIN.

    Raises:
        ValueError: If the plugin is unknown or misconfigured
    """
    plugin = settings.UNHASH_PAYMENT_PLUGIN
    provider_class = CHANNEL_PLUGINS.get(plugin)
    if provider_class is None:
        raise ValueError(
            f"Unknown payment plugin: {plugin} (available: {', '.join(sorted(CHANNEL_PLUGINS))})"
        )
    logger.info(f"Using payment channel plugin: {plugin}")
    return provider_class(settings)
