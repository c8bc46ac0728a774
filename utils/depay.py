"""
DePay managed integration helpers

DePay signs every request it sends us and expects every response signed back:
RSA-PSS over SHA-256 with a 64 byte salt, URL-safe base64 without padding,
carried in the `x-signature` header.
"""
import base64
import json
from decimal import Decimal
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from core import config
from core.config import logger

NATIVE_TOKEN = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"

USDC_ETHEREUM = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
USDC_ARBITRUM = "0xaf88d065e77c8cC2239327C5EDb3A432268e5831"
USDC_BSC = "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d"
USDT_ETHEREUM = "0xdAC17F958D2ee523a2206206994597C13D831ec7"
USDT_ARBITRUM = "0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9"
USDT_BSC = "0x55d398326f99059fF775485246999027B3197955"

TOKEN_SYMBOLS = {
    NATIVE_TOKEN: "ETH",
    USDC_ETHEREUM: "USDC",
    USDC_ARBITRUM: "USDC",
    USDC_BSC: "USDC",
    USDT_ETHEREUM: "USDT",
    USDT_ARBITRUM: "USDT",
    USDT_BSC: "USDT",
}

# Arbitrum first (cheapest gas), then Ethereum mainnet, then BSC stablecoins
ACCEPTED_TOKENS = [
    ("arbitrum", NATIVE_TOKEN),
    ("arbitrum", USDC_ARBITRUM),
    ("arbitrum", USDT_ARBITRUM),
    ("ethereum", NATIVE_TOKEN),
    ("ethereum", USDC_ETHEREUM),
    ("ethereum", USDT_ETHEREUM),
    ("bsc", USDC_BSC),
    ("bsc", USDT_BSC),
]

_PSS = padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=64)


def currency_for_token(blockchain: str, token: str) -> str:
    """Currency label stored on the payment row for a paid token"""
    symbol = TOKEN_SYMBOLS.get(token or "")
    if symbol:
        return symbol
    return (blockchain or "").upper()[:10]


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    value = (value or "").strip().replace("+", "-").replace("/", "_")
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def verify_request(signature: Optional[str], body: bytes) -> bool:
    """Check DePay's x-signature over the raw request body"""
    if not signature:
        logger.warning("[depay] missing x-signature header")
        return False
    pem = (config.DEPAY_PUBLIC_KEY or "").strip()
    if not pem:
        logger.error("[depay] DEPAY_PUBLIC_KEY not configured; rejecting request")
        return False
    try:
        pub = serialization.load_pem_public_key(pem.encode("utf-8"))
        pub.verify(_b64url_decode(signature), body, _PSS, hashes.SHA256())
        return True
    except InvalidSignature:
        logger.warning("[depay] request signature mismatch")
        return False
    except Exception as ex:
        logger.warning(f"[depay] request verification failed: {ex}")
        return False


def sign_response(body: str) -> str:
    pem = (config.DEPAY_PRIVATE_KEY or "").strip()
    if not pem:
        raise RuntimeError("DEPAY_PRIVATE_KEY not configured")
    key = serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
    return _b64url_encode(key.sign(body.encode("utf-8"), _PSS, hashes.SHA256()))


def signed_body(data: dict) -> tuple[str, dict]:
    """Serialize a response and return (body, headers) with the signature attached"""
    body = json.dumps(data, separators=(",", ":"))
    return body, {"Content-Type": "application/json", "x-signature": sign_response(body)}


def build_accept_config(crypto_price) -> dict:
    """Payment options offered in the DePay widget for one tier"""
    amount = float(Decimal(str(crypto_price)))
    return {
        "accept": [
            {
                "blockchain": blockchain,
                "token": token,
                "amount": amount,
                "receiver": config.DEPAY_WALLET_ADDRESS,
            }
            for blockchain, token in ACCEPTED_TOKENS
        ]
    }


def build_widget_config(
    collection_id: int,
    pricing_tier_id: int,
    email: str,
    user_id: Optional[str] = None,
    affiliate_code: Optional[str] = None,
) -> dict:
    """Client-side widget setup; DePay echoes `payload` back to the configuration and callback endpoints"""
    return {
        "integration": config.DEPAY_INTEGRATION_ID,
        "payload": {
            "type": "OWNERSHIP",
            "collectionId": str(collection_id),
            "pricingTierId": str(pricing_tier_id),
            "email": email,
            "userId": user_id or "",
            "affiliateCode": affiliate_code or "",
        },
    }
