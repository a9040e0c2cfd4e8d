"""
Sign-In with Ethereum authentication for the order stream.

The stream only accepts connections that prove control of a wallet: the
client fetches a one-time nonce, signs a SIWE challenge embedding it and
sends the signed challenge as the X-Auth-Data handshake header.
"""

import re
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from urllib.parse import urlparse

import aiohttp
from eth_account import Account
from eth_account.messages import encode_defunct

from .errors import OrderStreamAuthError
from .utils import strip_0x_prefix

logger = logging.getLogger(__name__)

_PRIVATE_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")

SIWE_STATEMENT = "Boundless Order Stream"
SIWE_VERSION = "1"
SIWE_CHAIN_ID = 1


@dataclass(frozen=True)
class SignatureParts:
    """ECDSA signature split the way the stream expects it."""
    r: str
    s: str
    v: str
    y_parity: str

    def as_dict(self) -> Dict[str, str]:
        return {"r": self.r, "s": self.s, "v": self.v, "yParity": self.y_parity}


class WalletSigner:
    """secp256k1 personal-message signer for the client wallet."""

    def __init__(self, private_key: str):
        """
        Args:
            private_key: 64 hex characters, with or without a 0x prefix
        """
        if not private_key:
            raise OrderStreamAuthError("Private key is required")

        clean_key = strip_0x_prefix(private_key.strip())
        if not _PRIVATE_KEY_RE.match(clean_key):
            raise OrderStreamAuthError("Invalid private key format. Expected 64-character hex string")

        try:
            self._account = Account.from_key(bytes.fromhex(clean_key))
        except Exception as e:
            raise OrderStreamAuthError(f"Failed to load private key: {e}")

        logger.info(f"Loaded wallet {self._account.address}")

    @property
    def address(self) -> str:
        return self._account.address

    def sign_message(self, message: str) -> SignatureParts:
        """Sign a text message with EIP-191 personal_sign semantics."""
        try:
            signed = self._account.sign_message(encode_defunct(text=message))
        except Exception as e:
            raise OrderStreamAuthError(f"Failed to sign message: {e}")

        logger.debug(f"Signed message: {message[:50]}...")
        return SignatureParts(
            r="0x" + signed.r.to_bytes(32, "big").hex(),
            s="0x" + signed.s.to_bytes(32, "big").hex(),
            v=hex(signed.v),
            y_parity=hex(signed.v - 27),
        )


def format_issued_at(moment: datetime) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SiweAuth:
    """Builds the signed SIWE credential for the stream handshake."""

    def __init__(self, signer: WalletSigner, base_url: str, request_timeout: float = 10.0):
        self.signer = signer
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)

    @property
    def address(self) -> str:
        return self.signer.address

    async def fetch_nonce(self) -> str:
        """Fetch a one-time nonce for the client address."""
        url = f"{self.base_url}/api/nonce/{self.address}"
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.get(url) as response:
                    response.raise_for_status()
                    data = await response.json()
            nonce = data["nonce"]
        except Exception as e:
            raise OrderStreamAuthError(f"Failed to fetch nonce from {url}: {e}")

        if not isinstance(nonce, str) or not nonce:
            raise OrderStreamAuthError(f"Nonce endpoint returned an invalid nonce: {nonce!r}")

        logger.debug(f"Fetched nonce for {self.address}")
        return nonce

    def build_challenge(self, nonce: str, issued_at: Optional[datetime] = None) -> str:
        """Render the SIWE challenge text."""
        issued_at = issued_at or datetime.now(timezone.utc)
        authority = urlparse(self.base_url).netloc
        return "\n".join([
            f"{authority} wants you to sign in with your Ethereum account:",
            self.address,
            "",
            SIWE_STATEMENT,
            "",
            f"URI: {self.base_url}",
            f"Version: {SIWE_VERSION}",
            f"Chain ID: {SIWE_CHAIN_ID}",
            f"Nonce: {nonce}",
            f"Issued At: {format_issued_at(issued_at)}",
        ])

    async def create_auth_message(self) -> Dict[str, Any]:
        """Fetch a nonce, sign the challenge and return the credential."""
        nonce = await self.fetch_nonce()
        message = self.build_challenge(nonce)
        signature = self.signer.sign_message(message)
        return {
            "message": message,
            "signature": signature.as_dict(),
        }

    async def auth_header_value(self) -> str:
        """Credential serialized for the X-Auth-Data header."""
        return json.dumps(await self.create_auth_message())
