# app/reputation/minter.py
"""Client for the service that mints reputation NFTs."""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from requests.exceptions import RequestException

logger = logging.getLogger(__name__)


class MintError(Exception):
    """The minting service refused or failed the request."""


@dataclass(frozen=True)
class MintResult:
    mint: str
    signature: Optional[str] = None


class HttpReputationMinter:
    """
    Mints reputation NFTs through an HTTP minting service.

    The service receives `{wallet, metadata}` and answers with
    `{mint, signature}`. The API key, if any, is sent as a bearer token.
    """

    def __init__(self, url: str, api_key: Optional[str] = None, timeout: float = 30.0):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout

    def mint(self, wallet: str, metadata: Dict[str, Any]) -> MintResult:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = requests.post(
                self.url,
                json={"wallet": wallet, "metadata": metadata},
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except RequestException as e:
            raise MintError(f"Mint request failed: {e}") from e
        except ValueError as e:
            raise MintError(f"Minting service returned invalid JSON: {e}") from e

        mint = body.get("mint")
        if not mint:
            raise MintError(f"Minting service response missing 'mint': {body}")
        return MintResult(mint=mint, signature=body.get("signature"))
