"""
HTTP client for the collectible provider APIs with retry logic.

This module provides a centralized client for the Covalent and OpenSea APIs and
for token-URI metadata documents, handling 429 rate limit and 5xx retries with
exponential backoff.
"""

import random
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from .errors import TransportError
from .networks import MAINNET, MATIC

COVALENT_BASE_URL = "https://api.covalenthq.com/v1"
OPENSEA_BASE_URL = "https://api.opensea.io/api"

# OpenSea endpoint path and the response key holding the asset list
OPENSEA_ENDPOINTS = {
    MAINNET: ("v1/assets", "assets"),
    MATIC: ("v2/assets/matic", "results"),
}
OPENSEA_PAGE_LIMIT = 300

DEFAULT_IPFS_GATEWAY = "https://ipfs.io/ipfs/"

# Retry configuration
DEFAULT_INITIAL_DELAY = 1.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_MAX_DELAY = 16.0  # seconds
DEFAULT_JITTER = 0.1  # ±10%
DEFAULT_TIMEOUT = 20.0  # seconds


class ProviderAPIError(TransportError):
    """Exception raised for provider API errors."""


class ProviderRateLimitError(ProviderAPIError):
    """Exception raised when rate limit is exceeded and retries are exhausted."""


def resolve_token_uri(uri: str, token_id: str, ipfs_gateway: str = DEFAULT_IPFS_GATEWAY) -> str:
    """
    Turn a token URI into a fetchable HTTP URL.

    ERC1155 "{id}" templates are expanded to the 64 hex digit token id and
    ipfs:// URIs are routed through the gateway.

    Examples:
        resolve_token_uri("ipfs://Qm/1.json", "1") -> "https://ipfs.io/ipfs/Qm/1.json"
        resolve_token_uri("https://x/{id}.json", "10") -> "https://x/000...00a.json"
    """
    if "{id}" in uri:
        uri = uri.replace("{id}", format(int(token_id), "064x"))
    if uri.startswith("ipfs://"):
        path = uri[len("ipfs://"):]
        if path.startswith("ipfs/"):
            path = path[len("ipfs/"):]
        uri = f"{ipfs_gateway}{path}"
    return uri


class ProviderClient:
    """
    Centralized provider API client with automatic 429 retry handling.

    Serves as the metadata fetch collaborator of the engine: every provider
    and token metadata request goes through get_json.
    """

    def __init__(
        self,
        covalent_api_key: Optional[str] = None,
        opensea_api_key: Optional[str] = None,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_delay: float = DEFAULT_MAX_DELAY,
        jitter: float = DEFAULT_JITTER,
        timeout: float = DEFAULT_TIMEOUT,
        ipfs_gateway: str = DEFAULT_IPFS_GATEWAY,
    ):
        """
        Initialize the provider client.

        Args:
            covalent_api_key: Covalent API key, sent as the "key" query parameter
            opensea_api_key: OpenSea API key, sent as the X-API-KEY header
            initial_delay: Initial delay in seconds for retry backoff
            backoff_multiplier: Multiplier for exponential backoff
            max_retries: Maximum number of retry attempts
            max_delay: Maximum delay cap in seconds
            jitter: Jitter factor (±percentage) to randomize delays
            timeout: Per-request timeout in seconds
            ipfs_gateway: Gateway prefix used for ipfs:// token URIs
        """
        self.covalent_api_key = covalent_api_key
        self.opensea_api_key = opensea_api_key
        self.initial_delay = initial_delay
        self.backoff_multiplier = backoff_multiplier
        self.max_retries = max_retries
        self.max_delay = max_delay
        self.jitter = jitter
        self.timeout = timeout
        self.ipfs_gateway = ipfs_gateway
        self.session = requests.Session()

    def _sanitize_error_message(self, message: str) -> str:
        """Remove API keys from error messages to prevent credential leakage."""
        for key in (self.covalent_api_key, self.opensea_api_key):
            if key:
                message = message.replace(key, "[REDACTED]")
        return message

    def _apply_jitter(self, delay: float) -> float:
        """Apply random jitter to a delay value."""
        jitter_range = delay * self.jitter
        return delay + random.uniform(-jitter_range, jitter_range)

    def _execute_with_retry(
        self,
        request_func: Callable[[], requests.Response],
    ) -> requests.Response:
        """
        Execute a request function with retry logic for rate limits and server errors.

        Raises:
            ProviderAPIError: For API errors after retries exhausted
            ProviderRateLimitError: When rate limit retries are exhausted
        """
        delay = self.initial_delay

        for attempt in range(self.max_retries + 1):
            try:
                response = request_func()

                if response.status_code == 429:
                    if attempt < self.max_retries:
                        time.sleep(self._apply_jitter(min(delay, self.max_delay)))
                        delay *= self.backoff_multiplier
                        continue
                    raise ProviderRateLimitError(
                        "Rate limit exceeded and max retries reached",
                        status_code=429,
                    )

                if response.status_code == 401:
                    raise ProviderAPIError("Invalid API key", status_code=401)

                if response.status_code >= 500:
                    if attempt < self.max_retries:
                        time.sleep(self._apply_jitter(min(delay, self.max_delay)))
                        delay *= self.backoff_multiplier
                        continue
                    raise ProviderAPIError(
                        f"Server error: {response.status_code}",
                        status_code=response.status_code,
                    )

                if response.status_code >= 400:
                    raise ProviderAPIError(
                        f"Client error: {response.status_code}",
                        status_code=response.status_code,
                    )
                return response

            except requests.RequestException as e:
                if attempt < self.max_retries:
                    time.sleep(self._apply_jitter(min(delay, self.max_delay)))
                    delay *= self.backoff_multiplier
                    continue
                sanitized_msg = self._sanitize_error_message(str(e))
                raise ProviderAPIError(f"Request failed: {sanitized_msg}") from e

        raise ProviderAPIError("Max retries exceeded")

    def get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        GET a URL and decode its JSON body.

        Raises:
            ProviderAPIError: On transport failure or a non-JSON body
        """
        response = self._execute_with_retry(
            lambda: self.session.get(url, params=params, headers=headers, timeout=self.timeout)
        )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderAPIError(f"Invalid JSON from {self._sanitize_error_message(url)}") from e

    def _covalent_params(self) -> Dict[str, Any]:
        return {"key": self.covalent_api_key} if self.covalent_api_key else {}

    def get_covalent_balances(self, chain_id: str, address: str) -> List[Dict[str, Any]]:
        """
        Get all balance items, including NFTs, for an address from Covalent.

        Returns:
            The list under data.items (empty if absent)
        """
        url = f"{COVALENT_BASE_URL}/{chain_id}/address/{address}/balances_v2/"
        params = {"nft": "true", "no-nft-fetch": "false", **self._covalent_params()}
        result = self.get_json(url, params=params)
        return ((result or {}).get("data") or {}).get("items") or []

    def get_covalent_nft_metadata(
        self, chain_id: str, contract: str, token_id: str
    ) -> List[Dict[str, Any]]:
        """
        Get contract and token metadata for one NFT from Covalent.

        Covalent answers with correct contract information for any token id,
        so this also serves contract lookups.
        """
        url = f"{COVALENT_BASE_URL}/{chain_id}/tokens/{contract}/nft_metadata/{token_id}/"
        result = self.get_json(url, params=self._covalent_params())
        return ((result or {}).get("data") or {}).get("items") or []

    def get_opensea_assets(self, network: str, owner: str) -> List[Dict[str, Any]]:
        """
        Get the assets owned by an address from OpenSea.

        Returns an empty list for networks OpenSea does not serve.
        """
        if network not in OPENSEA_ENDPOINTS:
            return []
        path, result_key = OPENSEA_ENDPOINTS[network]
        headers = {"X-API-KEY": self.opensea_api_key} if self.opensea_api_key else None
        result = self.get_json(
            f"{OPENSEA_BASE_URL}/{path}",
            params={"owner": owner, "limit": OPENSEA_PAGE_LIMIT},
            headers=headers,
        )
        return (result or {}).get(result_key) or []

    def get_token_metadata(self, token_uri: str, token_id: str) -> Dict[str, Any]:
        """Fetch the metadata document a token URI points to."""
        result = self.get_json(resolve_token_uri(token_uri, token_id, self.ipfs_gateway))
        if not isinstance(result, dict):
            raise ProviderAPIError("Token metadata is not a JSON object")
        return result
