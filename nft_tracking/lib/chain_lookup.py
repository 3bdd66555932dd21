"""
On-chain lookups for collectible contracts.

ChainLookup is the interface the engine consumes; Web3ChainLookup implements
it over JSON-RPC with ERC-165 capability probes and the ERC721/ERC1155
metadata extensions.
"""

from typing import Any, Optional, Protocol

import requests
from web3 import Web3
from web3.exceptions import Web3Exception

from .errors import TransportError, ValidationError
from .models import ERC721, ERC1155, normalize_standard

ERC721_INTERFACE_ID = "0x80ac58cd"
ERC1155_INTERFACE_ID = "0xd9b67a26"

DEFAULT_RPC_TIMEOUT = 20  # seconds

NFT_ABI = [
    {
        "name": "supportsInterface",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "interfaceId", "type": "bytes4"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "name",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
    },
    {
        "name": "symbol",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
    },
    {
        "name": "tokenURI",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "outputs": [{"name": "", "type": "string"}],
    },
    {
        "name": "ownerOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "name": "uri",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "id", "type": "uint256"}],
        "outputs": [{"name": "", "type": "string"}],
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

ERC1155_BALANCE_ABI = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "account", "type": "address"},
            {"name": "id", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]


class ChainLookupError(TransportError):
    """Exception raised when a contract call fails."""


class ChainLookup(Protocol):
    """Chain lookups consumed by the engine."""

    def get_balance(
        self,
        contract: str,
        owner: str,
        token_id: Optional[str] = None,
        standard: Optional[str] = None,
    ) -> int: ...

    def get_standard(self, contract: str) -> str: ...

    def get_name(self, contract: str) -> str: ...

    def get_symbol(self, contract: str) -> str: ...

    def get_token_uri(self, contract: str, token_id: str, standard: str) -> str: ...


class Web3ChainLookup:
    """
    ChainLookup backed by a web3 HTTP provider.

    Every failing contract call surfaces as ChainLookupError.
    """

    def __init__(self, rpc_url: Optional[str] = None, w3: Optional[Any] = None,
                 timeout: int = DEFAULT_RPC_TIMEOUT):
        if w3 is None:
            if not rpc_url:
                raise ValueError("Either rpc_url or w3 is required")
            w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        self.w3 = w3

    def _contract(self, address: str, abi: list = NFT_ABI) -> Any:
        if not Web3.is_address(address):
            raise ChainLookupError(f"Invalid contract address: {address}")
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    def _call(self, description: str, func: Any) -> Any:
        try:
            return func.call()
        except (Web3Exception, ValueError, requests.RequestException) as e:
            raise ChainLookupError(f"{description} failed: {e}") from e

    def get_standard(self, contract: str) -> str:
        """
        Probe a contract for ERC721 then ERC1155 support.

        Raises:
            ValidationError: If the contract supports neither interface
            ChainLookupError: If the probe call fails
        """
        instance = self._contract(contract)
        for interface_id, standard in ((ERC721_INTERFACE_ID, ERC721), (ERC1155_INTERFACE_ID, ERC1155)):
            supported = self._call(
                f"supportsInterface({interface_id}) on {contract}",
                instance.functions.supportsInterface(bytes.fromhex(interface_id[2:])),
            )
            if supported:
                return standard
        raise ValidationError(f"{contract} is not an ERC721 or ERC1155 contract")

    def get_balance(
        self,
        contract: str,
        owner: str,
        token_id: Optional[str] = None,
        standard: Optional[str] = None,
    ) -> int:
        """
        Balance of an owner.

        With a token id, ERC721 answers 1 or 0 from ownerOf and ERC1155 answers
        the per-id balance. Without a token id the ERC721 balanceOf is used.
        """
        if not Web3.is_address(owner):
            raise ChainLookupError(f"Invalid owner address: {owner}")
        owner = Web3.to_checksum_address(owner)
        if token_id is None:
            return int(self._call(
                f"balanceOf on {contract}",
                self._contract(contract).functions.balanceOf(owner),
            ))

        standard = normalize_standard(standard) or self.get_standard(contract)
        if standard == ERC1155:
            instance = self._contract(contract, ERC1155_BALANCE_ABI)
            return int(self._call(
                f"balanceOf({token_id}) on {contract}",
                instance.functions.balanceOf(owner, int(token_id)),
            ))

        holder = self._call(
            f"ownerOf({token_id}) on {contract}",
            self._contract(contract).functions.ownerOf(int(token_id)),
        )
        return 1 if str(holder).lower() == owner.lower() else 0

    def get_name(self, contract: str) -> str:
        return self._call(f"name on {contract}", self._contract(contract).functions.name())

    def get_symbol(self, contract: str) -> str:
        return self._call(f"symbol on {contract}", self._contract(contract).functions.symbol())

    def get_token_uri(self, contract: str, token_id: str, standard: str) -> str:
        functions = self._contract(contract).functions
        if normalize_standard(standard) == ERC1155:
            return self._call(f"uri({token_id}) on {contract}", functions.uri(int(token_id)))
        return self._call(f"tokenURI({token_id}) on {contract}", functions.tokenURI(int(token_id)))
