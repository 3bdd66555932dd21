"""
Data models for collectible tracking.

This module defines the canonical per-source item shape (CollectibleDetails),
the normalized entities kept in the store (Collectible, CollectibleContract,
Token), user-supplied entries (CustomNft) and the observable store state.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from web3 import Web3


ERC721 = "erc721"
ERC1155 = "erc1155"
SUPPORTED_NFT_STANDARDS = frozenset({ERC721, ERC1155})

# Source names recorded in provenance
ORIGIN_CUSTOM = "custom"
ORIGIN_COVALENT = "covalent"
ORIGIN_OPENSEA = "opensea"

# CSV column order for output
CSV_COLUMNS = [
    "network",
    "contract_address",
    "token_id",
    "name",
    "standard",
    "token_balance",
    "image",
    "origin",
]

CONTRACT_CSV_COLUMNS = [
    "network",
    "address",
    "name",
    "symbol",
    "standard",
    "logo",
]


def normalize_standard(value: Optional[str]) -> Optional[str]:
    """
    Canonicalize a standard name to lower-case.

    Returns None for empty or unrecognized standards.

    Examples:
        normalize_standard("ERC721") -> "erc721"
        normalize_standard("ERC20") -> None
    """
    if not value:
        return None
    standard = str(value).strip().lower()
    if standard not in SUPPORTED_NFT_STANDARDS:
        return None
    return standard


def collectible_index(contract_address: str, token_id: Any) -> str:
    """Index key of a collectible: lower-cased contract address and token id."""
    return f"{contract_address.lower()}_{token_id}"


def checksum_address(address: str) -> str:
    """Checksum an address when it is a valid hex address, else return it unchanged."""
    if address and Web3.is_address(address):
        return Web3.to_checksum_address(address)
    return address


def is_missing(value: Any) -> bool:
    """A field is missing when it is None or an empty string."""
    return value is None or value == ""


def parse_balance(value: Any) -> Optional[int]:
    """Parse a provider balance (int, decimal or hex string) into an int."""
    if value is None or value == "":
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    try:
        if text.lower().startswith("0x"):
            return int(text, 16)
        return int(text)
    except ValueError:
        return None


@dataclass
class CollectibleDetails:
    """
    Canonical shape of a collectible as produced by a source adapter.

    Every attribute except the identity may be missing; the normalizer
    resolves missing fields before the item reaches the store.
    """

    contract_address: str
    token_id: str
    name: Optional[str] = None
    image: Optional[str] = None
    description: Optional[str] = None
    standard: Optional[str] = None
    token_balance: Optional[int] = None
    contract_name: Optional[str] = None
    contract_symbol: Optional[str] = None
    contract_image: Optional[str] = None
    contract_fallback_logo: Optional[str] = None
    contract_description: Optional[str] = None
    contract_supply: Optional[str] = None
    origin: Tuple[str, ...] = ()

    @property
    def collectible_index(self) -> str:
        return collectible_index(self.contract_address, self.token_id)


@dataclass
class Collectible:
    """A single owned token instance, normalized for the store."""

    address: str  # Checksummed contract address
    token_id: str
    name: Optional[str]
    image: Optional[str]
    description: Optional[str]
    standard: Optional[str]
    token_balance: Optional[int]  # None when the ERC1155 balance lookup failed
    origin: Tuple[str, ...] = ()

    @property
    def collectible_index(self) -> str:
        return collectible_index(self.address, self.token_id)

    def to_csv_row(self, network: str) -> List[str]:
        """Convert collectible to a CSV row (list of strings)."""
        return [
            network,
            self.address,
            self.token_id,
            self.name or "",
            self.standard or "",
            "" if self.token_balance is None else str(self.token_balance),
            self.image or "",
            "+".join(self.origin),
        ]


@dataclass
class CollectibleContract:
    """Metadata of a collectible contract, independent of any token instance."""

    address: str  # Checksummed
    name: Optional[str]
    symbol: Optional[str]
    standard: Optional[str]
    logo: Optional[str] = None
    description: str = ""

    def to_csv_row(self, network: str) -> List[str]:
        """Convert contract to a CSV row (list of strings)."""
        return [
            network,
            self.address,
            self.name or "",
            self.symbol or "",
            self.standard or "",
            self.logo or "",
        ]


@dataclass
class Token:
    """A fungible token tracked alongside collectibles."""

    address: str
    symbol: str
    decimals: int
    image: Optional[str] = None


@dataclass
class CustomNft:
    """
    A collectible entered by the user.

    Field names follow the wallet's preference payload so entries can be
    loaded straight from its JSON.
    """

    nft_address: str
    nft_id: str
    nft_contract_standard: str
    network: str
    description: Optional[str] = None
    nft_image_link: Optional[str] = None
    nft_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CustomNft":
        return cls(
            nft_address=data["nft_address"],
            nft_id=str(data["nft_id"]),
            nft_contract_standard=data.get("nft_contract_standard") or "",
            network=data["network"],
            description=data.get("description"),
            nft_image_link=data.get("nft_image_link"),
            nft_name=data.get("nft_name"),
        )


@dataclass
class SourceResult:
    """
    Result of fetching collectibles from one source.

    collectibles keeps the source's order; collectibles_map indexes the same
    items by collectible index, the last occurrence of a key winning.
    """

    source: str
    collectibles: List[CollectibleDetails] = field(default_factory=list)
    collectibles_map: Dict[str, CollectibleDetails] = field(default_factory=dict)
    error: Optional[str] = None  # Error message if the fetch failed

    def add(self, details: CollectibleDetails) -> None:
        self.collectibles.append(details)
        self.collectibles_map[details.collectible_index] = details


# address -> network -> entities
ScopedMap = Dict[str, Dict[str, list]]


@dataclass
class AssetState:
    """
    Full observable state of the asset store.

    The all_* maps are partitioned by address then network; the unprefixed
    lists are the projection of the active scope.
    """

    all_tokens: ScopedMap = field(default_factory=dict)
    all_collectibles: ScopedMap = field(default_factory=dict)
    all_collectible_contracts: ScopedMap = field(default_factory=dict)
    tokens: List[Token] = field(default_factory=list)
    collectibles: List[Collectible] = field(default_factory=list)
    collectible_contracts: List[CollectibleContract] = field(default_factory=list)
