"""
Collectible sources: user-supplied entries and the provider APIs.

Each source fetches its raw data and converts it to CollectibleDetails. A
source never raises from fetch(); failures are logged and yield an empty
SourceResult so detection progresses from whichever sources succeeded.
"""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional

from .chain_lookup import ChainLookup
from .errors import NotOwnedError, TransportError, ValidationError
from .models import (
    ERC721,
    ERC1155,
    ORIGIN_COVALENT,
    ORIGIN_CUSTOM,
    ORIGIN_OPENSEA,
    CollectibleDetails,
    CustomNft,
    SourceResult,
    is_missing,
    normalize_standard,
    parse_balance,
)
from .networks import BEP_NETWORKS, NFT_SUPPORTED_NETWORKS, OPENSEA_NETWORKS
from .provider_client import ProviderClient

logger = logging.getLogger(__name__)

NFT_PLACEHOLDER_IMAGE = "/images/nft-placeholder.svg"
DEFAULT_MAX_WORKERS = 8


def upgrade_thumbnail(url: str) -> str:
    """Swap OpenSea's 60px thumbnail suffix for the 240px variant."""
    return url.replace("=s60", "=s240")


class BaseCollectibleSource(ABC):
    """
    Abstract base class for collectible sources.

    Provides the error boundary shared by all sources and defines the
    interface each source implements.
    """

    name = ""

    def __init__(self, client: ProviderClient):
        """
        Initialize the source.

        Args:
            client: ProviderClient instance for API and metadata calls
        """
        self.client = client

    def fetch(self, address: str, network: str) -> SourceResult:
        """
        Fetch the collectibles owned by an address on a network.

        Args:
            address: Owner address
            network: Active network name

        Returns:
            SourceResult, empty with error set if the fetch failed
        """
        try:
            return self._fetch(address, network)
        except TransportError as e:
            logger.warning("[%s] fetch failed for %s on %s: %s", self.name, address, network, e)
            return SourceResult(source=self.name, error=str(e))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error("[%s] malformed response for %s on %s: %r", self.name, address, network, e)
            return SourceResult(source=self.name, error=f"Malformed response: {e!r}")

    @abstractmethod
    def _fetch(self, address: str, network: str) -> SourceResult:
        pass


class CustomNftSource(BaseCollectibleSource):
    """
    Collectibles the user entered by hand.

    Each entry's ownership is confirmed on chain; entries that are no longer
    owned are dropped. Missing name, image or description are filled from
    the token's metadata URI.
    """

    name = ORIGIN_CUSTOM

    def __init__(
        self,
        client: ProviderClient,
        chain: ChainLookup,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        super().__init__(client)
        self.chain = chain
        self.max_workers = max_workers
        self._custom_nfts: Dict[str, List[CustomNft]] = {}

    def set_custom_nfts(self, address: str, custom_nfts: Iterable[CustomNft]) -> None:
        self._custom_nfts[address.lower()] = list(custom_nfts)

    def get_custom_nfts(self, address: str) -> List[CustomNft]:
        return list(self._custom_nfts.get(address.lower(), []))

    def _fetch(self, address: str, network: str) -> SourceResult:
        result = SourceResult(source=self.name)
        if not address:
            return result

        entries = [x for x in self.get_custom_nfts(address) if x.network == network]
        if not entries:
            return result

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(entries))) as pool:
            resolved = list(pool.map(lambda entry: self._safe_resolve(entry, address), entries))

        for details in resolved:
            if details is not None:
                result.add(details)
        return result

    def _safe_resolve(self, entry: CustomNft, owner: str) -> Optional[CollectibleDetails]:
        try:
            return self.resolve_entry(entry, owner)
        except NotOwnedError as e:
            logger.warning("[%s] %s", self.name, e)
        except (TransportError, ValidationError, ValueError) as e:
            logger.warning(
                "[%s] skipping %s #%s: %s", self.name, entry.nft_address, entry.nft_id, e
            )
        return None

    def resolve_entry(self, entry: CustomNft, owner: str) -> CollectibleDetails:
        """
        Confirm ownership of one entry and fill its missing metadata.

        Raises:
            NotOwnedError: If the owner's balance is zero
            TransportError: If a chain or metadata call fails
        """
        standard = normalize_standard(entry.nft_contract_standard)
        balance = self.chain.get_balance(entry.nft_address, owner, entry.nft_id, standard)
        if balance == 0:
            raise NotOwnedError(
                f"{entry.nft_address} #{entry.nft_id} is not owned by {owner} anymore"
            )

        description = entry.description
        image = entry.nft_image_link
        nft_name = entry.nft_name
        if is_missing(description) or is_missing(image) or is_missing(nft_name):
            token_uri = self.chain.get_token_uri(
                entry.nft_address, entry.nft_id, standard or self.chain.get_standard(entry.nft_address)
            )
            metadata = self.client.get_token_metadata(token_uri, entry.nft_id)
            description = description or metadata.get("description")
            image = image or metadata.get("image") or metadata.get("image_url")
            nft_name = nft_name or metadata.get("name")

        return CollectibleDetails(
            contract_address=entry.nft_address,
            token_id=str(entry.nft_id),
            name=f"{nft_name}#{entry.nft_id}" if nft_name else None,
            image=image,
            description=description,
            standard=standard,
            token_balance=balance,
            contract_name=nft_name,
            contract_symbol=nft_name,
            contract_image=image,
            contract_fallback_logo=image,
            contract_description=description,
            origin=(self.name,),
        )


class CovalentSource(BaseCollectibleSource):
    """
    Contract-indexer source backed by the Covalent balances API.

    Only networks with a known Covalent chain id are queried.
    """

    name = ORIGIN_COVALENT

    def __init__(self, client: ProviderClient, placeholder_image: str = NFT_PLACEHOLDER_IMAGE):
        super().__init__(client)
        self.placeholder_image = placeholder_image

    def _fetch(self, address: str, network: str) -> SourceResult:
        result = SourceResult(source=self.name)
        chain_id = NFT_SUPPORTED_NETWORKS.get(network)
        if not address or not chain_id:
            return result

        protocol_prefix = "BEP" if network in BEP_NETWORKS else "ERC"
        for item in self.client.get_covalent_balances(chain_id, address):
            if item.get("type") != "nft":
                continue

            contract_address = item["contract_address"]
            base_name = item.get("contract_name")
            contract_fallback_logo = None

            for i, nft in enumerate(item.get("nft_data") or []):
                token_id = str(nft["token_id"])
                if ERC1155 in (nft.get("supports_erc") or []):
                    standard, suffix = ERC1155, "1155"
                else:
                    standard, suffix = ERC721, "721"
                # An unnamed contract is left for the normalizer to resolve
                contract_name = None
                if not is_missing(base_name):
                    contract_name = f"{base_name} ({protocol_prefix}{suffix})"

                external_data = nft.get("external_data") or {}
                name = external_data.get("name")
                if is_missing(name) and contract_name:
                    name = f"{contract_name}#{token_id}"
                image = external_data.get("image") or self.placeholder_image
                if i == 0:
                    contract_fallback_logo = image

                result.add(
                    CollectibleDetails(
                        contract_address=contract_address,
                        token_id=token_id,
                        name=name,
                        image=image,
                        description=external_data.get("description"),
                        standard=standard,
                        token_balance=parse_balance(nft.get("token_balance")),
                        contract_name=contract_name,
                        contract_symbol=item.get("contract_ticker_symbol"),
                        contract_image=item.get("logo_url"),
                        contract_fallback_logo=contract_fallback_logo,
                        contract_description="",
                        origin=(self.name,),
                    )
                )
        return result


class OpenSeaSource(BaseCollectibleSource):
    """
    Marketplace source backed by the OpenSea assets API.

    Serves mainnet and matic only; other networks yield an empty result.
    """

    name = ORIGIN_OPENSEA

    def _fetch(self, address: str, network: str) -> SourceResult:
        result = SourceResult(source=self.name)
        if not address or network not in OPENSEA_NETWORKS:
            return result

        for asset in self.client.get_opensea_assets(network, address):
            asset_contract = asset.get("asset_contract") or {}
            standard = normalize_standard(asset_contract.get("schema_name"))
            if standard is None:
                continue

            token_id = str(asset["token_id"])
            contract_name = asset_contract.get("name")
            contract_image = upgrade_thumbnail(asset_contract.get("image_url") or "")
            image_url = asset.get("image_url")

            result.add(
                CollectibleDetails(
                    contract_address=asset_contract["address"],
                    token_id=token_id,
                    name=asset.get("name") or f"{contract_name}#{token_id}",
                    image=image_url or contract_image,
                    description=asset.get("description"),
                    standard=standard,
                    contract_name=contract_name,
                    contract_symbol=asset_contract.get("symbol"),
                    contract_image=contract_image or image_url,
                    contract_supply=asset_contract.get("total_supply"),
                    contract_description=asset_contract.get("description"),
                    origin=(self.name,),
                )
            )
        return result
