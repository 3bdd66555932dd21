"""
Normalization of source items into store entities.

Sources often omit fields. The normalizer resolves what is missing from two
paths, the Covalent metadata API and the chain itself (standard probe, token
URI, metadata document), before the store decides whether to retain an item.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from .chain_lookup import ChainLookup
from .errors import TransportError, ValidationError
from .models import (
    ERC721,
    ERC1155,
    Collectible,
    CollectibleContract,
    CollectibleDetails,
    checksum_address,
    is_missing,
    normalize_standard,
)
from .networks import NFT_SUPPORTED_NETWORKS
from .provider_client import ProviderClient

logger = logging.getLogger(__name__)

# Failures a single lookup path may raise; any of them only empties that path
LOOKUP_ERRORS = (TransportError, ValidationError, ValueError)


@dataclass
class CollectibleInfo:
    """Collectible fields resolved by one lookup path."""

    name: Optional[str] = None
    image: Optional[str] = None
    description: Optional[str] = None
    standard: Optional[str] = None
    token_balance: Optional[int] = None

    @property
    def is_complete(self) -> bool:
        return not is_missing(self.name) and not is_missing(self.image)


@dataclass
class ContractInfo:
    """Contract fields resolved from the API or the contract itself."""

    name: Optional[str] = None
    symbol: Optional[str] = None
    logo: Optional[str] = None
    standard: Optional[str] = None


def _fill_missing(target: CollectibleInfo, source: CollectibleInfo) -> CollectibleInfo:
    return CollectibleInfo(
        name=source.name if is_missing(target.name) else target.name,
        image=source.image if is_missing(target.image) else target.image,
        description=source.description if is_missing(target.description) else target.description,
        standard=target.standard or source.standard,
        token_balance=source.token_balance if target.token_balance is None else target.token_balance,
    )


class CollectibleNormalizer:
    """
    Resolves missing collectible and contract fields.

    Args:
        chain: ChainLookup used for probes, names, balances and token URIs
        client: ProviderClient used for the metadata API and token metadata
    """

    def __init__(self, chain: ChainLookup, client: ProviderClient):
        self.chain = chain
        self.client = client

    # ------------------------------------------------------------------
    # Collectibles
    # ------------------------------------------------------------------

    def _erc1155_balance(self, contract: str, owner: str, token_id: str) -> Optional[int]:
        """Live ERC1155 balance, None (unknown, not zero) when the lookup fails."""
        try:
            return self.chain.get_balance(contract, owner, token_id, ERC1155)
        except LOOKUP_ERRORS as e:
            logger.warning("Balance lookup failed for %s #%s: %s", contract, token_id, e)
            return None

    def _balance_for(self, standard: Optional[str], contract: str, owner: str, token_id: str) -> Optional[int]:
        if standard == ERC721:
            return 1
        if standard == ERC1155:
            return self._erc1155_balance(contract, owner, token_id)
        return None

    def get_collectible_info_from_api(
        self, contract: str, token_id: str, owner: str, network: str
    ) -> CollectibleInfo:
        """Resolve collectible fields from the Covalent NFT metadata endpoint."""
        chain_id = NFT_SUPPORTED_NETWORKS.get(network)
        if not chain_id:
            return CollectibleInfo()

        items = self.client.get_covalent_nft_metadata(chain_id, contract, token_id)
        if not items:
            return CollectibleInfo()
        nft_data = items[0].get("nft_data") or []
        if not nft_data or not nft_data[0].get("external_data"):
            return CollectibleInfo()

        standard = ERC1155 if ERC1155 in (nft_data[0].get("supports_erc") or []) else ERC721
        external_data = nft_data[0]["external_data"]
        return CollectibleInfo(
            name=external_data.get("name"),
            image=external_data.get("image"),
            description=external_data.get("description"),
            standard=standard,
            token_balance=self._balance_for(standard, contract, owner, token_id),
        )

    def get_collectible_info_from_chain(
        self, contract: str, token_id: str, owner: str, network: str
    ) -> CollectibleInfo:
        """Resolve collectible fields from the contract's token URI metadata."""
        standard = self.chain.get_standard(contract)
        token_uri = self.chain.get_token_uri(contract, token_id, standard)
        metadata = self.client.get_token_metadata(token_uri, token_id)
        return CollectibleInfo(
            name=metadata.get("name"),
            image=metadata.get("image") or metadata.get("image_url"),
            description=metadata.get("description"),
            standard=standard,
            token_balance=self._balance_for(standard, contract, owner, token_id),
        )

    def get_collectible_info(
        self,
        contract: str,
        token_id: str,
        owner: str,
        network: str,
        detect_from_api: bool,
    ) -> CollectibleInfo:
        """
        Resolve collectible fields, stopping at the first path that yields
        both name and image.

        The metadata API is tried first when detect_from_api is set, the
        chain first otherwise. A failing path contributes nothing.
        """
        paths: List[Callable[[str, str, str, str], CollectibleInfo]] = [
            self.get_collectible_info_from_chain,
            self.get_collectible_info_from_api,
        ]
        if detect_from_api:
            paths.reverse()

        info = CollectibleInfo()
        for path in paths:
            try:
                info = _fill_missing(info, path(contract, token_id, owner, network))
            except LOOKUP_ERRORS as e:
                logger.warning("Collectible lookup failed for %s #%s: %s", contract, token_id, e)
                continue
            if info.is_complete:
                break
        return info

    def normalize_collectible(
        self,
        details: CollectibleDetails,
        detect_from_api: bool,
        owner: str,
        network: str,
    ) -> Collectible:
        """
        Build a Collectible, resolving missing name, image or standard.

        ERC721 balances are fixed at 1 once ownership is confirmed; a missing
        ERC1155 balance is looked up live and stays None if that fails.
        """
        address = checksum_address(details.contract_address)
        standard = normalize_standard(details.standard)
        current = CollectibleInfo(
            name=details.name,
            image=details.image,
            description=details.description,
            standard=standard,
            token_balance=details.token_balance,
        )

        if is_missing(current.name) or is_missing(current.image) or standard is None:
            resolved = self.get_collectible_info(
                details.contract_address, details.token_id, owner, network, detect_from_api
            )
            current = _fill_missing(current, resolved)

        balance = current.token_balance
        if balance is None:
            balance = self._balance_for(current.standard, address, owner, details.token_id)
        elif current.standard == ERC721 and balance > 0:
            balance = 1

        return Collectible(
            address=address,
            token_id=details.token_id,
            name=current.name,
            image=current.image,
            description=current.description,
            standard=current.standard,
            token_balance=balance,
            origin=details.origin,
        )

    # ------------------------------------------------------------------
    # Contracts
    # ------------------------------------------------------------------

    def get_contract_info_from_api(self, contract: str, network: str) -> ContractInfo:
        """
        Resolve contract name, symbol and logo from Covalent.

        Covalent needs a token id but answers contract data for any id.
        """
        chain_id = NFT_SUPPORTED_NETWORKS.get(network)
        if not chain_id:
            return ContractInfo()
        items = self.client.get_covalent_nft_metadata(chain_id, contract, "1")
        if not items:
            return ContractInfo()
        item = items[0]
        return ContractInfo(
            name=item.get("contract_name"),
            symbol=item.get("contract_ticker_symbol"),
            logo=item.get("logo_url"),
        )

    def get_contract_info(self, contract: str, detect_from_api: bool, network: str) -> ContractInfo:
        """
        Probe the contract standard, then resolve name and symbol from the
        metadata API (when allowed and complete) or from the contract.

        Returns an empty ContractInfo if any lookup fails.
        """
        try:
            standard = self.chain.get_standard(contract)
            if detect_from_api:
                info = self.get_contract_info_from_api(contract, network)
                if info.name and info.symbol:
                    info.standard = standard
                    return info
            return ContractInfo(
                name=self.chain.get_name(contract),
                symbol=self.chain.get_symbol(contract),
                standard=standard,
            )
        except LOOKUP_ERRORS as e:
            logger.error("Contract lookup failed for %s: %s", contract, e)
        return ContractInfo()

    def normalize_contract(
        self,
        details: CollectibleDetails,
        detect_from_api: bool,
        network: str,
    ) -> Optional[CollectibleContract]:
        """
        Build a CollectibleContract from an item's contract fields.

        Returns None when the standard cannot be resolved, since an address
        that does not answer the standard probe is not a collectible contract.
        """
        address = checksum_address(details.contract_address)
        standard = normalize_standard(details.standard)
        name = details.contract_name
        symbol = details.contract_symbol
        logo = details.contract_image or details.contract_fallback_logo

        if is_missing(name) or is_missing(symbol) or standard is None:
            info = self.get_contract_info(details.contract_address, detect_from_api, network)
            name = info.name or name
            symbol = info.symbol or symbol
            logo = info.logo or logo
            standard = info.standard or standard

        if standard is None:
            try:
                standard = self.chain.get_standard(details.contract_address)
            except LOOKUP_ERRORS as e:
                logger.warning("Rejecting %s, standard probe failed: %s", details.contract_address, e)
                return None

        return CollectibleContract(
            address=address,
            name=name,
            symbol=symbol,
            standard=standard,
            logo=logo,
            description=details.contract_description or "",
        )
