"""
Merging of per-source collectible sets and reconciliation with stored state.

Precedence per collectible index:
    1. user-supplied entries always win;
    2. if OpenSea returned anything for the batch, its entries win, with
       Covalent filling only the fields OpenSea left empty;
    3. otherwise Covalent's entries are used as-is.

The OpenSea decision is made for the whole batch, not per key.
"""

import logging
from typing import Dict, Iterable, List, Mapping, Tuple

from .models import (
    Collectible,
    CollectibleContract,
    CollectibleDetails,
    is_missing,
)

logger = logging.getLogger(__name__)

# Fields reconciled between two sources, in declaration order. The identity
# (contract_address, token_id) always comes from the winning source.
MERGED_FIELDS = (
    "name",
    "image",
    "description",
    "standard",
    "token_balance",
    "contract_name",
    "contract_symbol",
    "contract_image",
    "contract_fallback_logo",
    "contract_description",
    "contract_supply",
)


def merge_origin(*origins: Tuple[str, ...]) -> Tuple[str, ...]:
    """Ordered union of provenance tuples."""
    merged: List[str] = []
    for origin in origins:
        for source in origin:
            if source not in merged:
                merged.append(source)
    return tuple(merged)


def merge_details(preferred: CollectibleDetails, fallback: CollectibleDetails) -> CollectibleDetails:
    """
    Merge two views of the same collectible field by field.

    Every non-empty field of preferred is kept; fallback only fills the
    fields preferred left empty.

    Args:
        preferred: Entry whose values take precedence
        fallback: Entry used for fields preferred is missing

    Returns:
        A new CollectibleDetails; neither input is modified
    """
    values = {}
    for name in MERGED_FIELDS:
        value = getattr(preferred, name)
        if is_missing(value):
            value = getattr(fallback, name)
        values[name] = value

    return CollectibleDetails(
        contract_address=preferred.contract_address,
        token_id=preferred.token_id,
        origin=merge_origin(fallback.origin, preferred.origin),
        **values,
    )


def merge_source_results(
    customs: Mapping[str, CollectibleDetails],
    covalent: Mapping[str, CollectibleDetails],
    opensea: Mapping[str, CollectibleDetails],
    opensea_applicable: bool = True,
) -> List[CollectibleDetails]:
    """
    Combine the per-source maps into one deduplicated list.

    Args:
        customs: User-supplied entries by collectible index
        covalent: Covalent entries by collectible index
        opensea: OpenSea entries by collectible index
        opensea_applicable: False on networks OpenSea does not serve

    Returns:
        Custom entries first, then the provider entries for all other keys
    """
    final = list(customs.values())

    if opensea_applicable and opensea:
        for index, opensea_details in opensea.items():
            if index in customs:
                continue
            covalent_details = covalent.get(index)
            if covalent_details is not None:
                final.append(merge_details(opensea_details, covalent_details))
            else:
                final.append(opensea_details)
        for index, covalent_details in covalent.items():
            if index not in customs and index not in opensea:
                final.append(covalent_details)
    else:
        for index, covalent_details in covalent.items():
            if index not in customs:
                final.append(covalent_details)

    return final


def reconcile_collectibles(
    previous: Iterable[Collectible], new: Iterable[Collectible]
) -> List[Collectible]:
    """
    Reconcile a scope's stored collectibles with a new detection result.

    Ownership is volatile: entries of previous that are absent from new are
    dropped, and same-key entries are replaced by the new ones. Within new the
    first entry of each index wins.
    """
    final: Dict[str, Collectible] = {}
    for collectible in new:
        final.setdefault(collectible.collectible_index, collectible)

    pruned = [x.collectible_index for x in previous if x.collectible_index not in final]
    if pruned:
        logger.debug("Pruned %d collectible(s) no longer reported: %s", len(pruned), pruned)
    return list(final.values())


def reconcile_contracts(
    previous: Iterable[CollectibleContract], new: Iterable[CollectibleContract]
) -> List[CollectibleContract]:
    """
    Reconcile a scope's stored contracts with newly validated ones.

    Contract metadata is durable: new contracts replace same-address entries,
    and previous contracts that were not re-reported are retained after them.
    """
    final: Dict[str, CollectibleContract] = {}
    for contract in new:
        final.setdefault(contract.address.lower(), contract)
    for contract in previous:
        final.setdefault(contract.address.lower(), contract)
    return list(final.values())
