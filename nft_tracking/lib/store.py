"""
Keyed asset state partitioned by address and network.

The store owns the only shared mutable state of the engine. Every mutation
replaces the AssetState object under a lock and then notifies subscribers
with the new state, so a state handed to a listener is never modified.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Callable, Iterable, List, Optional, Tuple

from .merger import reconcile_collectibles, reconcile_contracts
from .models import (
    AssetState,
    Collectible,
    CollectibleContract,
    CollectibleDetails,
    ScopedMap,
    Token,
    checksum_address,
    is_missing,
)
from .networks import NetworkContext
from .normalizer import CollectibleNormalizer

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8

Scope = Tuple[str, str]  # (address, network)
StateListener = Callable[[AssetState], None]


def _scope_key(address: str) -> str:
    return address.lower()


def _scoped(entities: ScopedMap, address: str, network: str) -> list:
    return list((entities.get(_scope_key(address)) or {}).get(network) or [])


def _with_scope(entities: ScopedMap, address: str, network: str, values: list) -> ScopedMap:
    """Copy of entities with one scope replaced; the input is left untouched."""
    key = _scope_key(address)
    address_entities = dict(entities.get(key) or {})
    address_entities[network] = list(values)
    updated = dict(entities)
    updated[key] = address_entities
    return updated


def is_retainable_collectible(collectible: Optional[Collectible]) -> bool:
    """A collectible is kept with a name, a standard and a balance other than 0."""
    return (
        collectible is not None
        and not is_missing(collectible.name)
        and collectible.standard is not None
        and collectible.token_balance != 0
    )


def is_retainable_contract(contract: Optional[CollectibleContract]) -> bool:
    """A contract is kept only with a non-empty name and symbol."""
    return contract is not None and not is_missing(contract.name) and not is_missing(contract.symbol)


class AssetStore:
    """
    Tokens, collectible contracts and collectibles per (address, network).

    Args:
        network: NetworkContext; a network switch recomputes the active view
        normalizer: CollectibleNormalizer used by add_collectibles
        selected_address: Initially active address
        max_workers: Thread pool size for per-item normalization
    """

    def __init__(
        self,
        network: NetworkContext,
        normalizer: CollectibleNormalizer,
        selected_address: str = "",
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        self.network = network
        self.normalizer = normalizer
        self.max_workers = max_workers
        self._lock = threading.RLock()
        self._listeners: List[StateListener] = []
        self._state = AssetState()
        self._selected_address = selected_address
        self._active_network = network.current_network_name()
        self._unsubscribe_network = network.subscribe(self._on_network_change)

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> AssetState:
        return self._state

    @property
    def tokens(self) -> List[Token]:
        return list(self._state.tokens)

    @property
    def collectibles(self) -> List[Collectible]:
        return list(self._state.collectibles)

    @property
    def collectible_contracts(self) -> List[CollectibleContract]:
        return list(self._state.collectible_contracts)

    @property
    def selected_address(self) -> str:
        return self._selected_address

    @property
    def active_scope(self) -> Scope:
        return self._selected_address, self._active_network

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """
        Register a listener called with the full new state after every mutation.

        Returns:
            A function that removes the listener
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def close(self) -> None:
        """Stop following network changes."""
        self._unsubscribe_network()

    def _publish(self, state: AssetState) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("Asset state listener failed")

    def _is_active(self, address: str, network: str) -> bool:
        return (
            _scope_key(address) == _scope_key(self._selected_address)
            and network == self._active_network
        )

    # ------------------------------------------------------------------
    # Active scope
    # ------------------------------------------------------------------

    def set_active_scope(self, address: str, network: str) -> None:
        """
        Make (address, network) the active scope and recompute the projection.

        The per-scope maps are never modified.
        """
        with self._lock:
            self._selected_address = address
            self._active_network = network
            state = self._state
            self._state = replace(
                state,
                tokens=_scoped(state.all_tokens, address, network),
                collectibles=_scoped(state.all_collectibles, address, network),
                collectible_contracts=_scoped(state.all_collectible_contracts, address, network),
            )
            new_state = self._state
        self._publish(new_state)

    def set_selected_address(self, address: str) -> None:
        self.set_active_scope(address, self.network.current_network_name())

    def _on_network_change(self, network: str) -> None:
        self.set_active_scope(self._selected_address, network)

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def add_token(
        self,
        address: str,
        symbol: str,
        decimals: int,
        image: Optional[str] = None,
        scope: Optional[Scope] = None,
    ) -> List[Token]:
        """
        Add a token to a scope, replacing a stored token with the same address.

        Returns:
            The scope's token list after the update
        """
        owner, network = scope or self.active_scope
        if not owner:
            logger.warning("Cannot add token %s without a selected address", address)
            return []

        entry = Token(address=checksum_address(address), symbol=symbol, decimals=decimals, image=image)
        with self._lock:
            state = self._state
            tokens = _scoped(state.all_tokens, owner, network)
            for i, token in enumerate(tokens):
                if token.address.lower() == entry.address.lower():
                    tokens[i] = entry
                    break
            else:
                tokens.append(entry)

            changes = {"all_tokens": _with_scope(state.all_tokens, owner, network, tokens)}
            if self._is_active(owner, network):
                changes["tokens"] = list(tokens)
            self._state = replace(state, **changes)
            new_state = self._state
        self._publish(new_state)
        return tokens

    # ------------------------------------------------------------------
    # Collectibles
    # ------------------------------------------------------------------

    def _safe_normalize_contract(
        self, details: CollectibleDetails, detect_from_api: bool, network: str
    ) -> Optional[CollectibleContract]:
        try:
            return self.normalizer.normalize_contract(details, detect_from_api, network)
        except Exception:
            logger.exception("Failed to normalize contract %s", details.contract_address)
            return None

    def _safe_normalize_collectible(
        self, details: CollectibleDetails, detect_from_api: bool, owner: str, network: str
    ) -> Optional[Collectible]:
        try:
            return self.normalizer.normalize_collectible(details, detect_from_api, owner, network)
        except Exception:
            logger.exception("Failed to normalize collectible %s", details.collectible_index)
            return None

    def add_collectibles(
        self,
        collectibles: Iterable[CollectibleDetails],
        detect_from_api: bool = True,
        scope: Optional[Scope] = None,
    ) -> List[Collectible]:
        """
        Normalize collectibles and store them as the scope's new collectible set.

        One contract normalization runs per distinct contract and one
        collectible normalization per distinct index in this call, all in
        parallel; a failing item is excluded without affecting the others.
        Stored collectibles absent from the new set are pruned, stored
        contracts are retained.

        Args:
            collectibles: Items produced by the sources
            detect_from_api: Prefer the metadata API over the chain for missing fields
            scope: (address, network) to write; defaults to the active scope

        Returns:
            The scope's collectible list after the update
        """
        owner, network = scope or self.active_scope
        if not owner:
            logger.warning("Cannot add collectibles without a selected address")
            return []

        contract_jobs: List[CollectibleDetails] = []
        collectible_jobs: List[CollectibleDetails] = []
        seen = set()
        for details in collectibles:
            if is_missing(details.contract_address) or is_missing(details.token_id):
                continue
            contract_key = details.contract_address.lower()
            if contract_key not in seen:
                seen.add(contract_key)
                contract_jobs.append(details)
            if details.collectible_index not in seen:
                seen.add(details.collectible_index)
                collectible_jobs.append(details)

        new_contracts: List[CollectibleContract] = []
        new_collectibles: List[Collectible] = []
        if collectible_jobs:
            workers = min(self.max_workers, len(contract_jobs) + len(collectible_jobs))
            with ThreadPoolExecutor(max_workers=workers) as pool:
                contract_futures = [
                    pool.submit(self._safe_normalize_contract, d, detect_from_api, network)
                    for d in contract_jobs
                ]
                collectible_futures = [
                    pool.submit(self._safe_normalize_collectible, d, detect_from_api, owner, network)
                    for d in collectible_jobs
                ]
                new_contracts = [
                    c for c in (f.result() for f in contract_futures) if is_retainable_contract(c)
                ]
                new_collectibles = [
                    c for c in (f.result() for f in collectible_futures) if is_retainable_collectible(c)
                ]

        with self._lock:
            state = self._state
            final_collectibles = reconcile_collectibles(
                _scoped(state.all_collectibles, owner, network), new_collectibles
            )
            final_contracts = reconcile_contracts(
                _scoped(state.all_collectible_contracts, owner, network), new_contracts
            )
            changes = {
                "all_collectibles": _with_scope(
                    state.all_collectibles, owner, network, final_collectibles
                ),
                "all_collectible_contracts": _with_scope(
                    state.all_collectible_contracts, owner, network, final_contracts
                ),
            }
            if self._is_active(owner, network):
                changes["collectibles"] = list(final_collectibles)
                changes["collectible_contracts"] = list(final_contracts)
            self._state = replace(state, **changes)
            new_state = self._state

        logger.info(
            "Stored %d collectible(s) and %d contract(s) for %s on %s",
            len(final_collectibles),
            len(final_contracts),
            owner,
            network,
        )
        self._publish(new_state)
        return final_collectibles
