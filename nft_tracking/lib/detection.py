"""
Collectible detection: polling scheduler and detection cycle.

A detection cycle fetches the three sources in parallel, merges their
results and writes them to the store. Cycles never run concurrently, and
each cycle writes only to the (address, network) scope it started with.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional

from .errors import ConfigurationError
from .merger import merge_source_results
from .models import Collectible, CustomNft, SourceResult
from .networks import NFT_SUPPORTED_NETWORKS, OPENSEA_NETWORKS, NetworkContext
from .sources import BaseCollectibleSource, CovalentSource, CustomNftSource, OpenSeaSource
from .store import AssetStore, Scope

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 60.0  # seconds


def _custom_nft_identity(custom_nfts: Iterable[CustomNft]) -> List[tuple]:
    return sorted((x.nft_address.lower(), str(x.nft_id), x.network) for x in custom_nfts)


class CollectibleDetector:
    """
    Polls the collectible sources for the active address.

    Idle until start_detection(); while active a repeating timer triggers a
    cycle every interval seconds. Timer ticks that find a cycle in flight
    are skipped, explicit requests wait for it.
    """

    def __init__(
        self,
        store: AssetStore,
        network: NetworkContext,
        custom_source: CustomNftSource,
        covalent_source: CovalentSource,
        opensea_source: OpenSeaSource,
        interval: float = DEFAULT_INTERVAL,
    ):
        self.store = store
        self.network = network
        self.custom_source = custom_source
        self.covalent_source = covalent_source
        self.opensea_source = opensea_source
        self._interval = interval
        self._selected_address = ""
        self._timer: Optional[threading.Timer] = None
        self._timer_generation = 0
        self._timer_lock = threading.RLock()
        self._cycle_lock = threading.Lock()

    @property
    def selected_address(self) -> str:
        return self._selected_address

    @property
    def is_active(self) -> bool:
        return bool(self._selected_address)

    @property
    def interval(self) -> float:
        return self._interval

    @interval.setter
    def interval(self, interval: float) -> None:
        """Change the polling interval; any live timer is cancelled first."""
        with self._timer_lock:
            self._interval = interval
            self._arm_timer()

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    def _cancel_timer(self) -> None:
        self._timer_generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _arm_timer(self) -> None:
        with self._timer_lock:
            self._cancel_timer()
            if not self._selected_address or not self._interval:
                return
            generation = self._timer_generation
            timer = threading.Timer(self._interval, self._tick, args=(generation,))
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _tick(self, generation: int) -> None:
        with self._timer_lock:
            if generation != self._timer_generation:
                return
        try:
            self.detect_assets(blocking=False)
        finally:
            with self._timer_lock:
                if generation == self._timer_generation:
                    self._arm_timer()

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    def start_detection(self, address: str) -> None:
        """
        Activate detection for an address.

        Runs one cycle immediately, then polls every interval seconds.
        """
        with self._timer_lock:
            self._selected_address = address
        self.store.set_selected_address(address)
        self.detect_assets()
        self._arm_timer()

    def stop_detection(self) -> None:
        """
        Deactivate detection and cancel the timer.

        A cycle already in flight still completes and writes to the scope it
        started with.
        """
        with self._timer_lock:
            self._selected_address = ""
            self._cancel_timer()

    def set_custom_nfts(self, address: str, custom_nfts: Iterable[CustomNft]) -> None:
        """
        Record the user's custom collectibles for an address.

        When the entries of the active address change, a cycle runs right away
        so the store reflects them without waiting for the next tick.
        """
        custom_nfts = list(custom_nfts)
        previous = _custom_nft_identity(self.custom_source.get_custom_nfts(address))
        self.custom_source.set_custom_nfts(address, custom_nfts)
        if previous == _custom_nft_identity(custom_nfts):
            return
        if self._selected_address and address.lower() == self._selected_address.lower():
            self.detect_assets()

    def _resolve_scope(self) -> Scope:
        address = self._selected_address
        if not address:
            raise ConfigurationError("No active address")
        network = self.network.current_network_name()
        if network not in NFT_SUPPORTED_NETWORKS:
            raise ConfigurationError(f"Network {network} does not support collectibles")
        return address, network

    def detect_assets(self, blocking: bool = True) -> bool:
        """
        Run one detection cycle for the active scope.

        Args:
            blocking: Wait for an in-flight cycle instead of skipping

        Returns:
            True if a cycle ran
        """
        if not self._cycle_lock.acquire(blocking=blocking):
            logger.debug("Detection cycle already in flight, skipping tick")
            return False
        try:
            try:
                address, network = self._resolve_scope()
            except ConfigurationError as e:
                logger.debug("Skipping detection: %s", e)
                return False
            self.detect_collectibles(address, network)
            return True
        finally:
            self._cycle_lock.release()

    # ------------------------------------------------------------------
    # Detection cycle
    # ------------------------------------------------------------------

    @staticmethod
    def _result_of(source: BaseCollectibleSource, future: "Future[SourceResult]") -> SourceResult:
        try:
            return future.result()
        except Exception as e:
            logger.exception("[%s] source raised unexpectedly", source.name)
            return SourceResult(source=source.name, error=str(e))

    def fetch_sources(self, address: str, network: str) -> Dict[str, SourceResult]:
        """Fetch all sources in parallel and wait for every one of them."""
        sources = [self.custom_source, self.covalent_source, self.opensea_source]
        with ThreadPoolExecutor(max_workers=len(sources)) as pool:
            futures = [(source, pool.submit(source.fetch, address, network)) for source in sources]
            return {source.name: self._result_of(source, future) for source, future in futures}

    def detect_collectibles(self, address: str, network: str) -> List[Collectible]:
        """
        Fetch, merge and store the collectibles of one scope.

        A failed source contributes nothing; the merged set of the sources
        that succeeded is always stored.

        Returns:
            The scope's stored collectibles
        """
        results = self.fetch_sources(address, network)
        customs = results[self.custom_source.name]
        covalent = results[self.covalent_source.name]
        opensea = results[self.opensea_source.name]
        opensea_applicable = network in OPENSEA_NETWORKS

        merged = merge_source_results(
            customs.collectibles_map,
            covalent.collectibles_map,
            opensea.collectibles_map,
            opensea_applicable,
        )
        logger.info(
            "Detected %d collectible(s) for %s on %s (custom=%d covalent=%d opensea=%d)",
            len(merged),
            address,
            network,
            len(customs.collectibles_map),
            len(covalent.collectibles_map),
            len(opensea.collectibles_map),
        )
        return self.store.add_collectibles(merged, detect_from_api=False, scope=(address, network))
