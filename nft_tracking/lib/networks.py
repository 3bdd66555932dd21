"""
Network identifiers and the network context consumed by the engine.

Network names follow the wallet's naming ("mainnet", "matic", ...). Each
collectible-supporting network maps to the chain id used by the Covalent API.
"""

import logging
import threading
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

MAINNET = "mainnet"
MATIC = "matic"
BSC_MAINNET = "bsc_mainnet"
BSC_TESTNET = "bsc_testnet"
MUMBAI = "mumbai"
GOERLI = "goerli"

# Network name -> Covalent chain id
NFT_SUPPORTED_NETWORKS: Dict[str, str] = {
    MAINNET: "1",
    MATIC: "137",
    BSC_MAINNET: "56",
    BSC_TESTNET: "97",
    MUMBAI: "80001",
    GOERLI: "5",
}

# Networks served by the OpenSea marketplace API
OPENSEA_NETWORKS = (MAINNET, MATIC)

# Networks whose contract labels use the BEP prefix instead of ERC
BEP_NETWORKS = (BSC_MAINNET,)


NetworkListener = Callable[[str], None]


class NetworkContext:
    """
    Holds the wallet's active network and notifies listeners when it changes.
    """

    def __init__(self, network: str = MAINNET):
        self._network = network
        self._listeners: List[NetworkListener] = []
        self._lock = threading.Lock()

    def current_network_name(self) -> str:
        return self._network

    def current_chain_id(self) -> Optional[str]:
        """Covalent chain id for the active network, or None if unsupported."""
        return NFT_SUPPORTED_NETWORKS.get(self._network)

    def supports_collectibles(self) -> bool:
        return self._network in NFT_SUPPORTED_NETWORKS

    def set_network(self, network: str) -> None:
        with self._lock:
            changed = network != self._network
            self._network = network
            listeners = list(self._listeners)
        if not changed:
            return
        for listener in listeners:
            try:
                listener(network)
            except Exception:
                logger.exception("Network listener failed for %s", network)

    def subscribe(self, listener: NetworkListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe
