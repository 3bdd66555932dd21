"""
Pytest configuration and shared fixtures for collectible tracking tests.
"""

import threading
from typing import Dict, List, Optional

import pytest

from nft_tracking.lib.chain_lookup import ChainLookupError
from nft_tracking.lib.errors import ValidationError
from nft_tracking.lib.models import CollectibleDetails, SourceResult
from nft_tracking.lib.networks import NetworkContext
from nft_tracking.lib.normalizer import CollectibleNormalizer
from nft_tracking.lib.provider_client import ProviderAPIError, ProviderClient
from nft_tracking.lib.sources import BaseCollectibleSource
from nft_tracking.lib.store import AssetStore


CONTRACT_A = "0x" + "ab" * 20
CONTRACT_B = "0x" + "bc" * 20
CONTRACT_C = "0x" + "cd" * 20


class FakeChainLookup:
    """In-memory ChainLookup; unknown lookups fail like a reverting contract."""

    def __init__(self):
        self.balances: Dict[tuple, object] = {}
        self.standards: Dict[str, object] = {}
        self.names: Dict[str, str] = {}
        self.symbols: Dict[str, str] = {}
        self.token_uris: Dict[tuple, str] = {}
        self.calls: List[tuple] = []

    def get_balance(self, contract, owner, token_id=None, standard=None):
        self.calls.append(("get_balance", contract.lower(), token_id))
        value = self.balances.get((contract.lower(), str(token_id)), 1)
        if isinstance(value, Exception):
            raise value
        return value

    def get_standard(self, contract):
        self.calls.append(("get_standard", contract.lower()))
        value = self.standards.get(contract.lower())
        if value is None:
            raise ValidationError(f"{contract} is not an ERC721 or ERC1155 contract")
        if isinstance(value, Exception):
            raise value
        return value

    def get_name(self, contract):
        self.calls.append(("get_name", contract.lower()))
        if contract.lower() not in self.names:
            raise ChainLookupError(f"name on {contract} failed")
        return self.names[contract.lower()]

    def get_symbol(self, contract):
        self.calls.append(("get_symbol", contract.lower()))
        if contract.lower() not in self.symbols:
            raise ChainLookupError(f"symbol on {contract} failed")
        return self.symbols[contract.lower()]

    def get_token_uri(self, contract, token_id, standard):
        self.calls.append(("get_token_uri", contract.lower(), token_id))
        key = (contract.lower(), str(token_id))
        if key not in self.token_uris:
            raise ChainLookupError(f"tokenURI({token_id}) on {contract} failed")
        return self.token_uris[key]


class StaticSource(BaseCollectibleSource):
    """Source returning preset items per owner, optionally failing or blocking."""

    def __init__(
        self,
        name: str,
        items: Optional[Dict[str, List[CollectibleDetails]]] = None,
        error: Optional[str] = None,
        gate: Optional[threading.Event] = None,
    ):
        super().__init__(client=None)
        self.name = name
        self.items = {k.lower(): v for k, v in (items or {}).items()}
        self.error = error
        self.gate = gate
        self.started = threading.Event()
        self.calls: List[tuple] = []

    def _fetch(self, address, network):
        self.calls.append((address, network))
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error:
            raise ProviderAPIError(self.error)
        result = SourceResult(source=self.name)
        for details in self.items.get(address.lower(), []):
            result.add(details)
        return result


@pytest.fixture
def sample_wallet_address():
    """Sample Ethereum wallet address for testing."""
    return "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"  # vitalik.eth


@pytest.fixture
def other_wallet_address():
    return "0x" + "12" * 20


@pytest.fixture
def mock_covalent_api_key():
    """Mock Covalent API key for testing."""
    return "test-covalent-key-12345"


@pytest.fixture
def fake_chain():
    return FakeChainLookup()


@pytest.fixture
def provider_client():
    """Client with retries disabled so failures surface immediately."""
    return ProviderClient(max_retries=0, initial_delay=0.001, jitter=0)


@pytest.fixture
def network_context():
    return NetworkContext("mainnet")


@pytest.fixture
def normalizer(fake_chain, provider_client):
    return CollectibleNormalizer(fake_chain, provider_client)


@pytest.fixture
def asset_store(network_context, normalizer, sample_wallet_address):
    store = AssetStore(network_context, normalizer, selected_address=sample_wallet_address)
    yield store
    store.close()


@pytest.fixture
def make_details():
    """Factory for fully populated CollectibleDetails."""

    def factory(contract=CONTRACT_A, token_id="1", origin=("covalent",), **overrides):
        values = {
            "name": f"Item #{token_id}",
            "image": f"https://img.example/{token_id}.png",
            "description": "An item",
            "standard": "erc721",
            "token_balance": 1,
            "contract_name": "Items",
            "contract_symbol": "ITM",
            "contract_image": "https://img.example/logo.png",
        }
        values.update(overrides)
        return CollectibleDetails(contract_address=contract, token_id=token_id, origin=origin, **values)

    return factory
