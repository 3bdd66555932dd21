#!/usr/bin/env python3
"""
Show the collectibles owned by a wallet on one network.

This script detects the wallet's NFTs from user-supplied entries, Covalent
and OpenSea, merges them into one deduplicated view and writes a CSV report.
With --watch it keeps polling until interrupted.
"""

import argparse
import json
import logging
import sys
import time
from typing import List, Optional

from nft_tracking.lib.chain_lookup import Web3ChainLookup
from nft_tracking.lib.detection import DEFAULT_INTERVAL, CollectibleDetector
from nft_tracking.lib.formatters import summarize_collectibles, write_csv
from nft_tracking.lib.models import AssetState, CustomNft
from nft_tracking.lib.networks import NFT_SUPPORTED_NETWORKS, NetworkContext
from nft_tracking.lib.normalizer import CollectibleNormalizer
from nft_tracking.lib.provider_client import ProviderClient
from nft_tracking.lib.sources import CovalentSource, CustomNftSource, OpenSeaSource
from nft_tracking.lib.store import AssetStore


SUPPORTED_NETWORKS = list(NFT_SUPPORTED_NETWORKS)


def log(network: str, message: str) -> None:
    """Log a message with network prefix."""
    print(f"[{network}] {message}", file=sys.stderr)


def validate_network(network: str) -> str:
    """
    Validate and normalize a network name.

    Returns:
        Lowercase network name

    Raises:
        ValueError: If the network is not supported
    """
    network_lower = network.lower()
    if network_lower not in SUPPORTED_NETWORKS:
        raise ValueError(
            f"Unsupported network: {network}. " f"Supported: {', '.join(SUPPORTED_NETWORKS)}"
        )
    return network_lower


def load_custom_nfts(path: str) -> List[CustomNft]:
    """
    Load user-supplied collectibles from a JSON file holding a list of entries.

    Raises:
        ValueError: If the file is not a JSON list of entries
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON list")
    try:
        return [CustomNft.from_dict(entry) for entry in data]
    except (KeyError, TypeError) as e:
        raise ValueError(f"Invalid custom NFT entry in {path}: {e}") from e


def build_detector(
    rpc_url: str,
    network: str,
    covalent_key: Optional[str] = None,
    opensea_key: Optional[str] = None,
    interval: float = DEFAULT_INTERVAL,
) -> CollectibleDetector:
    """Wire the chain lookup, provider client, sources, store and detector."""
    client = ProviderClient(covalent_api_key=covalent_key, opensea_api_key=opensea_key)
    chain = Web3ChainLookup(rpc_url)
    network_context = NetworkContext(network)
    store = AssetStore(network_context, CollectibleNormalizer(chain, client))
    return CollectibleDetector(
        store=store,
        network=network_context,
        custom_source=CustomNftSource(client, chain),
        covalent_source=CovalentSource(client),
        opensea_source=OpenSeaSource(client),
        interval=interval,
    )


def report_state(network: str, state: AssetState) -> None:
    summary = summarize_collectibles(state.collectibles)
    log(
        network,
        f"Found {summary['total']} collectibles ({summary['erc721']} ERC-721, "
        f"{summary['erc1155']} ERC-1155) in {len(state.collectible_contracts)} contracts",
    )


def main(args: Optional[List[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        args: Command line arguments (uses sys.argv if None)

    Returns:
        Exit code (0 for success, 1 for error)
    """
    parser = argparse.ArgumentParser(
        description="Detect the collectibles owned by a wallet and generate a CSV report.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # One detection cycle on mainnet, output to stdout
  %(prog)s --rpc-url https://... --wallet 0x... --network mainnet

  # Include hand-entered NFTs and keep polling every 30 seconds
  %(prog)s --rpc-url https://... --wallet 0x... --network matic \\
    --custom-nfts custom.json --watch --interval 30 --output collectibles.csv
        """,
    )

    parser.add_argument("--rpc-url", required=True, help="JSON-RPC endpoint of the network")
    parser.add_argument("--wallet", required=True, help="Wallet address to query")
    parser.add_argument(
        "--network",
        default="mainnet",
        help=f"Network to query. Supported: {', '.join(SUPPORTED_NETWORKS)}",
    )
    parser.add_argument("--covalent-key", help="Covalent API key")
    parser.add_argument("--opensea-key", help="OpenSea API key")
    parser.add_argument("--custom-nfts", help="JSON file with user-supplied collectibles")
    parser.add_argument("--watch", action="store_true", help="Keep polling until interrupted")
    parser.add_argument(
        "--interval",
        type=float,
        default=DEFAULT_INTERVAL,
        help=f"Polling interval in seconds for --watch (default {DEFAULT_INTERVAL:g})",
    )
    parser.add_argument(
        "--output",
        help="Output file path (timestamp auto-appended). If not specified, outputs to stdout.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    parsed_args = parser.parse_args(args)

    logging.basicConfig(
        level=logging.DEBUG if parsed_args.verbose else logging.WARNING,
        format="[%(name)s] %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    try:
        network = validate_network(parsed_args.network)
        custom_nfts = load_custom_nfts(parsed_args.custom_nfts) if parsed_args.custom_nfts else []
    except (ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    detector = build_detector(
        parsed_args.rpc_url,
        network,
        covalent_key=parsed_args.covalent_key,
        opensea_key=parsed_args.opensea_key,
        interval=parsed_args.interval,
    )
    store = detector.store
    detector.set_custom_nfts(parsed_args.wallet, custom_nfts)

    log(network, "Starting collectible detection...")
    unsubscribe = store.subscribe(lambda state: report_state(network, state))
    try:
        detector.start_detection(parsed_args.wallet)
        if parsed_args.watch:
            while True:
                time.sleep(1)
    except KeyboardInterrupt:
        log(network, "Stopping detection")
    finally:
        detector.stop_detection()
        unsubscribe()
        store.close()

    collectibles_file, contracts_file = write_csv(
        store.collectibles, store.collectible_contracts, network, parsed_args.output
    )
    if collectibles_file:
        print(f"\nResults written to: {collectibles_file}", file=sys.stderr)
        if contracts_file:
            print(f"Contracts written to: {contracts_file}", file=sys.stderr)

    return 0


if __name__ == "__main__":
    sys.exit(main())
