"""
Output formatters for collectible reports.

This module handles CSV generation for collectibles and their contracts with
timestamp-based filenames.
"""

import csv
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, TextIO, Tuple

from .models import (
    CONTRACT_CSV_COLUMNS,
    CSV_COLUMNS,
    ERC721,
    ERC1155,
    Collectible,
    CollectibleContract,
)


def generate_timestamp() -> str:
    """
    Generate a timestamp string for filenames.

    Returns:
        Timestamp in YYYYMMDD_HHMMSS format
    """
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def generate_filenames(base_path: str, timestamp: Optional[str] = None) -> Tuple[str, str]:
    """
    Generate timestamped filenames for the collectibles and contracts CSV files.

    Args:
        base_path: Base output path (e.g., "collectibles.csv")
        timestamp: Optional timestamp to use (generates new one if not provided)

    Returns:
        Tuple of (collectibles_file_path, contracts_file_path)

    Examples:
        generate_filenames("collectibles.csv", "20241214_153022")
        -> ("collectibles_20241214_153022.csv", "collectibles_20241214_153022_contracts.csv")
    """
    if timestamp is None:
        timestamp = generate_timestamp()

    path = Path(base_path)
    stem = path.stem
    suffix = path.suffix or ".csv"
    parent = path.parent

    collectibles_file = parent / f"{stem}_{timestamp}{suffix}"
    contracts_file = parent / f"{stem}_{timestamp}_contracts{suffix}"

    return str(collectibles_file), str(contracts_file)


def write_csv_to_stream(collectibles: List[Collectible], network: str, stream: TextIO) -> None:
    """
    Write collectibles to a CSV stream.

    Args:
        collectibles: List of Collectible objects to write
        network: Network name written in the first column
        stream: File-like object to write to
    """
    writer = csv.writer(stream)
    writer.writerow(CSV_COLUMNS)

    for collectible in collectibles:
        writer.writerow(collectible.to_csv_row(network))


def write_contracts_csv_to_stream(
    contracts: List[CollectibleContract], network: str, stream: TextIO
) -> None:
    """Write collectible contracts to a CSV stream."""
    writer = csv.writer(stream)
    writer.writerow(CONTRACT_CSV_COLUMNS)

    for contract in contracts:
        writer.writerow(contract.to_csv_row(network))


def write_csv(
    collectibles: List[Collectible],
    contracts: List[CollectibleContract],
    network: str,
    output_path: Optional[str] = None,
) -> Tuple[Optional[str], Optional[str]]:
    """
    Write collectibles and contracts to CSV files, or collectibles to stdout.

    Args:
        collectibles: Collectibles of the scope
        contracts: Collectible contracts of the scope
        network: Network name of the scope
        output_path: Base output path. If None, writes collectibles to stdout.

    Returns:
        Tuple of (collectibles_file_path, contracts_file_path) if output_path
        provided, otherwise (None, None). The contracts path is None when
        there are no contracts.
    """
    if output_path is None:
        write_csv_to_stream(collectibles, network, sys.stdout)
        return None, None

    collectibles_file, contracts_file = generate_filenames(output_path)

    with open(collectibles_file, "w", newline="", encoding="utf-8") as f:
        write_csv_to_stream(collectibles, network, f)

    if contracts:
        with open(contracts_file, "w", newline="", encoding="utf-8") as f:
            write_contracts_csv_to_stream(contracts, network, f)
        return collectibles_file, contracts_file

    return collectibles_file, None


def summarize_collectibles(collectibles: List[Collectible]) -> Dict[str, int]:
    """
    Count collectibles by standard and by source.

    Returns:
        Dict with "total", "erc721", "erc1155" and one "from_<source>" count
        per contributing source
    """
    summary = {"total": len(collectibles), ERC721: 0, ERC1155: 0}
    for collectible in collectibles:
        if collectible.standard in (ERC721, ERC1155):
            summary[collectible.standard] += 1
        for source in collectible.origin:
            key = f"from_{source}"
            summary[key] = summary.get(key, 0) + 1
    return summary
