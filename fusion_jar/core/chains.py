"""Supported chains and their USDC deployments."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional

from ..config import Settings, settings as default_settings
from .errors import ConfigurationError

USDC_DECIMALS = 6

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

CHAIN_METADATA: Dict[int, Dict[str, str]] = {
    1: {
        'name': 'Ethereum',
        'usdc': '0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48',
    },
    137: {
        'name': 'Polygon',
        'usdc': '0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174',
    },
    8453: {
        'name': 'Base',
        'usdc': '0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913',
    },
    42161: {
        'name': 'Arbitrum',
        'usdc': '0xaf88d065e77c8cC2239327C5EDb3A432268e5831',
    },
}


@dataclass(frozen=True)
class ChainConfig:
    chain_id: int
    name: str
    rpc_url: str
    usdc_address: str
    usdc_decimals: int = USDC_DECIMALS


def load_chain_configs(config: Optional[Settings] = None) -> Dict[int, ChainConfig]:
    """Build the chain table from static metadata plus RPC settings.

    Order follows ``enabled_chain_ids`` so balance output is deterministic.
    """
    config = config or default_settings
    rpc_urls = config.rpc_overrides
    chains: Dict[int, ChainConfig] = {}
    for chain_id in config.enabled_chain_ids:
        meta = CHAIN_METADATA.get(chain_id)
        if meta is None:
            raise ConfigurationError(f"Unsupported chain in configuration: {chain_id}")
        rpc_url = rpc_urls.get(chain_id, "")
        if not rpc_url:
            raise ConfigurationError(f"No RPC endpoint configured for {meta['name']} ({chain_id})")
        chains[chain_id] = ChainConfig(
            chain_id=chain_id,
            name=meta['name'],
            rpc_url=rpc_url,
            usdc_address=meta['usdc'],
        )
    if not chains:
        raise ConfigurationError("No chains enabled")
    return chains


def is_valid_address(address: str) -> bool:
    return bool(address) and bool(_ADDRESS_RE.fullmatch(address.strip()))


def chain_name(chain_id: int) -> str:
    meta = CHAIN_METADATA.get(chain_id)
    return meta['name'] if meta else f"chain-{chain_id}"


__all__ = [
    'USDC_DECIMALS',
    'CHAIN_METADATA',
    'ChainConfig',
    'load_chain_configs',
    'is_valid_address',
    'chain_name',
]
