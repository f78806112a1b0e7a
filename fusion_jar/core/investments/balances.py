"""
Balance Inspector

Reads a wallet's USDC balance on every configured chain. Balances are never
cached: each orchestrator pass sees fresh on-chain values.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from ...providers.rpc import EvmRpcClient
from ..chains import ChainConfig, is_valid_address
from ..errors import InvalidAddressError
from .models import ChainBalance

logger = logging.getLogger(__name__)

RpcFactory = Callable[[ChainConfig], EvmRpcClient]


def _default_rpc_factory(chain: ChainConfig) -> EvmRpcClient:
    return EvmRpcClient(chain.rpc_url, chain_id=chain.chain_id)


def format_units(raw: int, decimals: int) -> Decimal:
    return Decimal(raw) / (Decimal(10) ** decimals)


class BalanceInspector:
    """
    Concurrent per-chain stablecoin balance lookup.

    Example:
        inspector = BalanceInspector(load_chain_configs())
        balances = await inspector.get_balances("0x...")
    """

    def __init__(
        self,
        chains: Dict[int, ChainConfig],
        rpc_factory: Optional[RpcFactory] = None,
    ) -> None:
        self._chains = chains
        self._rpc_factory = rpc_factory or _default_rpc_factory

    async def get_balances(self, address: str) -> List[ChainBalance]:
        """
        Get the wallet's USDC balance on each configured chain.

        Args:
            address: Wallet address (0x + 40 hex)

        Returns:
            One ChainBalance per chain that answered, in chain table order.
            Chains whose query fails are left out; if all fail the list is
            empty.

        Raises:
            InvalidAddressError: address is malformed
        """
        if not is_valid_address(address):
            raise InvalidAddressError(f"Invalid wallet address: {address!r}")

        chains = list(self._chains.values())
        results = await asyncio.gather(
            *(self._balance_on(chain, address) for chain in chains),
            return_exceptions=True,
        )

        balances: List[ChainBalance] = []
        for chain, result in zip(chains, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Balance query failed on %s (%s) for %s: %s",
                    chain.name,
                    chain.chain_id,
                    address,
                    result,
                )
                continue
            balances.append(result)

        total = sum((b.formatted_balance for b in balances), Decimal("0"))
        logger.info(
            "USDC balance for %s: %s across %d/%d chains",
            address,
            total,
            len(balances),
            len(chains),
        )
        return balances

    async def _balance_on(self, chain: ChainConfig, address: str) -> ChainBalance:
        client = self._rpc_factory(chain)
        raw = await client.erc20_balance(chain.usdc_address, address)
        return ChainBalance(
            chain_id=chain.chain_id,
            chain_name=chain.name,
            token_address=chain.usdc_address,
            raw_balance=raw,
            formatted_balance=format_units(raw, chain.usdc_decimals),
        )
