"""Funding chain selection and swap strategy resolution. Pure functions."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional, Sequence

from .models import ChainBalance, SwapMode


def select_source_chain(
    balances: Sequence[ChainBalance],
    required_amount: Decimal,
    target_chain: int,
) -> Optional[ChainBalance]:
    """
    Pick the chain to fund a purchase from.

    A chain with enough balance on the target chain wins (no bridging).
    Otherwise the chain with the largest balance is used; ties go to the
    first one in input order.

    Returns:
        The chosen balance, or None when no chain holds ``required_amount``.
    """
    required = Decimal(str(required_amount))
    candidates = [b for b in balances if b.formatted_balance >= required]
    if not candidates:
        return None

    for candidate in candidates:
        if candidate.chain_id == target_chain:
            return candidate

    best = candidates[0]
    for candidate in candidates[1:]:
        if candidate.formatted_balance > best.formatted_balance:
            best = candidate
    return best


def resolve_swap_mode(source_chain: int, target_chain: int) -> SwapMode:
    if source_chain == target_chain:
        return SwapMode.SAME_CHAIN
    return SwapMode.CROSS_CHAIN
