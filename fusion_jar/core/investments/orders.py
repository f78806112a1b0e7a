"""
Fusion order construction and signing.

Builds 1inch Limit Order Protocol v4 orders from a resolved quote, encodes
the Fusion auction extension (and, for Fusion+, the escrow extension with
hash locks) and signs the EIP-712 payload with the wallet's local account.
"""

from __future__ import annotations

import secrets
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_account.messages import encode_typed_data
from eth_utils import keccak, to_checksum_address

from .models import AuctionPreset, CrossChainQuote, PreparedOrder, Quote, SameChainQuote

LIMIT_ORDER_PROTOCOL = "0x111111125421cA6dc452d289314280a0f8842A65"
DOMAIN_NAME = "1inch Aggregation Router"
DOMAIN_VERSION = "6"

# makerTraits flags (LOP v4)
HAS_EXTENSION_FLAG = 1 << 249
POST_INTERACTION_CALL_FLAG = 1 << 251
ALLOW_MULTIPLE_FILLS_FLAG = 1 << 254
EXPIRATION_OFFSET = 80

_UINT160_MASK = (1 << 160) - 1
_UINT96_MASK = (1 << 96) - 1

ORDER_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "Order": [
        {"name": "salt", "type": "uint256"},
        {"name": "maker", "type": "address"},
        {"name": "receiver", "type": "address"},
        {"name": "makerAsset", "type": "address"},
        {"name": "takerAsset", "type": "address"},
        {"name": "makingAmount", "type": "uint256"},
        {"name": "takingAmount", "type": "uint256"},
        {"name": "makerTraits", "type": "uint256"},
    ],
}


def idempotency_key(intent_id: str, slot: Optional[str]) -> str:
    """Stable key for one scheduled slot of an intent."""
    return "0x" + keccak(text=f"{intent_id}:{slot or 'unscheduled'}").hex()


def _hex(data: bytes) -> str:
    return "0x" + data.hex()


def _uint(value: int, size: int) -> bytes:
    return int(value).to_bytes(size, "big")


def _address_bytes(address: str) -> bytes:
    return bytes.fromhex(address.lower().replace("0x", "").zfill(40))


def encode_auction_details(preset: AuctionPreset, start_time: int) -> bytes:
    details = (
        _uint(preset.gas_bump_estimate, 3)
        + _uint(preset.gas_price_estimate, 4)
        + _uint(start_time, 4)
        + _uint(preset.auction_duration, 3)
        + _uint(preset.initial_rate_bump, 3)
        + _uint(len(preset.points), 1)
    )
    for point in preset.points:
        details += _uint(point.coefficient, 3) + _uint(point.delay, 2)
    return details


def encode_whitelist(whitelist: Sequence[str], resolving_start: int) -> bytes:
    data = _uint(resolving_start, 4) + _uint(len(whitelist), 1)
    for resolver in whitelist:
        # Only the low 10 bytes of each resolver address are carried
        data += _address_bytes(resolver)[-10:] + _uint(0, 2)
    return data


def build_extension(fields: Sequence[bytes]) -> bytes:
    """Concatenate extension fields behind the 32-byte cumulative offsets word."""
    offsets = 0
    cumulative = 0
    for index, chunk in enumerate(fields[:8]):
        cumulative += len(chunk)
        offsets |= cumulative << (32 * index)
    return _uint(offsets, 32) + b"".join(fields)


def build_salt(extension: bytes, key: Optional[str] = None) -> int:
    """Upper 96 bits identify the attempt; lower 160 bits bind the extension."""
    if key:
        upper = int(key, 16) & _UINT96_MASK
    else:
        upper = secrets.randbits(96)
    return (upper << 160) | (int.from_bytes(keccak(extension), "big") & _UINT160_MASK)


def build_maker_traits(expiration: int, multiple_fills: bool = True) -> int:
    traits = HAS_EXTENSION_FLAG | POST_INTERACTION_CALL_FLAG
    if multiple_fills:
        traits |= ALLOW_MULTIPLE_FILLS_FLAG
    traits |= (expiration & ((1 << 40) - 1)) << EXPIRATION_OFFSET
    return traits


def hash_secret(secret: str) -> str:
    return _hex(keccak(bytes.fromhex(secret.replace("0x", ""))))


def build_hash_lock(secret_values: List[str]) -> Tuple[bytes, List[str]]:
    """Hash lock for one secret, or a merkle root tagged with the part count."""
    secret_hashes = [hash_secret(s) for s in secret_values]
    if len(secret_values) == 1:
        return bytes.fromhex(secret_hashes[0][2:]), secret_hashes

    leaves = [
        keccak(_uint(idx, 8) + bytes.fromhex(h[2:]))
        for idx, h in enumerate(secret_hashes)
    ]
    layer = leaves
    while len(layer) > 1:
        nxt = []
        for i in range(0, len(layer), 2):
            if i + 1 == len(layer):
                nxt.append(layer[i])
                continue
            a, b = sorted((layer[i], layer[i + 1]))
            nxt.append(keccak(a + b))
        layer = nxt
    root = int.from_bytes(layer[0], "big")
    parts = (len(secret_values) - 1) & 0xFFFF
    tagged = (parts << 240) | (root & ((1 << 240) - 1))
    return _uint(tagged, 32), secret_hashes


def encode_time_locks(time_locks: Dict[str, int]) -> bytes:
    order = [
        "srcWithdrawal",
        "srcPublicWithdrawal",
        "srcCancellation",
        "srcPublicCancellation",
        "dstWithdrawal",
        "dstPublicWithdrawal",
        "dstCancellation",
    ]
    packed = 0
    for index, name in enumerate(order):
        packed |= (int(time_locks.get(name, 0)) & 0xFFFFFFFF) << (32 * index)
    return _uint(packed, 32)


def build_typed_data(order: Dict[str, Any], chain_id: int) -> Dict[str, Any]:
    """EIP-712 payload for an order (uint256 fields as ints)."""
    return {
        "types": ORDER_TYPES,
        "primaryType": "Order",
        "domain": {
            "name": DOMAIN_NAME,
            "version": DOMAIN_VERSION,
            "chainId": chain_id,
            "verifyingContract": to_checksum_address(LIMIT_ORDER_PROTOCOL),
        },
        "message": order,
    }


class OrderBuilder:
    """Creates signed orders for ``SameChainQuote`` and ``CrossChainQuote``."""

    def __init__(self, clock=time.time) -> None:
        self._clock = clock

    def build(self, quote: Quote, maker: str, signer: Any, key: Optional[str] = None) -> PreparedOrder:
        if isinstance(quote, CrossChainQuote):
            return self._build_cross_chain(quote, maker, signer, key)
        return self._build_same_chain(quote, maker, signer, key)

    def _build_same_chain(self, quote: SameChainQuote, maker: str, signer: Any, key: Optional[str]) -> PreparedOrder:
        now = int(self._clock())
        start = now + quote.preset.start_auction_in
        auction = _address_bytes(quote.settlement_address) + encode_auction_details(quote.preset, start)
        post_interaction = _address_bytes(quote.settlement_address) + _uint(0, 1) + encode_whitelist(quote.whitelist, start)
        extension = build_extension([b"", b"", auction, auction, b"", b"", b"", post_interaction])
        return self._sign(
            chain_id=quote.chain_id,
            quote_id=quote.quote_id,
            maker=maker,
            maker_asset=quote.from_token,
            taker_asset=quote.to_token,
            making_amount=quote.from_amount,
            taking_amount=quote.preset.auction_end_amount or quote.to_amount,
            extension=extension,
            expiration=start + quote.preset.auction_duration,
            signer=signer,
            key=key,
        )

    def _build_cross_chain(self, quote: CrossChainQuote, maker: str, signer: Any, key: Optional[str]) -> PreparedOrder:
        now = int(self._clock())
        start = now + quote.preset.start_auction_in
        count = max(quote.preset.secrets_count, 1)
        secret_values = ["0x" + secrets.token_hex(32) for _ in range(count)]
        hash_lock, secret_hashes = build_hash_lock(secret_values)

        auction = _address_bytes(quote.src_escrow_factory) + encode_auction_details(quote.preset, start)
        escrow = (
            hash_lock
            + _uint(quote.dst_chain_id, 32)
            + _address_bytes(quote.to_token).rjust(32, b"\x00")
            + _uint((quote.src_safety_deposit << 128) | quote.dst_safety_deposit, 32)
            + encode_time_locks(quote.time_locks)
        )
        post_interaction = (
            _address_bytes(quote.src_escrow_factory)
            + _uint(0, 1)
            + encode_whitelist(quote.whitelist, start)
            + escrow
        )
        extension = build_extension([b"", b"", auction, auction, b"", b"", b"", post_interaction])
        prepared = self._sign(
            chain_id=quote.src_chain_id,
            quote_id=quote.quote_id,
            maker=maker,
            maker_asset=quote.from_token,
            taker_asset=quote.to_token,
            making_amount=quote.from_amount,
            taking_amount=quote.preset.auction_end_amount or quote.to_amount,
            extension=extension,
            expiration=start + quote.preset.auction_duration,
            signer=signer,
            key=key,
            multiple_fills=count > 1,
        )
        prepared.secrets = secret_values
        prepared.secret_hashes = secret_hashes
        return prepared

    def _sign(
        self,
        *,
        chain_id: int,
        quote_id: str,
        maker: str,
        maker_asset: str,
        taker_asset: str,
        making_amount: int,
        taking_amount: int,
        extension: bytes,
        expiration: int,
        signer: Any,
        key: Optional[str],
        multiple_fills: bool = True,
    ) -> PreparedOrder:
        order = {
            "salt": build_salt(extension, key),
            "maker": to_checksum_address(maker),
            "receiver": to_checksum_address(maker),
            "makerAsset": to_checksum_address(maker_asset),
            "takerAsset": to_checksum_address(taker_asset),
            "makingAmount": int(making_amount),
            "takingAmount": int(taking_amount),
            "makerTraits": build_maker_traits(expiration, multiple_fills),
        }
        signable = encode_typed_data(full_message=build_typed_data(order, chain_id))
        order_hash = _hex(keccak(b"\x19" + signable.version + signable.header + signable.body))
        signed = signer.sign_message(signable)

        # The relayer expects decimal strings for uint256 fields
        wire_order = {k: str(v) if isinstance(v, int) else v for k, v in order.items()}
        return PreparedOrder(
            order_hash=order_hash,
            quote_id=quote_id,
            order=wire_order,
            signature=_hex(bytes(signed.signature)),
            extension=_hex(extension),
            chain_id=chain_id,
        )
