"""
app/services/chain_codec.py
Decoders for contract return values, receipts, attestations and GraphQL
market rows.

Contract calls return positional tuples; everything is turned into a typed
record right here so a wrong shape surfaces as DecodeError at the boundary
instead of an IndexError deep inside the coordinator.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from eth_abi import decode as abi_decode

from core.constants import (
    ATTESTATION_SCHEMA_TYPES,
    TRANSFER_EVENT_TOPIC,
    ZERO_ADDRESS,
)
from core.exceptions import DecodeError, TokenIdExtractionFailed
from core.models import (
    LiquidityQuote,
    Market,
    MarketSummary,
    OnchainPosition,
)
from core.tick_math import sqrt_price_x96_to_price


@dataclass(frozen=True)
class LogEntry:
    """One receipt log, topics normalised to lowercase 0x-hex strings."""
    address: str
    topics: tuple[str, ...]
    data: str = "0x"


@dataclass(frozen=True)
class TxConfirmation:
    """A mined, successful transaction."""
    tx_hash: str
    block_number: int
    gas_used: int
    logs: tuple[LogEntry, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AttestationPayload:
    """Fields of the prediction attestation schema."""
    market_address: str
    market_id: int
    question_id: str
    prediction: int
    comment: str


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _to_hex(value: Any) -> str:
    """bytes / HexBytes / str -> lowercase '0x...' string."""
    if isinstance(value, str):
        text = value.lower()
        return text if text.startswith("0x") else f"0x{text}"
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    raise DecodeError(f"Cannot convert {type(value).__name__} to hex")


def _unwrap(raw: Any, expected_len: int, what: str) -> Sequence:
    """Accept either the tuple itself or a 1-tuple wrapping it."""
    if isinstance(raw, (list, tuple)) and len(raw) == 1 and isinstance(raw[0], (list, tuple)):
        raw = raw[0]
    if not isinstance(raw, (list, tuple)) or len(raw) != expected_len:
        size = len(raw) if isinstance(raw, (list, tuple)) else "n/a"
        raise DecodeError(f"{what}: expected {expected_len} fields, got {size}")
    return raw


def _address_from_topic(topic: str) -> str:
    return "0x" + topic[-40:]


def _decode_claim(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace").rstrip("\x00")
    return str(value or "")


# ------------------------------------------------------------------
# Contract return values
# ------------------------------------------------------------------

def decode_market(
    raw: Any,
    group_address: str,
    collateral_asset: str,
    current_sqrt_price_x96: int,
) -> Market:
    """Decode a getMarket() struct plus the separately-read group fields."""
    fields = _unwrap(raw, 15, "getMarket")
    try:
        return Market(
            market_id=int(fields[0]),
            group_address=group_address,
            start_time=int(fields[1]),
            end_time=int(fields[2]),
            pool=str(fields[3]),
            quote_token=str(fields[4]),
            base_token=str(fields[5]),
            min_price_d18=int(fields[6]),
            max_price_d18=int(fields[7]),
            min_tick=int(fields[8]),
            max_tick=int(fields[9]),
            settled=bool(fields[10]),
            settlement_price_d18=int(fields[11]),
            current_sqrt_price_x96=int(current_sqrt_price_x96),
            collateral_asset=collateral_asset,
            claim_yes=_decode_claim(fields[13]),
            claim_no=_decode_claim(fields[14]),
        )
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"getMarket: {exc}") from exc


def decode_position(raw: Any) -> OnchainPosition:
    """Decode a getPosition() struct."""
    fields = _unwrap(raw, 10, "getPosition")
    try:
        return OnchainPosition(
            token_id=int(fields[0]),
            kind=int(fields[1]),
            market_id=int(fields[2]),
            deposited_collateral=int(fields[3]),
            borrowed_v_quote=int(fields[4]),
            borrowed_v_base=int(fields[5]),
            v_quote_amount=int(fields[6]),
            v_base_amount=int(fields[7]),
            uniswap_position_id=int(fields[8]),
            settled=bool(fields[9]),
        )
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"getPosition: {exc}") from exc


def decode_quote(raw: Any) -> LiquidityQuote:
    """Decode quoteLiquidityPositionTokens() -> (amount0, amount1, liquidity)."""
    fields = _unwrap(raw, 3, "quoteLiquidityPositionTokens")
    try:
        return LiquidityQuote(
            amount_base=int(fields[0]),
            amount_quote=int(fields[1]),
            liquidity=int(fields[2]),
        )
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"quoteLiquidityPositionTokens: {exc}") from exc


def decode_collateral_asset(raw: Any) -> str:
    """getMarketGroup() -> collateral asset address."""
    fields = _unwrap(raw, 2, "getMarketGroup")
    return str(fields[1])


# ------------------------------------------------------------------
# Receipts
# ------------------------------------------------------------------

def to_log_entry(log: Any) -> LogEntry:
    """Normalise a web3 receipt log (AttributeDict or plain dict)."""
    try:
        topics = tuple(_to_hex(t) for t in log["topics"])
        data = log.get("data", b"") if hasattr(log, "get") else b""
        return LogEntry(
            address=str(log["address"]),
            topics=topics,
            data=_to_hex(data) if data else "0x",
        )
    except (KeyError, TypeError) as exc:
        raise DecodeError(f"Malformed receipt log: {exc}") from exc


def extract_minted_token_id(confirmation: TxConfirmation, owner: str) -> int:
    """
    Token id of the ERC-721 minted to owner in this transaction.

    Looks for Transfer(from=0x0, to=owner, tokenId) with all three
    arguments indexed (four topics).

    Raises
    ------
    TokenIdExtractionFailed
        If no such log exists.
    """
    owner_lc = owner.lower()
    zero_lc = ZERO_ADDRESS.lower()

    for log in confirmation.logs:
        if len(log.topics) != 4 or log.topics[0] != TRANSFER_EVENT_TOPIC:
            continue
        sender = _address_from_topic(log.topics[1])
        recipient = _address_from_topic(log.topics[2])
        if sender == zero_lc and recipient == owner_lc:
            return int(log.topics[3], 16)

    raise TokenIdExtractionFailed(
        f"No mint Transfer to {owner} in transaction {confirmation.tx_hash}"
    )


# ------------------------------------------------------------------
# Attestations
# ------------------------------------------------------------------

def decode_attestation_data(data: bytes | str) -> AttestationPayload:
    """ABI-decode the attestation schema fields."""
    if isinstance(data, str):
        try:
            data = bytes.fromhex(data[2:] if data.startswith("0x") else data)
        except ValueError as exc:
            raise DecodeError(f"Attestation data is not hex: {exc}") from exc
    try:
        market_address, market_id, question_id, prediction, comment = abi_decode(
            list(ATTESTATION_SCHEMA_TYPES), bytes(data)
        )
    except Exception as exc:
        raise DecodeError(f"Attestation data does not match schema: {exc}") from exc

    return AttestationPayload(
        market_address=str(market_address),
        market_id=int(market_id),
        question_id=_to_hex(question_id),
        prediction=int(prediction),
        comment=comment,
    )


@dataclass(frozen=True)
class AttestedLog:
    """One Attested event from the EAS registry."""
    uid: str
    attester: str
    block_number: int


@dataclass(frozen=True)
class AttestationRecord:
    """The getAttestation() fields the agent uses."""
    uid: str
    attester: str
    time: int
    revocation_time: int
    data: bytes


def decode_attested_log(event: Any) -> AttestedLog:
    """Decode a web3 event dict for Attested."""
    try:
        args = event["args"]
        return AttestedLog(
            uid=_to_hex(args["uid"]),
            attester=str(args["attester"]),
            block_number=int(event["blockNumber"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise DecodeError(f"Malformed Attested event: {exc}") from exc


def decode_attestation_record(raw: Any) -> AttestationRecord:
    """Decode a getAttestation() struct."""
    fields = _unwrap(raw, 10, "getAttestation")
    try:
        return AttestationRecord(
            uid=_to_hex(fields[0]),
            attester=str(fields[7]),
            time=int(fields[2]),
            revocation_time=int(fields[4]),
            data=bytes(fields[9]),
        )
    except (TypeError, ValueError) as exc:
        raise DecodeError(f"getAttestation: {exc}") from exc


def decode_prediction_probability(prediction: int) -> float:
    """A sqrtPriceX96-encoded prediction as a probability in [0, 1]."""
    price = sqrt_price_x96_to_price(prediction)
    return max(0.0, min(1.0, price))


# ------------------------------------------------------------------
# GraphQL market listing
# ------------------------------------------------------------------

def decode_market_summary(item: dict) -> MarketSummary:
    """Decode one row of the unsettled-markets GraphQL query."""
    try:
        group = item.get("marketGroup") or {}
        end_ts = item.get("endTimestamp")
        return MarketSummary(
            market_id=int(item["marketId"]),
            group_address=str(group.get("address") or ""),
            collateral_asset=str(group.get("collateralAsset") or ""),
            question=str(group.get("question") or ""),
            claim_yes=item.get("claimStatementYesOrNumeric"),
            claim_no=item.get("claimStatementNo"),
            end_timestamp=int(end_ts) if end_ts is not None else None,
        )
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise DecodeError(f"Malformed market row: {exc}") from exc
