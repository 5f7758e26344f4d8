"""
app/services/chain_client.py
Async web3 wrapper around the market-group protocol contract, the ERC-20
collateral token and the EAS registry.

Reads raise ChainReadError; writes raise ChainWriteError. Every write is
signed locally with the configured key and returns a PendingTransaction
whose wait() resolves to a TxConfirmation once mined with status 1.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3

from app.services.abis import EAS_ABI, ERC20_ABI, PROTOCOL_ABI
from app.services.chain_codec import (
    AttestationRecord,
    AttestedLog,
    TxConfirmation,
    decode_attestation_record,
    decode_attested_log,
    decode_collateral_asset,
    decode_market,
    decode_position,
    decode_quote,
    to_log_entry,
)
from core.config import Settings
from core.exceptions import ChainReadError, ChainWriteError, DecodeError
from core.models import LiquidityQuote, Market, OnchainPosition

logger = logging.getLogger(__name__)


def _checksum(address: str) -> str:
    return AsyncWeb3.to_checksum_address(address)


class PendingTransaction:
    """A submitted transaction that has not been confirmed yet."""

    def __init__(
        self,
        tx_hash: str,
        waiter: Callable[[], Awaitable[TxConfirmation]],
    ) -> None:
        self.tx_hash = tx_hash
        self._waiter = waiter

    async def wait(self) -> TxConfirmation:
        return await self._waiter()


class ChainClient:
    """Reads and writes against one market-group contract."""

    def __init__(
        self,
        w3: AsyncWeb3,
        account: LocalAccount,
        contract_address: str,
        chain_id: int,
        receipt_timeout: float = 180.0,
    ) -> None:
        self._w3 = w3
        self._account = account
        self._chain_id = chain_id
        self._receipt_timeout = receipt_timeout
        self.contract_address = _checksum(contract_address)
        self._protocol = w3.eth.contract(address=self.contract_address, abi=PROTOCOL_ABI)

    @property
    def wallet_address(self) -> str:
        return self._account.address

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _read(self, label: str, fn: Any) -> Any:
        try:
            return await fn.call()
        except Exception as exc:
            raise ChainReadError(f"{label} failed: {exc}") from exc

    async def _send(self, label: str, fn: Any) -> PendingTransaction:
        try:
            nonce = await self._w3.eth.get_transaction_count(self.wallet_address, "pending")
            tx = await fn.build_transaction({
                "from": self.wallet_address,
                "nonce": nonce,
                "chainId": self._chain_id,
            })
            signed = self._account.sign_transaction(tx)
            raw_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as exc:
            raise ChainWriteError(label, str(exc)) from exc

        tx_hash = "0x" + bytes(raw_hash).hex()
        logger.info("%s submitted: %s", label, tx_hash)

        async def _wait() -> TxConfirmation:
            return await self._wait_for(label, raw_hash, tx_hash)

        return PendingTransaction(tx_hash, _wait)

    async def _wait_for(self, label: str, raw_hash: Any, tx_hash: str) -> TxConfirmation:
        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                raw_hash, timeout=self._receipt_timeout
            )
        except Exception as exc:
            raise ChainWriteError(label, f"no receipt for {tx_hash}: {exc}") from exc

        if receipt["status"] != 1:
            raise ChainWriteError(label, f"transaction {tx_hash} reverted")

        try:
            logs = tuple(to_log_entry(log) for log in receipt["logs"])
        except DecodeError as exc:
            raise ChainWriteError(label, str(exc)) from exc

        return TxConfirmation(
            tx_hash=tx_hash,
            block_number=int(receipt["blockNumber"]),
            gas_used=int(receipt["gasUsed"]),
            logs=logs,
        )

    def _erc20(self, token: str) -> Any:
        return self._w3.eth.contract(address=_checksum(token), abi=ERC20_ABI)

    # ------------------------------------------------------------------
    # Protocol reads
    # ------------------------------------------------------------------

    async def get_market(self, market_id: int) -> Market:
        """Market struct, collateral asset and current sqrt price in one record."""
        raw = await self._read("getMarket", self._protocol.functions.getMarket(market_id))
        group = await self._read("getMarketGroup", self._protocol.functions.getMarketGroup())
        sqrt_price = await self.get_sqrt_price(market_id)
        try:
            return decode_market(
                raw,
                group_address=self.contract_address,
                collateral_asset=decode_collateral_asset(group),
                current_sqrt_price_x96=sqrt_price,
            )
        except DecodeError as exc:
            raise ChainReadError(f"getMarket({market_id}) returned bad data: {exc}") from exc

    async def get_sqrt_price(self, market_id: int) -> int:
        return int(await self._read(
            "getSqrtPriceX96", self._protocol.functions.getSqrtPriceX96(market_id)
        ))

    async def get_position(self, token_id: int) -> OnchainPosition:
        raw = await self._read("getPosition", self._protocol.functions.getPosition(token_id))
        try:
            return decode_position(raw)
        except DecodeError as exc:
            raise ChainReadError(f"getPosition({token_id}) returned bad data: {exc}") from exc

    async def balance_of(self, owner: str) -> int:
        """Number of position NFTs held by owner."""
        return int(await self._read(
            "balanceOf", self._protocol.functions.balanceOf(_checksum(owner))
        ))

    async def token_of_owner_by_index(self, owner: str, index: int) -> int:
        return int(await self._read(
            "tokenOfOwnerByIndex",
            self._protocol.functions.tokenOfOwnerByIndex(_checksum(owner), index),
        ))

    async def quote_liquidity(
        self,
        market_id: int,
        collateral_amount: int,
        current_sqrt_price_x96: int,
        lower_sqrt_price_x96: int,
        upper_sqrt_price_x96: int,
    ) -> LiquidityQuote:
        raw = await self._read(
            "quoteLiquidityPositionTokens",
            self._protocol.functions.quoteLiquidityPositionTokens(
                market_id,
                collateral_amount,
                current_sqrt_price_x96,
                lower_sqrt_price_x96,
                upper_sqrt_price_x96,
            ),
        )
        try:
            return decode_quote(raw)
        except DecodeError as exc:
            raise ChainReadError(str(exc)) from exc

    # ------------------------------------------------------------------
    # ERC-20 reads
    # ------------------------------------------------------------------

    async def get_token_balance(self, token: str, owner: str) -> int:
        return int(await self._read(
            "balanceOf", self._erc20(token).functions.balanceOf(_checksum(owner))
        ))

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        return int(await self._read(
            "allowance",
            self._erc20(token).functions.allowance(_checksum(owner), _checksum(spender)),
        ))

    async def get_token_symbol(self, token: str) -> str:
        return str(await self._read("symbol", self._erc20(token).functions.symbol()))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_position(self, params: dict) -> PendingTransaction:
        """createLiquidityPosition(params) with the struct given as a dict."""
        return await self._send(
            "createLiquidityPosition",
            self._protocol.functions.createLiquidityPosition(params),
        )

    async def close_position(self, params: dict) -> PendingTransaction:
        """closeLiquidityPosition(params) with the struct given as a dict."""
        return await self._send(
            "closeLiquidityPosition",
            self._protocol.functions.closeLiquidityPosition(params),
        )

    async def approve(self, token: str, spender: str, amount: int) -> PendingTransaction:
        return await self._send(
            "approve",
            self._erc20(token).functions.approve(_checksum(spender), amount),
        )


class EasClient:
    """Read-only access to the EAS attestation registry."""

    def __init__(self, w3: AsyncWeb3, contract_address: str) -> None:
        self._w3 = w3
        self._eas = w3.eth.contract(address=_checksum(contract_address), abi=EAS_ABI)

    async def block_number(self) -> int:
        try:
            return int(await self._w3.eth.block_number)
        except Exception as exc:
            raise ChainReadError(f"eth_blockNumber failed: {exc}") from exc

    async def get_attested_logs(
        self,
        from_block: int,
        to_block: int,
        attester: str,
        schema_id: str,
    ) -> list[AttestedLog]:
        """Attested events for one attester and schema in [from_block, to_block]."""
        try:
            events = await self._eas.events.Attested.get_logs(
                from_block=from_block,
                to_block=to_block,
                argument_filters={"attester": _checksum(attester), "schemaUID": schema_id},
            )
        except Exception as exc:
            raise ChainReadError(f"Attested logs failed: {exc}") from exc
        return [decode_attested_log(event) for event in events]

    async def get_attestation(self, uid: str) -> AttestationRecord:
        try:
            raw = await self._eas.functions.getAttestation(uid).call()
        except Exception as exc:
            raise ChainReadError(f"getAttestation({uid}) failed: {exc}") from exc
        return decode_attestation_record(raw)


class ChainGateway:
    """One web3 connection and signer, one ChainClient per market group."""

    def __init__(
        self,
        w3: AsyncWeb3,
        account: LocalAccount,
        chain_id: int,
        receipt_timeout: float = 180.0,
    ) -> None:
        self.w3 = w3
        self.account = account
        self._chain_id = chain_id
        self._receipt_timeout = receipt_timeout
        self._clients: dict[str, ChainClient] = {}

    @property
    def wallet_address(self) -> str:
        return self.account.address

    def for_group(self, group_address: str) -> ChainClient:
        key = group_address.lower()
        client = self._clients.get(key)
        if client is None:
            client = ChainClient(
                self.w3,
                self.account,
                group_address,
                self._chain_id,
                self._receipt_timeout,
            )
            self._clients[key] = client
        return client

    def eas(self, contract_address: str) -> EasClient:
        return EasClient(self.w3, contract_address)

    async def close(self) -> None:
        await self.w3.provider.disconnect()


async def connect_chain(settings: Settings) -> ChainGateway:
    """
    Build the gateway and verify the RPC answers.

    Raises
    ------
    RuntimeError
        If the RPC endpoint is unreachable or on the wrong chain.
    """
    w3 = AsyncWeb3(AsyncHTTPProvider(settings.RPC_URL))
    if not await w3.is_connected():
        raise RuntimeError(f"Cannot connect to RPC at {settings.RPC_URL}")

    chain_id = await w3.eth.chain_id
    if chain_id != settings.CHAIN_ID:
        raise RuntimeError(
            f"RPC chain id {chain_id} does not match CHAIN_ID {settings.CHAIN_ID}"
        )

    account: LocalAccount = Account.from_key(settings.PRIVATE_KEY)
    logger.info("Connected to chain %d as %s", chain_id, account.address)
    return ChainGateway(w3, account, chain_id, settings.TX_RECEIPT_TIMEOUT_SECONDS)
