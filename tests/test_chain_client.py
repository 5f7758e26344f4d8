"""
tests/test_chain_client.py
Tests for the web3 wrapper's read / send / confirm plumbing, using a
stand-in for AsyncWeb3 and a real local signer.
"""

import pytest
from eth_account import Account

from app.services.chain_client import ChainClient, ChainGateway
from core.constants import TRANSFER_EVENT_TOPIC
from core.exceptions import ChainReadError, ChainWriteError
from tests.conftest import GROUP, WALLET, address_topic, token_topic

ACCOUNT = Account.from_key("0x" + "11" * 32)
TX_HASH = b"\x12" * 32


class _Function:
    def __init__(self, name: str, args: tuple, result=None, error: Exception | None = None) -> None:
        self.name = name
        self.args = args
        self._result = result
        self._error = error

    async def call(self):
        if self._error is not None:
            raise self._error
        return self._result

    async def build_transaction(self, tx: dict) -> dict:
        if self._error is not None:
            raise self._error
        return {
            "to": GROUP,
            "value": 0,
            "gas": 500_000,
            "gasPrice": 10 ** 8,
            "data": "0x",
            **tx,
        }


class _Functions:
    def __init__(self, results: dict, errors: dict) -> None:
        self._results = results
        self._errors = errors

    def __getattr__(self, name: str):
        def build(*args):
            return _Function(name, args, self._results.get(name), self._errors.get(name))
        return build


class _Contract:
    def __init__(self, results: dict, errors: dict) -> None:
        self.functions = _Functions(results, errors)


class _Eth:
    def __init__(self) -> None:
        self.results: dict = {}
        self.errors: dict = {}
        self.receipt: dict = {}
        self.sent: list[bytes] = []
        self.nonce_block: str | None = None

    def contract(self, address: str, abi: list) -> _Contract:
        return _Contract(self.results, self.errors)

    async def get_transaction_count(self, address: str, block: str) -> int:
        self.nonce_block = block
        return 3

    async def send_raw_transaction(self, raw: bytes) -> bytes:
        self.sent.append(raw)
        return TX_HASH

    async def wait_for_transaction_receipt(self, tx_hash, timeout: float) -> dict:
        return self.receipt


class _W3:
    def __init__(self) -> None:
        self.eth = _Eth()


def _client() -> tuple[ChainClient, _Eth]:
    w3 = _W3()
    return ChainClient(w3, ACCOUNT, GROUP, chain_id=42161), w3.eth


class TestReads:
    @pytest.mark.asyncio
    async def test_decoded_read(self):
        client, eth = _client()
        eth.results["getPosition"] = (3, 1, 7, 10 ** 18, 0, 0, 0, 0, 3, False)

        record = await client.get_position(3)

        assert record.token_id == 3
        assert record.market_id == 7

    @pytest.mark.asyncio
    async def test_failed_call_raises_read_error(self):
        client, eth = _client()
        eth.errors["balanceOf"] = ValueError("execution reverted")
        with pytest.raises(ChainReadError):
            await client.balance_of(WALLET)

    @pytest.mark.asyncio
    async def test_bad_shape_raises_read_error(self):
        client, eth = _client()
        eth.results["getPosition"] = (3, 1)
        with pytest.raises(ChainReadError):
            await client.get_position(3)


class TestWrites:
    @pytest.mark.asyncio
    async def test_send_and_confirm(self):
        client, eth = _client()
        eth.receipt = {
            "status": 1,
            "blockNumber": 55,
            "gasUsed": 210_000,
            "logs": [{
                "address": GROUP,
                "topics": [
                    bytes.fromhex(TRANSFER_EVENT_TOPIC[2:]),
                    bytes.fromhex(address_topic("0x" + "00" * 20)[2:]),
                    bytes.fromhex(address_topic(ACCOUNT.address)[2:]),
                    bytes.fromhex(token_topic(9)[2:]),
                ],
                "data": b"",
            }],
        }

        pending = await client.create_position({"marketId": 7})
        confirmation = await pending.wait()

        assert pending.tx_hash == "0x" + TX_HASH.hex()
        assert eth.nonce_block == "pending"
        assert len(eth.sent) == 1
        assert confirmation.block_number == 55
        assert confirmation.gas_used == 210_000
        assert confirmation.logs[0].topics[0] == TRANSFER_EVENT_TOPIC
        assert int(confirmation.logs[0].topics[3], 16) == 9

    @pytest.mark.asyncio
    async def test_reverted_transaction(self):
        client, eth = _client()
        eth.receipt = {"status": 0, "blockNumber": 55, "gasUsed": 1, "logs": []}

        pending = await client.close_position({"positionId": 1})

        with pytest.raises(ChainWriteError, match="reverted"):
            await pending.wait()

    @pytest.mark.asyncio
    async def test_build_failure_raises_before_send(self):
        client, eth = _client()
        eth.errors["approve"] = ValueError("gas estimation failed")

        with pytest.raises(ChainWriteError) as exc_info:
            await client.approve(GROUP, GROUP, 1)

        assert exc_info.value.action == "approve"
        assert eth.sent == []


class TestGateway:
    def test_client_cached_per_group(self):
        gateway = ChainGateway(_W3(), ACCOUNT, chain_id=42161)
        first = gateway.for_group(GROUP)
        assert gateway.for_group(GROUP) is first
        assert gateway.for_group("0x" + "ab" * 20) is not first
        assert gateway.wallet_address == ACCOUNT.address
        assert first.wallet_address == ACCOUNT.address
