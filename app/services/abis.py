"""
app/services/abis.py
Minimal ABIs for the contracts the agent talks to: the market-group
protocol contract (also the ERC-721 position NFT), ERC-20 collateral, and
the EAS attestation registry.
"""

_MARKET_STRUCT = {
    "name": "marketData",
    "type": "tuple",
    "components": [
        {"name": "marketId", "type": "uint256"},
        {"name": "startTime", "type": "uint256"},
        {"name": "endTime", "type": "uint256"},
        {"name": "pool", "type": "address"},
        {"name": "quoteToken", "type": "address"},
        {"name": "baseToken", "type": "address"},
        {"name": "minPriceD18", "type": "uint256"},
        {"name": "maxPriceD18", "type": "uint256"},
        {"name": "baseAssetMinPriceTick", "type": "int24"},
        {"name": "baseAssetMaxPriceTick", "type": "int24"},
        {"name": "settled", "type": "bool"},
        {"name": "settlementPriceD18", "type": "uint256"},
        {"name": "assertionId", "type": "bytes32"},
        {"name": "claimStatementYesOrNumeric", "type": "bytes"},
        {"name": "claimStatementNo", "type": "bytes"},
    ],
}

_POSITION_STRUCT = {
    "name": "position",
    "type": "tuple",
    "components": [
        {"name": "id", "type": "uint256"},
        {"name": "kind", "type": "uint8"},
        {"name": "marketId", "type": "uint256"},
        {"name": "depositedCollateralAmount", "type": "uint256"},
        {"name": "borrowedVQuote", "type": "uint256"},
        {"name": "borrowedVBase", "type": "uint256"},
        {"name": "vQuoteAmount", "type": "uint256"},
        {"name": "vBaseAmount", "type": "uint256"},
        {"name": "uniswapPositionId", "type": "uint256"},
        {"name": "isSettled", "type": "bool"},
    ],
}


def _view(name: str, inputs: list[dict], outputs: list[dict]) -> dict:
    return {
        "type": "function",
        "name": name,
        "stateMutability": "view",
        "inputs": inputs,
        "outputs": outputs,
    }


def _write(name: str, inputs: list[dict], outputs: list[dict]) -> dict:
    return {
        "type": "function",
        "name": name,
        "stateMutability": "nonpayable",
        "inputs": inputs,
        "outputs": outputs,
    }


PROTOCOL_ABI: list[dict] = [
    _view("getMarket", [{"name": "id", "type": "uint256"}], [_MARKET_STRUCT]),
    _view(
        "getMarketGroup",
        [],
        [
            {"name": "owner", "type": "address"},
            {"name": "collateralAsset", "type": "address"},
        ],
    ),
    _view("getSqrtPriceX96", [{"name": "marketId", "type": "uint256"}], [{"name": "", "type": "uint160"}]),
    _view("getPosition", [{"name": "positionId", "type": "uint256"}], [_POSITION_STRUCT]),
    _view("balanceOf", [{"name": "holder", "type": "address"}], [{"name": "", "type": "uint256"}]),
    _view(
        "tokenOfOwnerByIndex",
        [{"name": "owner", "type": "address"}, {"name": "index", "type": "uint256"}],
        [{"name": "", "type": "uint256"}],
    ),
    _view(
        "quoteLiquidityPositionTokens",
        [
            {"name": "marketId", "type": "uint256"},
            {"name": "depositedCollateralAmount", "type": "uint256"},
            {"name": "sqrtPriceX96", "type": "uint160"},
            {"name": "sqrtPriceAX96", "type": "uint160"},
            {"name": "sqrtPriceBX96", "type": "uint160"},
        ],
        [
            {"name": "amount0", "type": "uint256"},
            {"name": "amount1", "type": "uint256"},
            {"name": "liquidity", "type": "uint128"},
        ],
    ),
    _write(
        "createLiquidityPosition",
        [
            {
                "name": "params",
                "type": "tuple",
                "components": [
                    {"name": "marketId", "type": "uint256"},
                    {"name": "amountBaseToken", "type": "uint256"},
                    {"name": "amountQuoteToken", "type": "uint256"},
                    {"name": "collateralAmount", "type": "uint256"},
                    {"name": "lowerTick", "type": "int24"},
                    {"name": "upperTick", "type": "int24"},
                    {"name": "minAmountBaseToken", "type": "uint256"},
                    {"name": "minAmountQuoteToken", "type": "uint256"},
                    {"name": "deadline", "type": "uint256"},
                ],
            }
        ],
        [
            {"name": "id", "type": "uint256"},
            {"name": "requiredCollateralAmount", "type": "uint256"},
            {"name": "totalDepositedCollateralAmount", "type": "uint256"},
            {"name": "uniswapNftId", "type": "uint256"},
            {"name": "liquidity", "type": "uint128"},
            {"name": "addedAmount0", "type": "uint256"},
            {"name": "addedAmount1", "type": "uint256"},
        ],
    ),
    _write(
        "closeLiquidityPosition",
        [
            {
                "name": "params",
                "type": "tuple",
                "components": [
                    {"name": "positionId", "type": "uint256"},
                    {"name": "amount0Min", "type": "uint256"},
                    {"name": "amount1Min", "type": "uint256"},
                    {"name": "tradeSlippage", "type": "uint256"},
                    {"name": "deadline", "type": "uint256"},
                ],
            }
        ],
        [
            {"name": "amount0", "type": "uint256"},
            {"name": "amount1", "type": "uint256"},
            {"name": "collateralAmount", "type": "int256"},
        ],
    ),
]

ERC20_ABI: list[dict] = [
    _view("balanceOf", [{"name": "owner", "type": "address"}], [{"name": "", "type": "uint256"}]),
    _view(
        "allowance",
        [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}],
        [{"name": "", "type": "uint256"}],
    ),
    _write(
        "approve",
        [{"name": "spender", "type": "address"}, {"name": "value", "type": "uint256"}],
        [{"name": "", "type": "bool"}],
    ),
    _view("decimals", [], [{"name": "", "type": "uint8"}]),
    _view("symbol", [], [{"name": "", "type": "string"}]),
]

EAS_ABI: list[dict] = [
    {
        "type": "event",
        "name": "Attested",
        "anonymous": False,
        "inputs": [
            {"name": "recipient", "type": "address", "indexed": True},
            {"name": "attester", "type": "address", "indexed": True},
            {"name": "uid", "type": "bytes32", "indexed": False},
            {"name": "schemaUID", "type": "bytes32", "indexed": True},
        ],
    },
    _view(
        "getAttestation",
        [{"name": "uid", "type": "bytes32"}],
        [
            {
                "name": "",
                "type": "tuple",
                "components": [
                    {"name": "uid", "type": "bytes32"},
                    {"name": "schema", "type": "bytes32"},
                    {"name": "time", "type": "uint64"},
                    {"name": "expirationTime", "type": "uint64"},
                    {"name": "revocationTime", "type": "uint64"},
                    {"name": "refUID", "type": "bytes32"},
                    {"name": "recipient", "type": "address"},
                    {"name": "attester", "type": "address"},
                    {"name": "revocable", "type": "bool"},
                    {"name": "data", "type": "bytes"},
                ],
            }
        ],
    ),
]
