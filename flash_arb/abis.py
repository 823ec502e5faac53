"""
Minimal contract ABIs for the venues, oracles and settlement contract.
"""


def _fn(name, inputs, outputs, mutability="view"):
    return {
        "name": name,
        "type": "function",
        "stateMutability": mutability,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
    }


# Uniswap V3 QuoterV1: simulate-only, reverts internally and returns the amount
UNISWAP_V3_QUOTER_ABI = [
    _fn(
        "quoteExactInputSingle",
        [("tokenIn", "address"), ("tokenOut", "address"), ("fee", "uint24"),
         ("amountIn", "uint256"), ("sqrtPriceLimitX96", "uint160")],
        [("amountOut", "uint256")],
        mutability="nonpayable",
    ),
]

UNISWAP_V3_FACTORY_ABI = [
    _fn("getPool", [("tokenA", "address"), ("tokenB", "address"), ("fee", "uint24")],
        [("pool", "address")]),
]

UNISWAP_V3_POOL_ABI = [
    _fn("liquidity", [], [("", "uint128")]),
]

UNISWAP_V2_FACTORY_ABI = [
    _fn("getPair", [("tokenA", "address"), ("tokenB", "address")], [("pair", "address")]),
]

UNISWAP_V2_PAIR_ABI = [
    _fn("getReserves", [],
        [("reserve0", "uint112"), ("reserve1", "uint112"), ("blockTimestampLast", "uint32")]),
    _fn("token0", [], [("", "address")]),
]

UNISWAP_V2_ROUTER_ABI = [
    _fn("getAmountsOut", [("amountIn", "uint256"), ("path", "address[]")],
        [("amounts", "uint256[]")]),
]

CHAINLINK_AGGREGATOR_ABI = [
    _fn("latestRoundData", [],
        [("roundId", "uint80"), ("answer", "int256"), ("startedAt", "uint256"),
         ("updatedAt", "uint256"), ("answeredInRound", "uint80")]),
    _fn("decimals", [], [("", "uint8")]),
]

# Flash-loan settlement contract (owner-restricted)
SETTLEMENT_ABI = [
    _fn(
        "executeArbitrage",
        [("asset", "address"), ("amount", "uint256"), ("buyRouter", "address"),
         ("sellRouter", "address"), ("tokenIn", "address"), ("tokenOut", "address"),
         ("fee", "uint24"), ("slippagePercent", "uint256")],
        [],
        mutability="nonpayable",
    ),
    _fn("rescueTokens", [("token", "address")], [], mutability="nonpayable"),
    _fn("owner", [], [("", "address")]),
]
