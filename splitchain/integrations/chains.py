from typing import Dict, List, Optional

SUPPORTED_CHAINS: List[dict] = [
    {"id": 1, "name": "Ethereum", "nativeCurrency": "ETH", "usdc": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"},
    {"id": 137, "name": "Polygon", "nativeCurrency": "MATIC", "usdc": "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"},
    {"id": 42161, "name": "Arbitrum", "nativeCurrency": "ETH", "usdc": "0xFF970A61A04b1cA14834A43f5dE4533eBDDB5CC8"},
    {"id": 10, "name": "Optimism", "nativeCurrency": "ETH", "usdc": "0x7F5c764cBc14f9669B88837ca1490cCa17c31607"},
    {"id": 56, "name": "BSC", "nativeCurrency": "BNB", "usdc": "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d"},
]

DEFAULT_DESTINATION_CHAIN = 42161

# stablecoins accepted for settlement, per chain
TOKENS: Dict[int, List[dict]] = {
    1: [
        {"address": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", "symbol": "USDC", "decimals": 6},
        {"address": "0xdAC17F958D2ee523a2206206994597C13D831ec7", "symbol": "USDT", "decimals": 6},
    ],
    137: [
        {"address": "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174", "symbol": "USDC", "decimals": 6},
        {"address": "0xc2132D05D31c914a87C6611C10748AEb04B58e8F", "symbol": "USDT", "decimals": 6},
    ],
    42161: [
        {"address": "0xFF970A61A04b1cA14834A43f5dE4533eBDDB5CC8", "symbol": "USDC", "decimals": 6},
        {"address": "0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9", "symbol": "USDT", "decimals": 6},
    ],
}


def get_chain(chain_id: int) -> Optional[dict]:
    for chain in SUPPORTED_CHAINS:
        if chain["id"] == chain_id:
            return chain
    return None


def get_tokens(chain_id: int) -> List[dict]:
    return TOKENS.get(chain_id, [])


def pick_destination_chain(preferred_chains: List[int], requested: Optional[int] = None) -> int:
    """Requested chain if the payee accepts it, else the payee's first choice."""
    allowed = [c for c in preferred_chains if get_chain(c)] if preferred_chains else []
    if requested is not None and (not allowed or requested in allowed):
        return requested
    if allowed:
        return allowed[0]
    return DEFAULT_DESTINATION_CHAIN
