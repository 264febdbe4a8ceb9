"""Networks Balancer is deployed on and where to query them."""

from typing import Dict, List, Optional, Tuple

BASE_ENDPOINT_V2 = "https://api.thegraph.com/subgraphs/name/balancer-labs"

NETWORK_TO_BALANCER_ENDPOINT_MAP: Dict[str, str] = {
    "ethereum": f"{BASE_ENDPOINT_V2}/balancer-v2",
    "polygon": f"{BASE_ENDPOINT_V2}/balancer-polygon-v2",
    "polygon-zkevm": "https://api.studio.thegraph.com/query/24660/balancer-polygon-zk-v2/version/latest",
    "arbitrum": f"{BASE_ENDPOINT_V2}/balancer-arbitrum-v2",
    "gnosis": f"{BASE_ENDPOINT_V2}/balancer-gnosis-chain-v2",
    "optimism": f"{BASE_ENDPOINT_V2}/balancer-optimism-v2",
    "base": "https://api.studio.thegraph.com/query/24660/balancer-base-v2/version/latest",
    "avalanche": f"{BASE_ENDPOINT_V2}/balancer-avalanche-v2",
}

# (name, slug, chain id)
NETWORK_SEED: List[Tuple[str, str, int]] = [
    ("Ethereum", "ethereum", 1),
    ("Polygon", "polygon", 137),
    ("Arbitrum", "arbitrum", 42161),
    ("Gnosis", "gnosis", 100),
    ("Optimism", "optimism", 10),
    ("Goerli", "goerli", 5),
    ("Sepolia", "sepolia", 11155111),
    ("PolygonZKEVM", "polygon-zkevm", 1101),
    ("Base", "base", 8453),
    ("Avalanche", "avalanche", 43114),
]

NETWORK_ALIASES: Dict[str, str] = {
    "zkevm": "polygon-zkevm",
    "mainnet": "ethereum",
}


def network_names() -> List[str]:
    return list(NETWORK_TO_BALANCER_ENDPOINT_MAP)


def endpoint_for(network: str) -> str:
    """Return the subgraph endpoint for ``network``."""
    try:
        return NETWORK_TO_BALANCER_ENDPOINT_MAP[network]
    except KeyError:
        raise ValueError(f"Unsupported network: {network}") from None


def normalize_network_slug(value: Optional[str]) -> Optional[str]:
    """Map a raw network name from the indexers onto a ``networks.slug``.

    ``zkEVM`` and ``MAINNET`` style names are aliases; every other name is only
    lower-cased. ``None`` passes through.
    """
    if value is None:
        return None
    lowered = value.lower()
    return NETWORK_ALIASES.get(lowered, lowered)
