"""Triangle arbitrage discovery and calculation."""

from typing import Dict, List, Optional, Tuple
import networkx as nx
from loguru import logger

from .types import Ticker


class Triangle:
    """Represents a three-asset trading cycle A -> B -> C -> A."""

    def __init__(self, asset_a: str, asset_b: str, asset_c: str,
                 pair_ab: str, pair_bc: str, pair_ca: str):
        self.asset_a = asset_a
        self.asset_b = asset_b
        self.asset_c = asset_c
        self.pair_ab = pair_ab
        self.pair_bc = pair_bc
        self.pair_ca = pair_ca

    def __repr__(self) -> str:
        return f"Triangle({self.asset_a}->{self.asset_b}->{self.asset_c}->{self.asset_a})"

    def __eq__(self, other) -> bool:
        return isinstance(other, Triangle) and self.get_legs() == other.get_legs()

    def __hash__(self) -> int:
        return hash(tuple(self.get_legs()))

    @property
    def label(self) -> str:
        return f"{self.asset_a}-{self.asset_b}-{self.asset_c}"

    def get_pairs(self) -> List[str]:
        """Get all pairs in this triangle, in trading order."""
        return [self.pair_ab, self.pair_bc, self.pair_ca]

    def get_assets(self) -> List[str]:
        """Get all assets in this triangle."""
        return [self.asset_a, self.asset_b, self.asset_c]

    def get_legs(self) -> List[Tuple[str, str, str]]:
        """(from_asset, to_asset, pair) for each leg."""
        return [
            (self.asset_a, self.asset_b, self.pair_ab),
            (self.asset_b, self.asset_c, self.pair_bc),
            (self.asset_c, self.asset_a, self.pair_ca),
        ]


def build_asset_graph(symbols: List[str], exclude_assets: Optional[List[str]] = None) -> nx.DiGraph:
    """Build a directed conversion graph where each pair is traversable both ways."""
    exclude = set(exclude_assets or [])
    G = nx.DiGraph()

    for symbol in sorted(set(symbols)):
        if '/' not in symbol:
            continue
        base, quote = symbol.split('/', 1)
        if base in exclude or quote in exclude or base == quote:
            continue
        G.add_edge(quote, base, pair=symbol, side='buy')
        G.add_edge(base, quote, pair=symbol, side='sell')

    return G


def find_triangles(symbols: List[str], quote_assets: List[str],
                   exclude_assets: Optional[List[str]] = None) -> List[Triangle]:
    """Find all valid triangles that start and end in one of quote_assets."""
    G = build_asset_graph(symbols, exclude_assets)
    all_assets = sorted(G.nodes)
    triangles = []

    for asset_a in all_assets:
        if asset_a not in quote_assets:
            continue

        for asset_b in all_assets:
            if asset_b == asset_a:
                continue

            for asset_c in all_assets:
                if asset_c in [asset_a, asset_b]:
                    continue

                if (G.has_edge(asset_a, asset_b) and
                        G.has_edge(asset_b, asset_c) and
                        G.has_edge(asset_c, asset_a)):

                    pair_ab = G[asset_a][asset_b]['pair']
                    pair_bc = G[asset_b][asset_c]['pair']
                    pair_ca = G[asset_c][asset_a]['pair']

                    triangles.append(Triangle(asset_a, asset_b, asset_c, pair_ab, pair_bc, pair_ca))

    logger.debug(f"Found {len(triangles)} valid triangles")
    return triangles


def convert(amount: float, from_asset: str, ticker: Ticker) -> float:
    """Convert amount of from_asset through one pair at top of book.

    Buying the base spends quote at the ask; selling the base receives quote
    at the bid.
    """
    if from_asset == ticker.quote_asset:
        return amount / ticker.ask
    if from_asset == ticker.base_asset:
        return amount * ticker.bid
    raise ValueError(f"{from_asset} is not part of {ticker.symbol}")


def calculate_cycle_return(triangle: Triangle, tickers: Dict[str, Ticker]) -> Optional[float]:
    """Compounded return of one unit of asset A around the cycle.

    Returns None when a leg has no usable quote.
    """
    amount = 1.0
    for from_asset, _, pair in triangle.get_legs():
        ticker = tickers.get(pair)
        if ticker is None or ticker.bid <= 0 or ticker.ask <= 0:
            return None
        amount = convert(amount, from_asset, ticker)
    return amount
