"""
Merged token registry across all providers.

Tokens are de-duplicated by uppercased symbol; when two adapters list the
same symbol, the entry from the higher-priority adapter wins. Every
``rebuild`` swaps in a fresh read-only snapshot, so readers never observe a
half-merged registry.

Priority (highest first):
    1. market_data  - carries USD prices and 24h change
    2. order_router - carries contract addresses and decimals
    3. liquidity    - AMM venue listings
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from types import MappingProxyType

from engine_logging.logger_manager import setup_module_logger
from shared.types import Token

ADAPTER_PRIORITY: tuple[str, ...] = ("market_data", "order_router", "liquidity")


def order_by_priority(results: Mapping[str, Sequence[Token]]) -> list[Sequence[Token]]:
    """Arrange per-adapter token lists in registry priority order."""
    ordered = [results[name] for name in ADAPTER_PRIORITY if name in results]
    ordered.extend(tokens for name, tokens in results.items() if name not in ADAPTER_PRIORITY)
    return ordered


class TokenRegistry:
    """Symbol-keyed view over the union of every adapter's token list."""

    def __init__(self) -> None:
        self._snapshot: Mapping[str, Token] = MappingProxyType({})
        self._logger = setup_module_logger(
            "token_registry", "token_registry.log", module_folder="Token_Registry_Logs"
        )

    def rebuild(self, adapter_results: Iterable[Sequence[Token]]) -> list[Token]:
        """
        Replace the registry with the union of ``adapter_results``.

        Args:
            adapter_results: Token lists in priority order (highest first).

        Returns:
            The merged token list, in first-seen order.
        """
        merged: dict[str, Token] = {}
        per_adapter: list[int] = []
        for tokens in adapter_results:
            per_adapter.append(len(tokens))
            for token in tokens:
                if token.symbol:
                    merged.setdefault(token.symbol.upper(), token)

        self._snapshot = MappingProxyType(merged)
        self._logger.info(
            "Registry rebuilt: %d tokens (per adapter: %s)", len(merged), per_adapter
        )
        return list(merged.values())

    def lookup(self, symbol: str) -> Token | None:
        return self._snapshot.get(symbol.strip().upper())

    def tokens(self) -> list[Token]:
        return list(self._snapshot.values())

    def search(self, query: str) -> list[Token]:
        needle = query.strip().lower()
        if not needle:
            return []
        return [
            token
            for token in self._snapshot.values()
            if needle in token.symbol.lower() or needle in token.name.lower()
        ]

    @property
    def is_empty(self) -> bool:
        return not self._snapshot

    def __len__(self) -> int:
        return len(self._snapshot)

    def __contains__(self, symbol: object) -> bool:
        return isinstance(symbol, str) and self.lookup(symbol) is not None
