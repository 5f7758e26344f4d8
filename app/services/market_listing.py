"""
app/services/market_listing.py
Async GraphQL client for the protocol's market index.
Public endpoint, no auth.
"""

import logging
from typing import Any

import httpx

from app.services.chain_codec import decode_market_summary
from core.exceptions import DecodeError
from core.models import MarketSummary

logger = logging.getLogger(__name__)

MARKETS_QUERY = """
query Markets($where: MarketWhereInput) {
  markets(where: $where) {
    marketGroup {
      collateralAsset
      question
      address
    }
    endTimestamp
    marketId
    marketGroupId
    claimStatementYesOrNumeric
    claimStatementNo
  }
}
"""


class GraphQLError(Exception):
    """The endpoint answered with an errors array."""


class MarketListingClient:
    """Async client for the unsettled-markets listing."""

    def __init__(
        self,
        endpoint: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
    ) -> None:
        self._endpoint = endpoint
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def query(self, query: str, variables: dict[str, Any] | None = None) -> dict:
        """POST a GraphQL query and return its data object."""
        resp = await self._client.post(
            self._endpoint,
            json={"query": query, "variables": variables or {}},
        )
        resp.raise_for_status()
        body = resp.json()
        if body.get("errors"):
            raise GraphQLError(str(body["errors"]))
        return body.get("data") or {}

    async def list_unsettled_markets(self, created_after: int | None = None) -> list[MarketSummary]:
        """
        Markets with settled = false, optionally only those created after
        the given epoch-seconds cursor. Malformed rows are skipped.
        """
        where: dict[str, Any] = {"settled": {"equals": False}}
        if created_after is not None:
            where["createdAt"] = {"gt": created_after}

        data = await self.query(MARKETS_QUERY, {"where": where})

        markets: list[MarketSummary] = []
        for item in data.get("markets") or []:
            try:
                markets.append(decode_market_summary(item))
            except DecodeError as exc:
                logger.warning("Skipping malformed market row: %s", exc)

        logger.info("Market listing: %d unsettled markets", len(markets))
        return markets

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
