"""
app/services/attestation_source.py
Polls the EAS registry for prediction attestations from the configured
attesters and turns them into ParsedAttestation records.

The first poll starts EAS_START_FROM_DAYS_AGO days back (345,600 blocks per
day on Arbitrum); each later poll resumes after the last block polled.
Attestation ids are deduplicated with a bounded memory of at most 1000 ids,
trimmed to the newest 500.
"""

import logging
from collections import OrderedDict

from app.services.chain_client import EasClient
from app.services.chain_codec import (
    AttestedLog,
    decode_attestation_data,
    decode_prediction_probability,
)
from core.constants import (
    ARBITRUM_BLOCKS_PER_DAY,
    MAX_TRACKED_ATTESTATIONS,
    RETAINED_ATTESTATIONS,
)
from core.exceptions import ChainReadError, DecodeError
from core.models import ParsedAttestation

logger = logging.getLogger(__name__)


class AttestationSource:
    """Incremental reader of Attested events for one schema."""

    def __init__(
        self,
        eas: EasClient,
        schema_id: str,
        attesters: list[str],
        start_from_days_ago: float = 1.0,
    ) -> None:
        self._eas = eas
        self._schema_id = schema_id
        self._attesters = attesters
        self._start_from_days_ago = start_from_days_ago
        self._last_block: int | None = None
        self._seen: OrderedDict[str, None] = OrderedDict()

    def _remember(self, uid: str) -> bool:
        """Record uid; False when it was already seen."""
        if uid in self._seen:
            return False
        self._seen[uid] = None
        if len(self._seen) > MAX_TRACKED_ATTESTATIONS:
            while len(self._seen) > RETAINED_ATTESTATIONS:
                self._seen.popitem(last=False)
        return True

    def _from_block(self, current_block: int) -> int:
        if self._last_block is not None:
            return self._last_block + 1
        back = int(self._start_from_days_ago * ARBITRUM_BLOCKS_PER_DAY)
        start = max(1, current_block - back)
        logger.info(
            "Attestation polling starts %.1f days back at block %d (current %d)",
            self._start_from_days_ago, start, current_block,
        )
        return start

    async def poll(self) -> list[ParsedAttestation]:
        """New attestations since the previous poll, oldest block first."""
        if not self._attesters:
            logger.warning("No EAS_TARGET_ADDRESSES configured, nothing to poll")
            return []

        current_block = await self._eas.block_number()
        from_block = self._from_block(current_block)
        if from_block > current_block:
            return []

        logs: list[AttestedLog] = []
        for attester in self._attesters:
            logs.extend(await self._eas.get_attested_logs(
                from_block, current_block, attester, self._schema_id
            ))
        logs.sort(key=lambda log: log.block_number)

        parsed: list[ParsedAttestation] = []
        for log in logs:
            if not self._remember(log.uid):
                continue
            try:
                parsed.append(await self._parse(log))
            except (ChainReadError, DecodeError) as exc:
                logger.warning("Skipping attestation %s: %s", log.uid, exc)

        self._last_block = current_block
        if parsed:
            logger.info("Found %d new attestations up to block %d", len(parsed), current_block)
        return parsed

    async def _parse(self, log: AttestedLog) -> ParsedAttestation:
        record = await self._eas.get_attestation(log.uid)
        payload = decode_attestation_data(record.data)
        if int(payload.market_address, 16) == 0:
            raise DecodeError("attestation has no market address")

        return ParsedAttestation(
            attestation_id=log.uid,
            attester=record.attester,
            market_address=payload.market_address,
            market_id=payload.market_id,
            likelihood=decode_prediction_probability(payload.prediction),
            reasoning=payload.comment or "No reasoning provided",
            timestamp=float(record.time),
            block_number=log.block_number,
        )
