"""
Runtime context: every relayer component wired from one Settings.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from solana.rpc.async_api import AsyncClient

from spoutrelay.config import Settings
from spoutrelay.core.exceptions import ConfigError
from spoutrelay.core.models import SettlementResult
from spoutrelay.core.pda import AddressDeriver
from spoutrelay.ledger.rpc import RpcClient
from spoutrelay.ledger.sender import TransactionSender
from spoutrelay.settlement.journal import SettlementJournal
from spoutrelay.settlement.orchestrator import Deployment, SettlementOrchestrator
from spoutrelay.settlement.recovery import RecoverySweep
from spoutrelay.watcher.watcher import EventWatcher

logger = logging.getLogger(__name__)


@dataclass
class RelayerContext:
    """Long-lived components for one relayer process."""

    settings:     Settings
    rpc:          RpcClient
    sender:       TransactionSender
    deriver:      AddressDeriver
    orchestrator: SettlementOrchestrator
    watcher:      EventWatcher
    journal:      Optional[SettlementJournal] = None
    recovery:     Optional[RecoverySweep] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client:   Optional[AsyncClient] = None,
    ) -> "RelayerContext":
        """Create the runtime context from loaded settings."""
        if settings.signer is None:
            raise ConfigError("An issuer keypair is required to run the relayer",
                              {"missing": "ISSUER_KEYPAIR"})

        rpc = RpcClient(
            url=        settings.rpc_url,
            timeout=    settings.rpc_timeout,
            commitment= settings.commitment,
            client=     client,
        )
        sender  = TransactionSender(rpc, settings.signer)
        deriver = AddressDeriver(
            credential=          settings.credential_pda,
            schema=              settings.schema_pda,
            authority_program=   settings.spout_program_id,
            attestation_program= settings.sas_program_id,
            token_program=       settings.token_program_id,
        )
        deployment = Deployment(
            order_program=      settings.orders_program_id,
            config=             settings.config_pda,
            asset_mint=         settings.asset_mint,
            usdc_mint=          settings.usdc_mint,
            usdc_decimals=      settings.usdc_decimals,
            token_program=      settings.token_program_id,
            usdc_token_program= settings.usdc_token_program_id,
        )

        journal = SettlementJournal(settings.journal_path) if settings.journal_path else None
        orchestrator = SettlementOrchestrator(rpc, sender, deriver, deployment, journal)
        watcher = EventWatcher(
            rpc=            rpc,
            orchestrator=   orchestrator,
            program_id=     settings.orders_program_id,
            lookback_limit= settings.lookback_limit,
            poll_interval=  settings.poll_interval,
            schema=         settings.event_schema,
            journal=        journal,
            max_pages=      settings.max_pages,
        )
        recovery = RecoverySweep(orchestrator, journal) if journal is not None else None

        return cls(
            settings=     settings,
            rpc=          rpc,
            sender=       sender,
            deriver=      deriver,
            orchestrator= orchestrator,
            watcher=      watcher,
            journal=      journal,
            recovery=     recovery,
        )

    async def recover(self) -> List[SettlementResult]:
        if self.recovery is None:
            logger.info("No journal configured; nothing to recover")
            return []
        return await self.recovery.run()

    async def aclose(self) -> None:
        await self.rpc.aclose()

    def __repr__(self) -> str:
        return (
            f"RelayerContext("
            f"program={str(self.settings.orders_program_id)[:8]}..., "
            f"journal_entries={len(self.journal.entries) if self.journal else None})"
        )
