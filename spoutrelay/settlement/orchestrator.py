"""
spoutrelay/settlement/orchestrator.py

Turns one decoded order event into confirmed ledger transactions.

Buy  (MintIntent):
    attestation(user) → program_authority(asset mint) → user's asset account
    (CreateIdempotent first if it does not exist) → mint(user, asset_amount)

Sell (BurnPayoutIntent):
    phase 1: attestation(user) → program_authority(asset mint) → user's
             asset account → burn(asset_amount)
    phase 2: only after phase 1 confirmed: user's USDC account (created if
             missing) → TransferChecked(usdc_amount) from the issuer's USDC
             account

Every step is its own signed transaction, confirmed before the next one
is built. The attestation is not pre-checked here; the order program
re-validates it and rejects the instruction if it is not valid.

With a journal:
    intent recorded before the first transaction
    mint / burn / payout signature recorded as soon as it is signed
    minted / burned / paid_out / failed recorded as each phase settles
    a step that may still land leaves the state unchanged, with its
    signature, for RecoverySweep
    a sell that stops after its burn stays 'burned' for RecoverySweep

Failures of individual steps never raise out of settle(); they come back
as a SettlementResult with status FAILED (nothing delivered) or PARTIAL
(burn confirmed, payout not delivered). A JournalError does raise: no
transaction is sent that the journal could not record.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from solders.pubkey import Pubkey

from spoutrelay.core.address import TOKEN_PROGRAM_ID
from spoutrelay.core.exceptions import (
    AddressDerivationError,
    RpcError,
    SettlementError,
    TransactionError,
)
from spoutrelay.core.models import (
    BurnPayoutIntent,
    MintIntent,
    OrderEvent,
    OrderSide,
    SettlementResult,
    SettlementState,
    SettlementStatus,
    intent_for,
)
from spoutrelay.core.pda import AddressDeriver
from spoutrelay.ledger.instructions import (
    KycAccounts,
    burn_instruction,
    create_associated_account_idempotent,
    mint_instruction,
    transfer_checked_instruction,
)
from spoutrelay.ledger.rpc import RpcClient
from spoutrelay.ledger.sender import TransactionSender
from spoutrelay.settlement.journal import SettlementJournal

logger = logging.getLogger(__name__)

# Errors that end one step and are reported, not raised
STEP_ERRORS = (RpcError, TransactionError, AddressDerivationError)


@dataclass(frozen=True)
class Deployment:
    """Fixed on-chain accounts of one deployment."""
    order_program:      Pubkey
    config:             Pubkey
    asset_mint:         Pubkey
    usdc_mint:          Pubkey
    usdc_decimals:      int = 6
    token_program:      Pubkey = TOKEN_PROGRAM_ID
    usdc_token_program: Pubkey = TOKEN_PROGRAM_ID


class SettlementOrchestrator:
    """
    Usage:
        orchestrator = SettlementOrchestrator(rpc, sender, deriver, deployment, journal)
        result = await orchestrator.settle(event)
        if not result.ok:
            ...
    """

    def __init__(
        self,
        rpc:        RpcClient,
        sender:     TransactionSender,
        deriver:    AddressDeriver,
        deployment: Deployment,
        journal:    Optional[SettlementJournal] = None,
    ):
        self.rpc        = rpc
        self.sender     = sender
        self.deriver    = deriver
        self.deployment = deployment
        self.journal    = journal

    # ── Entry point ──────────────────────────────────────────

    async def settle(self, event: OrderEvent) -> SettlementResult:
        key = event.settlement_key

        if self.journal is not None and self.journal.is_known(key):
            state = self.journal.state_of(key)
            logger.info(
                "Skipping already journalled event (%s)", state.value,
                extra=self._extra(event),
            )
            return SettlementResult(key, event.side, SettlementStatus.SKIPPED,
                                    reason=f"already journalled as {state.value}")

        intent = intent_for(event)
        if isinstance(intent, MintIntent) and intent.asset_amount == 0:
            logger.info("Skipping buy with zero asset amount", extra=self._extra(event))
            return SettlementResult(key, event.side, SettlementStatus.SKIPPED,
                                    reason="zero asset amount")

        if self.journal is not None:
            self.journal.record_intent(event)

        if isinstance(intent, MintIntent):
            return await self.settle_buy(event, intent)
        return await self.settle_sell(event, intent)

    # ── Buy ──────────────────────────────────────────────────

    async def settle_buy(self, event: OrderEvent, intent: Optional[MintIntent] = None) -> SettlementResult:
        intent = intent or intent_for(event)
        d = self.deployment
        transactions: Dict[str, str] = {}

        try:
            kyc       = self._kyc_accounts(intent.user)
            authority = self.deriver.program_authority(d.asset_mint)
            recipient_account, created = await self.ensure_associated_account(
                intent.user, d.asset_mint, d.token_program
            )
            if created:
                transactions["create_account"] = created

            transactions["mint"] = await self.sender.submit(
                [mint_instruction(
                    program_id=              d.order_program,
                    issuer=                  self.sender.payer,
                    config=                  d.config,
                    mint=                    d.asset_mint,
                    program_authority=       authority,
                    recipient_token_account= recipient_account,
                    recipient=               intent.user,
                    kyc=                     kyc,
                    amount=                  intent.asset_amount,
                    token_program=           d.token_program,
                )],
                label="mint",
                on_signed=self._on_signed(event, "mint"),
            )
        except STEP_ERRORS as exc:
            return self._failed(event, "mint", exc, transactions)

        self._record(event, SettlementState.MINTED, tx=transactions["mint"])
        logger.info(
            "Minted %d to %s", intent.asset_amount, intent.user,
            extra=self._extra(event, phase="mint", tx=transactions["mint"]),
        )
        return SettlementResult(event.settlement_key, event.side,
                                SettlementStatus.SETTLED, transactions)

    # ── Sell ─────────────────────────────────────────────────

    async def settle_sell(self, event: OrderEvent, intent: Optional[BurnPayoutIntent] = None) -> SettlementResult:
        intent = intent or intent_for(event)
        d = self.deployment
        transactions: Dict[str, str] = {}

        try:
            kyc       = self._kyc_accounts(intent.user)
            authority = self.deriver.program_authority(d.asset_mint)
            owner_account, created = await self.ensure_associated_account(
                intent.user, d.asset_mint, d.token_program
            )
            if created:
                transactions["create_account"] = created

            transactions["burn"] = await self.sender.submit(
                [burn_instruction(
                    program_id=          d.order_program,
                    issuer=              self.sender.payer,
                    config=              d.config,
                    mint=                d.asset_mint,
                    program_authority=   authority,
                    owner_token_account= owner_account,
                    kyc=                 kyc,
                    amount=              intent.asset_amount,
                    token_program=       d.token_program,
                )],
                label="burn",
                on_signed=self._on_signed(event, "burn"),
            )
        except STEP_ERRORS as exc:
            return self._failed(event, "burn", exc, transactions)

        self._record(event, SettlementState.BURNED, tx=transactions["burn"])
        logger.info(
            "Burned %d from %s", intent.asset_amount, intent.user,
            extra=self._extra(event, phase="burn", tx=transactions["burn"]),
        )

        result = await self.pay_out(event)
        result.transactions = {**transactions, **result.transactions}
        return result

    async def pay_out(self, event: OrderEvent) -> SettlementResult:
        """
        Phase 2 of a sell. Only valid once the burn has confirmed.

        Also the entry point RecoverySweep uses for journalled sells that
        stopped in state 'burned'.
        """
        if event.side is not OrderSide.SELL:
            raise SettlementError("Payout requested for a non-sell event", phase="payout",
                                  details={"settlement_key": event.settlement_key})

        d = self.deployment
        transactions: Dict[str, str] = {}
        try:
            destination, created = await self.ensure_associated_account(
                event.user, d.usdc_mint, d.usdc_token_program
            )
            if created:
                transactions["create_usdc_account"] = created

            source = self.deriver.associated_account(
                self.sender.payer, d.usdc_mint, d.usdc_token_program
            )
            transactions["payout"] = await self.sender.submit(
                [transfer_checked_instruction(
                    source=        source,
                    mint=          d.usdc_mint,
                    destination=   destination,
                    owner=         self.sender.payer,
                    amount=        event.usdc_amount,
                    decimals=      d.usdc_decimals,
                    token_program= d.usdc_token_program,
                )],
                label="payout",
                on_signed=self._on_signed(event, "payout"),
            )
        except STEP_ERRORS as exc:
            signature = self._step_signature(event, "payout", exc)
            logger.error(
                "Payout failed after burn; asset burned without payout: %s", exc,
                extra=self._extra(event, phase="payout", tx=signature),
            )
            self._record(event, SettlementState.BURNED, tx=signature, error=str(exc))
            return SettlementResult(event.settlement_key, event.side,
                                    SettlementStatus.PARTIAL, transactions, error=str(exc))

        self._record(event, SettlementState.PAID_OUT, tx=transactions["payout"])
        logger.info(
            "Paid out %d to %s", event.usdc_amount, event.user,
            extra=self._extra(event, phase="payout", tx=transactions["payout"]),
        )
        return SettlementResult(event.settlement_key, event.side,
                                SettlementStatus.SETTLED, transactions)

    async def adopt(self, event: OrderEvent, phase: str, signature: str) -> SettlementResult:
        """
        Record a mint or burn found confirmed on the ledger after the fact,
        and carry a sell on to its payout.
        """
        if phase == "mint":
            self._record(event, SettlementState.MINTED, tx=signature)
            logger.info("Mint found on ledger", extra=self._extra(event, phase="mint", tx=signature))
            return SettlementResult(event.settlement_key, event.side,
                                    SettlementStatus.SETTLED, {"mint": signature})
        if phase != "burn":
            raise SettlementError("Only mint and burn can be adopted", phase=phase,
                                  details={"settlement_key": event.settlement_key})

        self._record(event, SettlementState.BURNED, tx=signature)
        logger.info("Burn found on ledger", extra=self._extra(event, phase="burn", tx=signature))
        result = await self.pay_out(event)
        result.transactions = {"burn": signature, **result.transactions}
        return result

    # ── Accounts ─────────────────────────────────────────────

    async def ensure_associated_account(
        self,
        owner:         Pubkey,
        mint:          Pubkey,
        token_program: Pubkey,
    ) -> Tuple[Pubkey, Optional[str]]:
        """
        Resolve owner's associated account for mint, creating it if absent.

        Returns (address, creation signature or None when it already existed).
        """
        address = self.deriver.associated_account(owner, mint, token_program)
        if await self.rpc.get_account_info(address) is not None:
            return address, None

        signature = await self.sender.submit(
            [create_associated_account_idempotent(
                payer=              self.sender.payer,
                associated_account= address,
                owner=              owner,
                mint=               mint,
                token_program=      token_program,
            )],
            label="create-account",
        )
        logger.info("Created associated account %s for %s", address, owner,
                    extra={"tx": signature, "user": str(owner)})
        return address, signature

    def _kyc_accounts(self, holder: Pubkey) -> KycAccounts:
        return KycAccounts(
            schema=              self.deriver.schema,
            credential=          self.deriver.credential,
            attestation=         self.deriver.attestation(holder),
            attestation_program= self.deriver.attestation_program,
        )

    # ── Reporting ────────────────────────────────────────────

    def _failed(
        self,
        event:        OrderEvent,
        phase:        str,
        exc:          Exception,
        transactions: Dict[str, str],
    ) -> SettlementResult:
        signature = self._step_signature(event, phase, exc)
        extra = self._extra(event, phase=phase, tx=signature)
        logs = getattr(exc, "logs", None)
        if logs:
            logger.error("%s failed: %s\n%s", phase, exc, "\n".join(logs), extra=extra)
        else:
            logger.error("%s failed: %s", phase, exc, extra=extra)

        if getattr(exc, "unconfirmed", False):
            # May still land; stays pending until recovery finds out
            self._record(event, SettlementState.PENDING, tx=signature, error=str(exc))
        else:
            self._record(event, SettlementState.FAILED, tx=signature, error=str(exc))
        return SettlementResult(event.settlement_key, event.side,
                                SettlementStatus.FAILED, transactions, error=str(exc))

    def _on_signed(self, event: OrderEvent, phase: str) -> Optional[Callable[[str, int], None]]:
        if self.journal is None or not self.journal.is_known(event.settlement_key):
            return None

        def record(signature: str, last_valid_height: int) -> None:
            self.journal.record_submission(event.settlement_key, phase, signature, last_valid_height)

        return record

    def _step_signature(self, event: OrderEvent, phase: str, exc: Exception) -> Optional[str]:
        """exc's signature when it belongs to the phase's own transaction, not an account creation."""
        signature = getattr(exc, "signature", None)
        if signature is None or self.journal is None:
            return signature
        recorded = {s["tx"] for s in self.journal.submissions(event.settlement_key, phase)}
        return signature if signature in recorded else None

    def _record(
        self,
        event: OrderEvent,
        state: SettlementState,
        tx:    Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        if self.journal is not None and self.journal.is_known(event.settlement_key):
            self.journal.record_phase(event.settlement_key, state, tx=tx, error=error)

    @staticmethod
    def _extra(event: OrderEvent, **fields) -> dict:
        extra = {
            "settlement_key": event.settlement_key,
            "side":           event.side.value,
            "user":           str(event.user),
        }
        extra.update(fields)
        return extra
