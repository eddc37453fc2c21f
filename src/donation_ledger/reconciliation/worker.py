"""Settlement backfill: fill in processor charge and fee data on donations."""

import os
import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import DonationRepository, SettlementCandidate, SettlementStatus
from ..processors import ProcessorClient, ProcessorError
from .models import (
    CandidateOutcome,
    CandidateResult,
    ReconciliationResult,
    clamp_limit,
    to_naive_utc,
    DEFAULT_LOOKBACK,
)

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5


class ReconciliationError(Exception):
    """A whole reconciliation batch could not run."""


class CandidateSelectionError(ReconciliationError):
    """The candidate query against the ledger failed."""


class ReconciliationWorker:
    """Backfills charge, balance transaction and fee data for unsettled donations.

    Candidates are fetched once, then each is reconciled in its own task with
    bounded parallelism. A candidate's failure is recorded in its result and
    never affects the others. Every write is its own transaction.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        processor: ProcessorClient,
        concurrency: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize the worker.

        Args:
            session_factory: Factory for ledger sessions; one session per unit of work.
            processor: Processor client used for lookups.
            concurrency: Maximum candidates in flight. Falls back to
                RECONCILE_CONCURRENCY env var, then DEFAULT_CONCURRENCY.
            timeout: Optional batch deadline in seconds. Falls back to
                RECONCILE_TIMEOUT_SECONDS env var.
        """
        self._session_factory = session_factory
        self.processor = processor
        self.concurrency = max(1, concurrency or int(os.getenv("RECONCILE_CONCURRENCY", DEFAULT_CONCURRENCY)))
        if timeout is None and os.getenv("RECONCILE_TIMEOUT_SECONDS"):
            timeout = float(os.getenv("RECONCILE_TIMEOUT_SECONDS"))
        self.timeout = timeout
        self._commit_lock = asyncio.Lock()

    async def select_candidates(self, since: datetime, limit: int) -> List[SettlementCandidate]:
        """Fetch the batch of unsettled donations.

        Raises:
            CandidateSelectionError: If the ledger query fails.
        """
        try:
            async with self._session_factory() as session:
                return await DonationRepository(session).select_settlement_candidates(since, limit)
        except SQLAlchemyError as e:
            logger.error(f"Candidate selection failed: {e}")
            raise CandidateSelectionError(f"Could not query settlement candidates: {e}") from e

    async def reconcile(
        self,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> ReconciliationResult:
        """Run one reconciliation batch.

        Args:
            since: Only donations created at or after this time. Defaults to
                the last 30 days.
            limit: Maximum number of candidates, clamped to [1, 500].

        Returns:
            ReconciliationResult with one CandidateResult per fetched candidate.
            When the deadline passes, candidates that had not started writing
            are reported cancelled; writes already in flight are awaited and
            reported by what they actually did.

        Raises:
            CandidateSelectionError: If candidates cannot be queried.
        """
        since = to_naive_utc(since) if since else datetime.utcnow() - DEFAULT_LOOKBACK
        limit = clamp_limit(limit)

        logger.info(f"Syncing ledger data since {since.isoformat()}, limit {limit}")
        result = ReconciliationResult(since=since, limit=limit)

        candidates = await self.select_candidates(since, limit)
        logger.info(f"Found {len(candidates)} donations to process")

        if candidates:
            semaphore = asyncio.Semaphore(self.concurrency)
            commits: Dict[str, asyncio.Future] = {}
            tasks = [
                asyncio.create_task(self._run_candidate(candidate, semaphore, commits))
                for candidate in candidates
            ]
            _, pending = await asyncio.wait(tasks, timeout=self.timeout)
            if pending:
                logger.warning(
                    f"Reconciliation deadline of {self.timeout}s reached, "
                    f"cancelling {len(pending)} candidates"
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

            for candidate, task in zip(candidates, tasks):
                if not task.cancelled():
                    result.results.append(task.result())
                elif candidate.payment_intent_id in commits:
                    # The deadline hit mid-write; the shielded commit decides the outcome.
                    result.results.append(
                        await self._await_commit(candidate, commits[candidate.payment_intent_id])
                    )
                else:
                    result.results.append(CandidateResult(
                        payment_intent_id=candidate.payment_intent_id,
                        outcome=CandidateOutcome.CANCELLED,
                    ))

        result.completed_at = datetime.utcnow()
        logger.info(
            f"Successfully updated {result.updated} of {result.processed} donations "
            f"({result.skipped} skipped, {result.failed} failed, {result.cancelled} cancelled)"
        )
        return result

    async def _run_candidate(
        self,
        candidate: SettlementCandidate,
        semaphore: asyncio.Semaphore,
        commits: Dict[str, asyncio.Future],
    ) -> CandidateResult:
        async with semaphore:
            try:
                return await self.reconcile_candidate(candidate, commits)
            except Exception as e:
                return self._failed(candidate, e)

    @staticmethod
    def _failed(candidate: SettlementCandidate, error: Exception) -> CandidateResult:
        logger.error(f"Error processing PI {candidate.payment_intent_id}: {error}")
        return CandidateResult(
            payment_intent_id=candidate.payment_intent_id,
            outcome=CandidateOutcome.FAILED,
            error=str(error),
        )

    async def _await_commit(
        self,
        candidate: SettlementCandidate,
        commit: asyncio.Future,
    ) -> CandidateResult:
        try:
            return await commit
        except Exception as e:
            return self._failed(candidate, e)

    async def reconcile_candidate(
        self,
        candidate: SettlementCandidate,
        commits: Optional[Dict[str, asyncio.Future]] = None,
    ) -> CandidateResult:
        """Look up one donation at the processor and write back what is known.

        Once the write has started it runs to completion even if this call is
        cancelled; it is registered in `commits` so the caller can await it.

        Raises:
            ProcessorError: If the payment intent lookup fails.
            DonationNotFoundError: If the donation disappeared from the ledger.
        """
        pi_id = candidate.payment_intent_id
        account_id = candidate.connected_account_id
        if not account_id:
            raise ProcessorError(f"Donation {pi_id} has no connected account to scope lookups to")

        intent = await asyncio.to_thread(self.processor.get_payment_intent, pi_id, account_id)
        charge = intent.first_charge
        if charge is None:
            logger.info(f"No charge found for PI {pi_id}")
            return CandidateResult(payment_intent_id=pi_id, outcome=CandidateOutcome.SKIPPED)

        fee_cents = 0
        status = SettlementStatus.CHARGE_KNOWN
        if charge.balance_transaction_id:
            try:
                bal = await asyncio.to_thread(
                    self.processor.get_balance_transaction,
                    charge.balance_transaction_id,
                    account_id,
                )
                fee_cents = bal.fee
                status = SettlementStatus.SETTLED
            except ProcessorError as e:
                logger.warning(
                    f"Could not fetch balance transaction {charge.balance_transaction_id} "
                    f"for PI {pi_id}: {e}"
                )

        commit = asyncio.ensure_future(self._write_settlement(
            pi_id, charge.id, charge.balance_transaction_id, fee_cents, status,
        ))
        if commits is not None:
            commits[pi_id] = commit
        return await asyncio.shield(commit)

    async def _write_settlement(
        self,
        payment_intent_id: str,
        charge_id: str,
        balance_transaction_id: Optional[str],
        fee_cents: int,
        status: SettlementStatus,
    ) -> CandidateResult:
        changed = await self._commit(
            payment_intent_id, charge_id, balance_transaction_id, fee_cents, status,
        )
        if changed:
            logger.info(f"Updated donation {payment_intent_id} with fee {fee_cents}")

        return CandidateResult(
            payment_intent_id=payment_intent_id,
            outcome=CandidateOutcome.UPDATED if changed else CandidateOutcome.UNCHANGED,
            charge_id=charge_id,
            balance_transaction_id=balance_transaction_id,
            fee_cents=fee_cents,
        )

    async def _commit(
        self,
        payment_intent_id: str,
        charge_id: str,
        balance_transaction_id: Optional[str],
        fee_cents: int,
        status: SettlementStatus,
    ) -> bool:
        async with self._commit_lock:
            async with self._session_factory() as session:
                try:
                    changed = await DonationRepository(session).update_donation_settlement(
                        payment_intent_id,
                        charge_id,
                        balance_transaction_id,
                        fee_cents,
                        status,
                    )
                    await session.commit()
                    return changed
                except Exception:
                    await session.rollback()
                    raise
