"""Tests for the settlement reconciliation worker."""

import asyncio
import os
import time
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy.exc import SQLAlchemyError

from donation_ledger.database import DonationRepository, SettlementStatus
from donation_ledger.processors import SimulatorProcessorClient, SimulatorConfig
from donation_ledger.reconciliation import (
    ReconciliationWorker,
    ReconciliationResult,
    CandidateResult,
    CandidateOutcome,
    CandidateSelectionError,
    SyncRequest,
)
from donation_ledger.reconciliation.models import clamp_limit, to_naive_utc, DEFAULT_LIMIT


def settlement_fields(donation):
    return {
        "stripe_charge_id": donation.stripe_charge_id,
        "stripe_balance_txn_id": donation.stripe_balance_txn_id,
        "stripe_fee_cents": donation.stripe_fee_cents,
        "settlement_status": donation.settlement_status,
    }


@pytest.fixture
def since():
    return datetime.utcnow() - timedelta(days=1)


@pytest.fixture
def worker(session_factory, simulator):
    return ReconciliationWorker(session_factory, simulator, concurrency=3)


class TestReconcile:
    """End-to-end reconciliation against the simulator."""

    async def test_settles_donation(self, worker, simulator, seed_donation, fetch_donation, since):
        await seed_donation("pi_123", account_id="acct_1", campaign_id="c1")
        simulator.add_payment_intent("pi_123", "acct_1", amount=5000, charge_id="charge_1",
                                     balance_transaction_id="txn_1", fee=87)

        result = await worker.reconcile(since=since, limit=10)

        assert result.to_response_dict() == {"updated": 1, "processed": 1}
        donation = await fetch_donation("pi_123")
        assert donation.stripe_charge_id == "charge_1"
        assert donation.stripe_balance_txn_id == "txn_1"
        assert donation.stripe_fee_cents == 87
        assert donation.settlement_status == SettlementStatus.SETTLED.value
        assert donation.net_cents == 4913

    async def test_lookups_use_donation_account(self, worker, simulator, seed_donation, since):
        await seed_donation("pi_a", account_id="acct_a")
        await seed_donation("pi_b", account_id="acct_b")
        simulator.add_payment_intent("pi_a", "acct_a", charge_id="ch_a", balance_transaction_id="txn_a", fee=10)
        simulator.add_payment_intent("pi_b", "acct_b", charge_id="ch_b", balance_transaction_id="txn_b", fee=20)

        await worker.reconcile(since=since)

        assert sorted(simulator.calls) == [
            ("get_balance_transaction", "txn_a", "acct_a"),
            ("get_balance_transaction", "txn_b", "acct_b"),
            ("get_payment_intent", "pi_a", "acct_a"),
            ("get_payment_intent", "pi_b", "acct_b"),
        ]

    async def test_wrong_account_fails_item(self, worker, simulator, seed_donation, fetch_donation, since):
        await seed_donation("pi_1", account_id="acct_1")
        simulator.add_payment_intent("pi_1", "acct_other", charge_id="ch_1", balance_transaction_id="txn_1", fee=10)

        result = await worker.reconcile(since=since)

        assert result.failed == 1
        assert result.updated == 0
        assert (await fetch_donation("pi_1")).settlement_status == SettlementStatus.PENDING.value

    async def test_missing_account_fails_item(self, worker, simulator, seed_donation, since):
        await seed_donation("pi_1", account_id=None)

        result = await worker.reconcile(since=since)

        assert result.results[0].outcome == CandidateOutcome.FAILED
        assert "connected account" in result.results[0].error
        assert simulator.calls == []

    async def test_no_charge_is_skipped(self, worker, simulator, seed_donation, fetch_donation, since):
        await seed_donation("pi_1")
        simulator.add_payment_intent("pi_1", "acct_1")

        result = await worker.reconcile(since=since)

        assert result.to_response_dict() == {"updated": 0, "processed": 1}
        assert result.skipped == 1
        assert result.failed == 0
        donation = await fetch_donation("pi_1")
        assert donation.stripe_charge_id is None
        assert donation.settlement_status == SettlementStatus.PENDING.value

    async def test_charge_without_balance_transaction(self, worker, simulator, seed_donation, fetch_donation, since):
        await seed_donation("pi_1")
        simulator.add_payment_intent("pi_1", "acct_1", charge_id="ch_1")

        result = await worker.reconcile(since=since)

        assert result.updated == 1
        donation = await fetch_donation("pi_1")
        assert donation.stripe_charge_id == "ch_1"
        assert donation.stripe_balance_txn_id is None
        assert donation.stripe_fee_cents == 0
        assert donation.settlement_status == SettlementStatus.CHARGE_KNOWN.value

    async def test_failed_balance_lookup_still_records_charge(self, session_factory, seed_donation, fetch_donation, since):
        simulator = SimulatorProcessorClient(SimulatorConfig(failing_balance_transactions={"txn_1"}))
        simulator.add_payment_intent("pi_1", "acct_1", charge_id="ch_1", balance_transaction_id="txn_1", fee=87)
        await seed_donation("pi_1")

        result = await ReconciliationWorker(session_factory, simulator).reconcile(since=since)

        assert result.to_response_dict() == {"updated": 1, "processed": 1}
        donation = await fetch_donation("pi_1")
        assert donation.stripe_charge_id == "ch_1"
        assert donation.stripe_balance_txn_id == "txn_1"
        assert donation.stripe_fee_cents == 0
        assert donation.settlement_status == SettlementStatus.CHARGE_KNOWN.value

    async def test_partial_settlement_completes_on_later_run(self, session_factory, seed_donation, fetch_donation, since):
        simulator = SimulatorProcessorClient(SimulatorConfig(failing_balance_transactions={"txn_1"}))
        simulator.add_payment_intent("pi_1", "acct_1", charge_id="ch_1", balance_transaction_id="txn_1", fee=87)
        await seed_donation("pi_1")
        worker = ReconciliationWorker(session_factory, simulator)

        await worker.reconcile(since=since)
        repeat = await worker.reconcile(since=since)
        simulator.config.failing_balance_transactions.clear()
        final = await worker.reconcile(since=since)

        assert repeat.to_response_dict() == {"updated": 0, "processed": 1}
        assert repeat.results[0].outcome == CandidateOutcome.UNCHANGED
        assert final.updated == 1
        donation = await fetch_donation("pi_1")
        assert donation.stripe_fee_cents == 87
        assert donation.settlement_status == SettlementStatus.SETTLED.value

    async def test_rerun_is_idempotent(self, worker, simulator, seed_donation, fetch_donation, since):
        for pi, fee in (("pi_1", 30), ("pi_2", 60)):
            await seed_donation(pi)
            simulator.add_payment_intent(pi, "acct_1", charge_id=f"ch_{pi}", balance_transaction_id=f"txn_{pi}", fee=fee)

        first = await worker.reconcile(since=since)
        before = {pi: settlement_fields(await fetch_donation(pi)) for pi in ("pi_1", "pi_2")}
        second = await worker.reconcile(since=since)
        after = {pi: settlement_fields(await fetch_donation(pi)) for pi in ("pi_1", "pi_2")}

        assert first.updated == 2
        assert second.updated == 0
        assert before == after

    async def test_failure_does_not_abort_batch(self, session_factory, seed_donation, fetch_donation, since):
        simulator = SimulatorProcessorClient(SimulatorConfig(failing_payment_intents={"pi_2"}))
        for i, pi in enumerate(("pi_1", "pi_2", "pi_3")):
            await seed_donation(pi, created_at=datetime.utcnow() - timedelta(minutes=10 - i))
            simulator.add_payment_intent(pi, "acct_1", charge_id=f"ch_{pi}", balance_transaction_id=f"txn_{pi}", fee=5)

        result = await ReconciliationWorker(session_factory, simulator).reconcile(since=since)

        assert result.to_response_dict() == {"updated": 2, "processed": 3}
        assert [r.outcome for r in result.results] == [
            CandidateOutcome.UPDATED, CandidateOutcome.FAILED, CandidateOutcome.UPDATED,
        ]
        assert "pi_2" in result.results[1].error
        assert (await fetch_donation("pi_2")).settlement_status == SettlementStatus.PENDING.value

    async def test_store_failure_is_per_item(self, worker, simulator, seed_donation, fetch_donation, since):
        for pi in ("pi_a", "pi_b"):
            await seed_donation(pi)
            simulator.add_payment_intent(pi, "acct_1", charge_id=f"ch_{pi}", balance_transaction_id=f"txn_{pi}", fee=5)

        original = DonationRepository.update_donation_settlement

        async def flaky(self, payment_intent_id, *args, **kwargs):
            if payment_intent_id == "pi_b":
                raise SQLAlchemyError("write failed")
            return await original(self, payment_intent_id, *args, **kwargs)

        with patch.object(DonationRepository, "update_donation_settlement", flaky):
            result = await worker.reconcile(since=since)

        assert result.to_response_dict() == {"updated": 1, "processed": 2}
        assert (await fetch_donation("pi_a")).settlement_status == SettlementStatus.SETTLED.value
        assert (await fetch_donation("pi_b")).settlement_status == SettlementStatus.PENDING.value

    async def test_candidate_query_failure_is_batch_level(self, worker):
        with patch.object(
            DonationRepository, "select_settlement_candidates", side_effect=SQLAlchemyError("no table"),
        ):
            with pytest.raises(CandidateSelectionError):
                await worker.reconcile()

    async def test_default_window_excludes_old_donations(self, worker, simulator, seed_donation):
        await seed_donation("pi_old", created_at=datetime.utcnow() - timedelta(days=45))
        simulator.add_payment_intent("pi_old", "acct_1", charge_id="ch_1")

        result = await worker.reconcile()

        assert result.processed == 0

    async def test_limit_is_clamped(self, worker):
        result = await worker.reconcile(limit=10_000)
        assert result.limit == 500

    async def test_settled_rows_stay_valid(self, worker, simulator, seed_donation, fetch_donation, since):
        await seed_donation("pi_1")
        await seed_donation("pi_2")
        simulator.add_payment_intent("pi_1", "acct_1", charge_id="ch_1", balance_transaction_id="txn_1", fee=0)
        simulator.add_payment_intent("pi_2", "acct_1", charge_id="ch_2", balance_transaction_id="txn_2", fee=150)

        await worker.reconcile(since=since)

        for pi in ("pi_1", "pi_2"):
            donation = await fetch_donation(pi)
            assert donation.settlement_status == SettlementStatus.SETTLED.value
            assert donation.stripe_charge_id is not None
            assert donation.stripe_fee_cents >= 0

    async def test_deadline_cancels_without_writing(self, session_factory, seed_donation, fetch_donation, since):
        simulator = SimulatorProcessorClient(SimulatorConfig(delay_ms=300))
        for pi in ("pi_1", "pi_2"):
            await seed_donation(pi)
            simulator.add_payment_intent(pi, "acct_1", charge_id=f"ch_{pi}", balance_transaction_id=f"txn_{pi}", fee=5)

        worker = ReconciliationWorker(session_factory, simulator, concurrency=1, timeout=0.05)
        result = await worker.reconcile(since=since)

        assert result.to_response_dict() == {"updated": 0, "processed": 2}
        assert result.cancelled == 2
        for pi in ("pi_1", "pi_2"):
            assert (await fetch_donation(pi)).settlement_status == SettlementStatus.PENDING.value

    async def test_deadline_keeps_committed_rows(self, session_factory, simulator, seed_donation, fetch_donation, since):
        await seed_donation("pi_1", created_at=datetime.utcnow() - timedelta(minutes=2))
        await seed_donation("pi_2", created_at=datetime.utcnow() - timedelta(minutes=1))
        for pi in ("pi_1", "pi_2"):
            simulator.add_payment_intent(pi, "acct_1", charge_id=f"ch_{pi}", balance_transaction_id=f"txn_{pi}", fee=5)

        lookup = simulator.get_payment_intent

        def slow_second_lookup(payment_intent_id, account_id):
            if payment_intent_id == "pi_2":
                time.sleep(0.5)
            return lookup(payment_intent_id, account_id)

        simulator.get_payment_intent = slow_second_lookup
        worker = ReconciliationWorker(session_factory, simulator, concurrency=1, timeout=0.2)

        result = await worker.reconcile(since=since)

        assert result.to_response_dict() == {"updated": 1, "processed": 2}
        assert result.cancelled == 1
        assert [r.outcome for r in result.results] == [CandidateOutcome.UPDATED, CandidateOutcome.CANCELLED]
        assert (await fetch_donation("pi_1")).settlement_status == SettlementStatus.SETTLED.value
        assert (await fetch_donation("pi_2")).settlement_status == SettlementStatus.PENDING.value

    async def test_deadline_waits_for_write_in_flight(self, worker, simulator, seed_donation, fetch_donation, since):
        await seed_donation("pi_1")
        simulator.add_payment_intent("pi_1", "acct_1", charge_id="ch_1", balance_transaction_id="txn_1", fee=87)
        original = DonationRepository.update_donation_settlement

        async def slow_write(self, *args, **kwargs):
            await asyncio.sleep(0.3)
            return await original(self, *args, **kwargs)

        worker.timeout = 0.1
        with patch.object(DonationRepository, "update_donation_settlement", slow_write):
            result = await worker.reconcile(since=since)

            assert result.to_response_dict() == {"updated": 1, "processed": 1}
            assert result.cancelled == 0
            assert result.results[0].fee_cents == 87
            donation = await fetch_donation("pi_1")
        assert donation.settlement_status == SettlementStatus.SETTLED.value
        assert donation.stripe_fee_cents == 87


class TestWorkerConfiguration:
    """Tests for worker settings."""

    def test_concurrency_from_env(self, session_factory, simulator):
        with patch.dict(os.environ, {"RECONCILE_CONCURRENCY": "7"}):
            worker = ReconciliationWorker(session_factory, simulator)
        assert worker.concurrency == 7

    def test_timeout_from_env(self, session_factory, simulator):
        with patch.dict(os.environ, {"RECONCILE_TIMEOUT_SECONDS": "2.5"}):
            worker = ReconciliationWorker(session_factory, simulator)
        assert worker.timeout == 2.5

    def test_defaults(self, session_factory, simulator):
        with patch.dict(os.environ, {}, clear=True):
            worker = ReconciliationWorker(session_factory, simulator)
        assert worker.concurrency == 5
        assert worker.timeout is None


class TestReconciliationModels:
    """Tests for reconciliation models."""

    def test_clamp_limit(self):
        assert clamp_limit(None) == DEFAULT_LIMIT
        assert clamp_limit(0) == DEFAULT_LIMIT
        assert clamp_limit(-3) == 1
        assert clamp_limit(501) == 500
        assert clamp_limit(42) == 42

    def test_to_naive_utc(self):
        aware = datetime(2024, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        assert to_naive_utc(aware) == datetime(2024, 3, 1, 10, 0)

    def test_sync_request_defaults(self):
        now = datetime(2024, 3, 31)
        body = SyncRequest.model_validate({})
        assert body.limit == DEFAULT_LIMIT
        assert body.resolved_since(now) == datetime(2024, 3, 1)

    def test_sync_request_lenient_limit(self):
        assert SyncRequest.model_validate({"limit": "abc"}).limit == DEFAULT_LIMIT
        assert SyncRequest.model_validate({"limit": "50"}).limit == 50
        assert SyncRequest.model_validate({"limit": 900}).limit == 500
        assert SyncRequest.model_validate({"limit": 0}).limit == DEFAULT_LIMIT

    def test_sync_request_parses_since(self):
        body = SyncRequest.model_validate({"since": "2024-03-01T00:00:00Z"})
        assert body.resolved_since() == datetime(2024, 3, 1)

    def test_sync_request_rejects_bad_since(self):
        with pytest.raises(ValueError):
            SyncRequest.model_validate({"since": "yesterday-ish"})

    def test_result_counts(self):
        result = ReconciliationResult(
            since=datetime(2024, 3, 1),
            limit=10,
            results=[
                CandidateResult(payment_intent_id="pi_1", outcome=CandidateOutcome.UPDATED),
                CandidateResult(payment_intent_id="pi_2", outcome=CandidateOutcome.SKIPPED),
                CandidateResult(payment_intent_id="pi_3", outcome=CandidateOutcome.FAILED, error="boom"),
                CandidateResult(payment_intent_id="pi_4", outcome=CandidateOutcome.UNCHANGED),
            ],
        )

        assert result.to_response_dict() == {"updated": 1, "processed": 4}
        summary = result.to_summary_dict()
        assert summary["statistics"]["skipped"] == 1
        assert summary["statistics"]["failed"] == 1
        assert summary["statistics"]["unchanged"] == 1
        assert len(result.to_full_dict()["results"]) == 4
