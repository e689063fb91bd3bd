"""
Adversarial tests for race condition attack prevention.

Verifies that concurrent requests against the same developer are settled
by the storage layer, so that an attacker (or an impatient client) cannot:
- Use one verification code more than once
- Register the same email twice
- Obtain more than one identifier or credential for one payment
- Undo a committed step from a stale read

Defense: every uniqueness rule is a repository constraint, and every
"create if missing" step converges on the winner of a lost race.
"""

import pytest

from src.domain.exceptions import ConflictError
from src.domain.models import ErrorKind, LifecycleState, OutcomeStatus
from tests.fakes import SagaHarness, make_profile, run_concurrently

# Apply adversarial marker to all tests in this module
pytestmark = pytest.mark.adversarial

EMAIL = "ada@example.com"


class TestRaceConditionAttacks:
    """
    Adversarial tests simulating race condition attacks.

    Each test releases all attackers at once through a barrier.
    """

    def test_concurrent_registration_exactly_one_succeeds(self, harness: SagaHarness) -> None:
        """
        Simulate concurrent registrations for the same email.

        Expected defense: the email uniqueness constraint admits exactly one
        record; every other attempt is a conflict.
        """
        num_attackers = 8

        results = run_concurrently(lambda: harness.saga.register(make_profile()), num_attackers)

        assert [r.ok for r in results].count(True) == 1, "Race condition: duplicate registrations"
        assert all(r.error is ErrorKind.CONFLICT for r in results if not r.ok)

    def test_concurrent_code_replay_exactly_one_succeeds(self, harness: SagaHarness) -> None:
        """
        Simulate replaying one intercepted code from many connections.

        Expected defense: the compare-and-set consumption lets exactly one
        request through; one payment customer is created.
        """
        harness.saga.register(make_profile())
        code = harness.notifier.last_code_for(EMAIL)
        num_attackers = 6

        results = run_concurrently(lambda: harness.saga.verify_challenge(EMAIL, code), num_attackers)

        assert [r.ok for r in results].count(True) == 1, "Race condition: code used more than once"
        assert harness.payments.count("create_customer") == 1
        assert harness.developer(EMAIL).email_verified is True

    def test_concurrent_payment_confirmation_issues_once(self, harness: SagaHarness) -> None:
        """
        Simulate a client retrying payment confirmation in parallel.

        Expected defense: one identifier and one credential exist afterwards,
        every caller sees the same credential and the record ends fully issued.
        """
        session_id, customer_id = harness.paid_session()
        num_attackers = 6

        results = run_concurrently(
            lambda: harness.saga.confirm_payment(session_id, customer_id), num_attackers
        )

        assert all(r.status is OutcomeStatus.SUCCESS for r in results), results
        assert len({r.data["credential"]["id"] for r in results}) == 1
        assert len(harness.identifiers) == 1
        assert len(harness.credentials) == 1
        assert harness.developer(EMAIL).lifecycle_state is LifecycleState.CREDENTIAL_ISSUED

    def test_concurrent_direct_issuance_issues_once(self, harness: SagaHarness) -> None:
        """
        Simulate an operator double-submitting direct issuance.

        Expected defense: the issuance key admits one credential.
        """
        harness.verified_developer()

        results = run_concurrently(lambda: harness.saga.issue_direct(EMAIL), 4)

        assert all(r.ok for r in results)
        assert len(harness.credentials) == 1

    def test_concurrent_domain_claims_one_owner(self, harness: SagaHarness) -> None:
        """
        Simulate two developers racing for the same domain name.

        Expected defense: the identifier name is unique; the loser gets a
        PARTIAL conflict at the identifier step and no credential.
        """
        first = harness.paid_session("ada@example.com")
        second = harness.paid_session("grace@example.com")
        sessions = iter([first, second])

        def confirm():
            session_id, customer_id = next(sessions)
            return harness.saga.confirm_payment(session_id, customer_id)

        results = run_concurrently(confirm, 2)

        assert [r.ok for r in results].count(True) == 1
        loser = next(r for r in results if not r.ok)
        assert loser.status is OutcomeStatus.PARTIAL
        assert loser.error is ErrorKind.CONFLICT
        assert len(harness.identifiers) == 1
        assert len(harness.credentials) == 1


class TestInterleavedSteps:
    """
    Adversarial tests pinning one step between the read and the write of another.

    Each step writes only the fields it owns, under a condition on the
    stored record, so a snapshot read before another step committed can
    never undo that step.
    """

    def test_stale_code_resend_cannot_unverify(self, harness: SagaHarness) -> None:
        """
        Simulate a code resend that read the record before verification committed.

        Expected defense: storing the new challenge is refused for a verified
        email; the verification and the linked customer survive.
        """
        harness.saga.register(make_profile())
        stale = harness.developers.get_by_email(EMAIL)
        customer_id = harness.saga.verify_challenge(EMAIL, harness.notifier.last_code_for(EMAIL)).data[
            "customer_id"
        ]

        with pytest.raises(ConflictError):
            harness.saga.codes.issue_challenge(stale)

        developer = harness.developer(EMAIL)
        assert developer.email_verified is True
        assert developer.payment_customer_id == customer_id
        assert developer.lifecycle_state is LifecycleState.EMAIL_VERIFIED

    def test_stale_resend_through_saga_sends_no_code(
        self, harness: SagaHarness, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """
        Simulate the resend endpoint racing the verify endpoint.

        Expected defense: the resend reports the email as verified and mails nothing.
        """
        harness.saga.register(make_profile())
        stale = harness.developers.get_by_email(EMAIL)
        assert harness.saga.verify_challenge(EMAIL, harness.notifier.last_code_for(EMAIL)).ok
        sent_before = len(harness.notifier.sent)
        monkeypatch.setattr(harness.developers, "get_by_email", lambda email: stale)

        outcome = harness.saga.issue_challenge(EMAIL)

        assert outcome.ok
        assert outcome.data == {"email_verified": True}
        assert len(harness.notifier.sent) == sent_before
        monkeypatch.undo()
        assert harness.developer(EMAIL).email_verified is True

    def test_concurrent_verify_and_resend(self, harness: SagaHarness) -> None:
        """
        Simulate verify and resend released at the same instant.

        Expected defense: whichever order they commit in, the email ends verified
        with its customer linked.
        """
        harness.saga.register(make_profile())
        code = harness.notifier.last_code_for(EMAIL)
        actions = iter(
            [lambda: harness.saga.verify_challenge(EMAIL, code), lambda: harness.saga.issue_challenge(EMAIL)]
        )

        results = run_concurrently(lambda: next(actions)(), 2)

        developer = harness.developer(EMAIL)
        if developer.email_verified:
            assert developer.payment_customer_id is not None
            assert developer.lifecycle_state is LifecycleState.EMAIL_VERIFIED
        else:
            # The resend replaced the code before it was checked.
            assert any(r.error is ErrorKind.VALIDATION for r in results)
            assert developer.lifecycle_state is LifecycleState.CODE_ISSUED

    def test_checkout_during_confirmation_keeps_subscription(self, harness: SagaHarness) -> None:
        """
        Simulate a second checkout opened while the first session is being confirmed.

        Expected defense: attaching the new session is refused once the paid
        subscription is stored; the checkout is a conflict and the
        subscription id survives.
        """
        customer_id = harness.verified_developer()
        first = harness.saga.create_checkout_session("basic", customer_id).data["session_id"]
        subscription_id = harness.payments.pay(first)
        open_session = harness.payments.create_checkout_session

        def open_while_confirming(price_id: str, customer: str):
            session = open_session(price_id, customer)
            assert harness.saga.confirm_payment(first, customer_id).ok
            return session

        harness.payments.create_checkout_session = open_while_confirming

        outcome = harness.saga.create_checkout_session("premium", customer_id)

        developer = harness.developer(EMAIL)
        assert outcome.error is ErrorKind.CONFLICT
        assert developer.subscription.session_id == first
        assert developer.subscription.subscription_id == subscription_id
        assert developer.lifecycle_state is LifecycleState.CREDENTIAL_ISSUED
