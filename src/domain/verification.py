"""
Verification code manager - Single-use, time-boxed email challenges.

Codes are six decimal digits drawn from the secrets module and stored
only as bcrypt hashes next to an expiry timestamp. A developer has at most
one live challenge: issuing a new one overwrites the previous hash.

Security Design - Timing Oracle Prevention:
------------------------------------------
check_challenge always runs bcrypt.checkpw(), against a pre-computed dummy
hash when no challenge is pending, so "no challenge", "expired" and "wrong
code" take comparable time. The distinct reason is returned as a
ChallengeResult for logging only; callers report a single generic failure.

Single use is guaranteed by invalidate(), which swaps the stored hash for
CONSUMED_CODE_HASH through an atomic compare-and-set in the repository.
The sentinel is not a valid bcrypt hash, so no code can ever match it.
"""

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import lru_cache

import bcrypt

from .exceptions import ConflictError
from .models import ChallengeResult, DeveloperRecord, LifecycleState, utcnow
from .ports import DeveloperRepository

logger = logging.getLogger(__name__)

CONSUMED_CODE_HASH = "!consumed"

CODE_DIGITS = 6


@lru_cache
def _dummy_code_hash(rounds: int) -> str:
    """Hash compared against when no challenge is pending, at the live cost factor."""
    return bcrypt.hashpw(b"dummy_code_for_timing_safety", bcrypt.gensalt(rounds)).decode()


@dataclass
class VerificationCodeManager:
    """Generates, hashes, stores and checks verification challenges."""

    repository: DeveloperRepository
    ttl_seconds: int = 3600
    bcrypt_rounds: int = 10
    clock: Callable[[], datetime] = field(default=utcnow)

    def issue_challenge(self, developer: DeveloperRecord) -> str:
        """
        Create a fresh challenge for developer and persist it.

        The stored record is only written while its email is unverified,
        whatever developer says: a snapshot read before a concurrent
        verification cannot reopen the challenge.

        Args:
            developer: Record to attach the challenge to (mutated in place)

        Returns:
            Plaintext code for out-of-band delivery

        Raises:
            ConflictError: If the email is already verified
        """
        code = self._generate_code()
        code_hash = self._hash_code(code)
        expiry = self.clock() + timedelta(seconds=self.ttl_seconds)
        if not self.repository.store_challenge(developer.id, code_hash, expiry):
            raise ConflictError("Email already verified")

        developer.verification_code_hash = code_hash
        developer.verification_code_expiry = expiry
        developer.advance_to(LifecycleState.CODE_ISSUED)
        logger.info("Verification challenge issued for developer %s", developer.id)
        return code

    def check_challenge(self, developer: DeveloperRecord | None, code: str) -> ChallengeResult:
        """
        Compare code against the developer's pending challenge.

        Never raises. bcrypt runs on every path, including an unknown
        developer (None).
        """
        stored_hash = developer.verification_code_hash if developer is not None else None
        pending = bool(stored_hash) and stored_hash != CONSUMED_CODE_HASH
        candidate = code.strip() if isinstance(code, str) else ""
        if not (candidate.isascii() and candidate.isdigit() and len(candidate) == CODE_DIGITS):
            # Malformed input still pays for one bcrypt round trip.
            candidate = "-"

        compared_hash = stored_hash if pending else _dummy_code_hash(self.bcrypt_rounds)
        code_valid = bcrypt.checkpw(candidate.encode(), compared_hash.encode())

        if not pending:
            return ChallengeResult.NOT_PENDING
        expiry = developer.verification_code_expiry  # type: ignore[union-attr]
        if expiry is None or expiry <= self.clock():
            return ChallengeResult.EXPIRED
        if not code_valid:
            return ChallengeResult.INVALID_CODE
        return ChallengeResult.VALID

    def verify_challenge(self, developer: DeveloperRecord | None, code: str) -> bool:
        """Fail-closed boolean form of check_challenge()."""
        result = self.check_challenge(developer, code)
        if result is not ChallengeResult.VALID:
            logger.info(
                "Verification failed for developer %s: %s",
                developer.id if developer is not None else "<unknown>",
                result.value,
            )
            return False
        return True

    def invalidate(self, developer: DeveloperRecord) -> bool:
        """
        Consume the developer's pending challenge.

        Returns:
            True if this call consumed it, False if it was already consumed
        """
        stored_hash = developer.verification_code_hash
        if not stored_hash or stored_hash == CONSUMED_CODE_HASH:
            return False
        consumed = self.repository.consume_challenge(
            developer.id, stored_hash, CONSUMED_CODE_HASH
        )
        if consumed:
            developer.verification_code_hash = CONSUMED_CODE_HASH
        return consumed

    def _generate_code(self) -> str:
        """
        Generate a cryptographically secure six-digit code.

        Returns string to preserve leading zeros.
        """
        return "".join(secrets.choice("0123456789") for _ in range(CODE_DIGITS))

    def _hash_code(self, code: str) -> str:
        return bcrypt.hashpw(code.encode(), bcrypt.gensalt(rounds=self.bcrypt_rounds)).decode()
