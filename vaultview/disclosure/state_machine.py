"""Disclosure state machine: governs when one encrypted balance may be shown.

Lifecycle of a single balance instance:

    HIDDEN -> DISCLOSING -> DISCLOSED -> HIDDEN
                        `-> FAILED    -> HIDDEN | DISCLOSING

State semantics:
- HIDDEN: only the ciphertext marker is shown.
- DISCLOSING: exactly one oracle call is in flight for this instance.
- DISCLOSED: a plaintext snapshot valid as of `as_of`. Balances stream, so
  this is never a live value.
- FAILED: the last attempt failed (oracle error, timeout, oracle denial).
  Not terminal; a new request may start from here.

Rules:
- A request while DISCLOSING is rejected with DISCLOSURE_IN_PROGRESS, and so
  is one made while an oracle call orphaned by reset() is still running.
- A request while DISCLOSED is rejected; hide() must come first.
- An unauthorized caller never reaches the oracle and leaves the machine HIDDEN.
- hide() during DISCLOSING does not cancel the oracle call. It records the
  intent, and the result is dropped when the call resolves.
- reset() (identity switch) forces HIDDEN and discards any late result.
- A cancelled request never leaves the machine DISCLOSING: it lands in
  FAILED(ORACLE_ERROR), or HIDDEN when a hide was pending.
- Plaintext values are never cached. Every disclosure calls the oracle.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from vaultview import config
from vaultview.api.logging_config import get_logger
from vaultview.crypto_core.account_decoder import DecodedAccountRecord
from vaultview.crypto_core.authorization import AuthorizationProof
from vaultview.errors import OracleError, OracleUnauthorized, VaultViewError
from vaultview.ledger.oracle import DecryptionOracle

logger = get_logger("disclosure")


class DisclosureStatus(str, enum.Enum):
    HIDDEN = "hidden"
    DISCLOSING = "disclosing"
    DISCLOSED = "disclosed"
    FAILED = "failed"


class FailureReason(str, enum.Enum):
    UNAUTHORIZED = "unauthorized"
    DISCLOSURE_IN_PROGRESS = "disclosure_in_progress"
    ALREADY_DISCLOSED = "already_disclosed"
    ORACLE_ERROR = "oracle_error"
    TIMEOUT = "timeout"
    SUPERSEDED = "superseded"
    UNKNOWN_FIELD = "unknown_field"
    NO_RECORD = "no_record"


class InvalidTransition(VaultViewError):
    pass


@dataclass(frozen=True)
class DisclosureResult:
    """Snapshot of a balance's visibility, also returned by each request."""
    status: DisclosureStatus
    value: Optional[Decimal] = None
    as_of: Optional[datetime] = None
    reason: Optional[FailureReason] = None

    @property
    def disclosed(self) -> bool:
        return self.status is DisclosureStatus.DISCLOSED


HIDDEN = DisclosureResult(DisclosureStatus.HIDDEN)

# Valid transitions: {from_status: {allowed_to_statuses}}
_TRANSITIONS: dict[DisclosureStatus, set[DisclosureStatus]] = {
    DisclosureStatus.HIDDEN: {DisclosureStatus.DISCLOSING},
    DisclosureStatus.DISCLOSING: {
        DisclosureStatus.DISCLOSED,
        DisclosureStatus.FAILED,
        DisclosureStatus.HIDDEN,
    },
    DisclosureStatus.DISCLOSED: {DisclosureStatus.HIDDEN},
    DisclosureStatus.FAILED: {DisclosureStatus.HIDDEN, DisclosureStatus.DISCLOSING},
}

Authorizer = Callable[[DecodedAccountRecord, str, Optional[AuthorizationProof]], bool]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _rejected(reason: FailureReason) -> DisclosureResult:
    return DisclosureResult(DisclosureStatus.FAILED, reason=reason)


class DisclosureStateMachine:
    """One balance instance (one ciphertext field of one account)."""

    def __init__(
        self,
        field_name: str,
        oracle: DecryptionOracle,
        authorizer: Authorizer,
        *,
        timeout: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.field_name = field_name
        self.oracle = oracle
        self.authorizer = authorizer
        self.timeout = config.ORACLE_TIMEOUT_SEC if timeout is None else timeout
        self.clock = clock

        self._state: DisclosureResult = HIDDEN
        self._hide_requested = False
        self._generation = 0
        self._in_flight = 0
        self.max_in_flight = 0
        self.oracle_calls = 0

    # ---- introspection ----
    @property
    def state(self) -> DisclosureResult:
        return self._state

    @property
    def status(self) -> DisclosureStatus:
        return self._state.status

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def hide_pending(self) -> bool:
        return self._hide_requested

    def _transition(self, new: DisclosureResult) -> None:
        current = self._state.status
        if new.status not in _TRANSITIONS[current]:
            raise InvalidTransition(
                f"Invalid disclosure transition: {current.value} → {new.status.value}"
            )
        self._state = new
        suffix = f" ({new.reason.value})" if new.reason else ""
        logger.info(f"Disclosure {self.field_name}: {current.value} → {new.status.value}{suffix}")

    # ---- operations ----
    async def request_disclosure(
        self,
        record: DecodedAccountRecord,
        authorization: Optional[AuthorizationProof],
    ) -> DisclosureResult:
        status = self._state.status
        if status is DisclosureStatus.DISCLOSING or self._in_flight:
            return _rejected(FailureReason.DISCLOSURE_IN_PROGRESS)
        if status is DisclosureStatus.DISCLOSED:
            return _rejected(FailureReason.ALREADY_DISCLOSED)
        if not record.has_ciphertext(self.field_name):
            return _rejected(FailureReason.UNKNOWN_FIELD)

        if not self.authorizer(record, self.field_name, authorization):
            if status is DisclosureStatus.FAILED:
                self._transition(HIDDEN)
            return _rejected(FailureReason.UNAUTHORIZED)

        handle = record.ciphertext_handle(self.field_name)
        # Enter DISCLOSING before the first await so concurrent callers see it.
        self._transition(DisclosureResult(DisclosureStatus.DISCLOSING))
        self._hide_requested = False
        generation = self._generation
        self._in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self._in_flight)
        self.oracle_calls += 1

        value: Optional[Decimal] = None
        reason: Optional[FailureReason] = None
        try:
            call = self.oracle.decrypt(handle, authorization)
            value = await (asyncio.wait_for(call, self.timeout) if self.timeout else call)
        except asyncio.CancelledError:
            if generation == self._generation and self._state.status is DisclosureStatus.DISCLOSING:
                logger.warning(f"Disclosure {self.field_name}: request cancelled while disclosing")
                if self._hide_requested:
                    self._hide_requested = False
                    self._transition(HIDDEN)
                else:
                    self._transition(_rejected(FailureReason.ORACLE_ERROR))
            raise
        except OracleUnauthorized:
            reason = FailureReason.UNAUTHORIZED
        except asyncio.TimeoutError:
            reason = FailureReason.TIMEOUT
        except OracleError as e:
            logger.warning(f"Disclosure {self.field_name}: oracle error: {e}")
            reason = FailureReason.ORACLE_ERROR
        except Exception as e:
            logger.error(f"Disclosure {self.field_name}: unexpected oracle failure: {e!r}", exc_info=True)
            reason = FailureReason.ORACLE_ERROR
        finally:
            self._in_flight -= 1

        if generation != self._generation:
            logger.info(f"Disclosure {self.field_name}: late oracle result discarded after reset")
            return DisclosureResult(DisclosureStatus.HIDDEN, reason=FailureReason.SUPERSEDED)

        if self._hide_requested:
            self._hide_requested = False
            self._transition(HIDDEN)
            return self._state

        if reason is not None:
            self._transition(_rejected(reason))
        else:
            self._transition(
                DisclosureResult(DisclosureStatus.DISCLOSED, value=value, as_of=self.clock())
            )
        return self._state

    def hide(self) -> None:
        status = self._state.status
        if status is DisclosureStatus.HIDDEN:
            return
        if status is DisclosureStatus.DISCLOSING:
            self._hide_requested = True
            return
        self._transition(HIDDEN)

    def reset(self) -> None:
        """Force HIDDEN and orphan any in-flight oracle call."""
        self._generation += 1
        self._hide_requested = False
        if self._state.status is not DisclosureStatus.HIDDEN:
            self._transition(HIDDEN)


__all__ = [
    "DisclosureStatus",
    "FailureReason",
    "DisclosureResult",
    "DisclosureStateMachine",
    "InvalidTransition",
    "HIDDEN",
]
