"""Claim orchestration: validation, cooldown, token reservation and delivery."""
from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import OperationalError, SQLAlchemyError

from tokenpool.config import AppConfig, Strategy
from tokenpool.core.clock import Clock, ensure_clock

from .directory import ClaimantDirectory
from .errors import (
    AllocationServiceError,
    ReservationConflict,
    internal,
    out_of_stock,
    rate_limited,
    unauthorized,
)
from .metrics import DEFAULT_METERS
from .pool import FaultInjector, PoolRepository
from .ratelimit import evaluate_cooldown
from .types import Claimant, ClaimantSession, ClaimResult, MeterLike, ReservedToken
from .uow import UnitOfWorkFactory

logger = logging.getLogger(__name__)


class TokenAllocator:
    """Hands out one token per claim while keeping the pool invariants.

    ``pessimistic`` runs stamp, reservation and delivery in one transaction
    with locking reads. ``optimistic`` commits each step on its own and
    compensates the cooldown stamp when a later step fails.
    """

    def __init__(
        self,
        *,
        uow_factory: UnitOfWorkFactory,
        cooldown: timedelta,
        strategy: Strategy = "pessimistic",
        clock: Clock | None = None,
        meters: MeterLike | None = None,
        fault_injector: Optional[FaultInjector] = None,
        max_selection_attempts: int = 3,
        selection_backoff_seconds: float = 0.05,
        max_transaction_retries: int = 3,
        backoff_cap_seconds: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if strategy not in ("pessimistic", "optimistic"):
            raise ValueError(f"unknown allocation strategy: {strategy!r}")
        self._uow_factory = uow_factory
        self._cooldown = cooldown
        self._strategy = strategy
        self._clock = ensure_clock(clock)
        # Without an injected clock the cooldown stamp comes from the store.
        self._stamp_clock = clock
        self._meters = meters or DEFAULT_METERS
        self._faults = fault_injector or FaultInjector()
        self._max_selection_attempts = max_selection_attempts
        self._selection_backoff = selection_backoff_seconds
        self._max_retries = max_transaction_retries
        self._backoff_cap = backoff_cap_seconds
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        uow_factory: UnitOfWorkFactory,
        **overrides,
    ) -> "TokenAllocator":
        allocation = config.allocation
        params = dict(
            uow_factory=uow_factory,
            cooldown=config.cooldown.interval,
            strategy=allocation.strategy,
            max_selection_attempts=allocation.max_selection_attempts,
            selection_backoff_seconds=allocation.selection_backoff_seconds,
            max_transaction_retries=allocation.max_transaction_retries,
            backoff_cap_seconds=allocation.backoff_cap_seconds,
        )
        params.update(overrides)
        return cls(**params)

    @property
    def strategy(self) -> Strategy:
        return self._strategy

    @property
    def cooldown(self) -> timedelta:
        return self._cooldown

    def claim(self, claimant: ClaimantSession) -> ClaimResult:
        attempt = 0
        while True:
            try:
                if self._strategy == "pessimistic":
                    result = self._claim_pessimistic(claimant.claimant_id)
                else:
                    result = self._claim_optimistic(claimant.claimant_id)
            except AllocationServiceError as exc:
                self._meters.record_claim(exc.code.lower())
                logger.info(
                    "claim_rejected",
                    extra={"claimant_id": claimant.claimant_id, "code": exc.code},
                )
                raise
            except (OperationalError, ReservationConflict) as exc:
                attempt += 1
                if attempt > self._max_retries:
                    raise self._retries_exhausted(claimant.claimant_id, exc) from exc
                backoff = self._retry_backoff(exc, attempt)
                self._meters.record_tx_retry()
                logger.warning(
                    "tx_retry",
                    extra={
                        "claimant_id": claimant.claimant_id,
                        "attempt": attempt,
                        "delay": backoff,
                        "reason": type(exc).__name__,
                    },
                )
                self._sleep(backoff)
                continue
            self._meters.record_claim("issued")
            logger.info(
                "claim_issued",
                extra={"claimant_id": claimant.claimant_id, "token_id": result.token_id},
            )
            return result

    def _retry_backoff(self, exc: Exception, attempt: int) -> float:
        # Conflicts back off linearly like re-selection, store failures exponentially.
        if isinstance(exc, ReservationConflict):
            return self._selection_backoff * attempt
        return min(0.5 * (2 ** attempt), self._backoff_cap)

    def _retries_exhausted(self, claimant_id: str, exc: Exception) -> AllocationServiceError:
        if isinstance(exc, ReservationConflict):
            self._meters.record_claim("out_of_stock")
            logger.warning("token_race", extra={"claimant_id": claimant_id, "stage": exc.stage})
            return out_of_stock()
        self._meters.record_claim("internal")
        logger.error("claim_failed", extra={"claimant_id": claimant_id, "detail": str(exc)})
        return internal(cause=exc)

    # Strategies ----------------------------------------------------------
    def _claim_pessimistic(self, claimant_id: str) -> ClaimResult:
        now = self._clock.now()
        with self._uow_factory() as uow:
            directory = ClaimantDirectory(uow.session, clock=self._stamp_clock)
            pool = PoolRepository(uow.session, clock=self._clock, fault_injector=self._faults)
            claimant = self._validate(directory, claimant_id, now)
            stamped = self._stamp(directory, claimant, now)
            token = self._select_and_commit(pool, claimant.id, stamped, lock=True)
            pool.record_delivery(claimant.id, token.id, stamped)
        return self._result(token, stamped)

    def _claim_optimistic(self, claimant_id: str) -> ClaimResult:
        now = self._clock.now()
        with self._uow_factory() as uow:
            directory = ClaimantDirectory(uow.session, clock=self._stamp_clock)
            claimant = self._validate(directory, claimant_id, now)
            stamped = self._stamp(directory, claimant, now)
        try:
            token = self._reserve_optimistic(claimant.id, stamped)
        except (AllocationServiceError, ReservationConflict, SQLAlchemyError):
            self._compensate(claimant.id, stamped, claimant.last_issue_at)
            raise
        return self._result(token, stamped)

    def _reserve_optimistic(self, claimant_id: str, now: datetime) -> ReservedToken:
        lost: list[str] = []
        for attempt in range(1, self._max_selection_attempts + 1):
            with self._uow_factory() as uow:
                pool = PoolRepository(uow.session, clock=self._clock, fault_injector=self._faults)
                candidate = pool.reserve_token(claimant_id, lock=False, exclude=lost)
                if candidate is None:
                    raise out_of_stock()
                committed = pool.commit_reservation(candidate.id, claimant_id, now)
            if committed is None:
                lost.append(candidate.id)
                self._lost_race(claimant_id, candidate.id, attempt)
                continue
            try:
                with self._uow_factory() as uow:
                    PoolRepository(uow.session, fault_injector=self._faults).record_delivery(
                        claimant_id, committed.id, now
                    )
            except ReservationConflict:
                self._meters.record_conflict("delivery")
                with self._uow_factory() as uow:
                    PoolRepository(uow.session).release_reservation(committed.id)
                raise
            return committed
        logger.warning("token_race", extra={"claimant_id": claimant_id, "lost": len(lost)})
        raise out_of_stock()

    # Steps ---------------------------------------------------------------
    def _validate(self, directory: ClaimantDirectory, claimant_id: str, now: datetime) -> Claimant:
        claimant = directory.fetch_claimant(claimant_id)
        if claimant is None or not claimant.is_usable(now):
            raise unauthorized()
        cooldown_state = evaluate_cooldown(claimant.last_issue_at, self._cooldown, now)
        if cooldown_state.limited and cooldown_state.next_available_at is not None:
            raise rate_limited(cooldown_state.next_available_at)
        return claimant

    def _stamp(self, directory: ClaimantDirectory, claimant: Claimant, now: datetime) -> datetime:
        stamped = directory.mark_issued_now(claimant.id, self._cooldown)
        if stamped is not None:
            return stamped
        self._meters.record_conflict("cooldown")
        current = directory.fetch_claimant(claimant.id)
        last_issue_at = current.last_issue_at if current is not None else None
        blocked_until = (last_issue_at or now) + self._cooldown
        logger.info("cooldown_race", extra={"claimant_id": claimant.id, "blocked_until": blocked_until})
        raise rate_limited(blocked_until)

    def _select_and_commit(
        self, pool: PoolRepository, claimant_id: str, now: datetime, *, lock: bool
    ) -> ReservedToken:
        lost: list[str] = []
        for attempt in range(1, self._max_selection_attempts + 1):
            candidate = pool.reserve_token(claimant_id, lock=lock, exclude=lost)
            if candidate is None:
                raise out_of_stock()
            committed = pool.commit_reservation(candidate.id, claimant_id, now)
            if committed is not None:
                return committed
            lost.append(candidate.id)
            self._lost_race(claimant_id, candidate.id, attempt)
        logger.warning("token_race", extra={"claimant_id": claimant_id, "lost": len(lost)})
        raise out_of_stock()

    def _lost_race(self, claimant_id: str, token_id: str, attempt: int) -> None:
        self._meters.record_conflict("commit")
        logger.info(
            "reservation_conflict",
            extra={"claimant_id": claimant_id, "token_id": token_id, "attempt": attempt},
        )
        if attempt < self._max_selection_attempts:
            self._sleep(self._selection_backoff * attempt)

    def _compensate(self, claimant_id: str, stamped: datetime, previous: Optional[datetime]) -> None:
        try:
            with self._uow_factory() as uow:
                restored = ClaimantDirectory(uow.session, clock=self._stamp_clock).compensate_issue(
                    claimant_id, stamped, previous
                )
        except SQLAlchemyError:
            # The claim failure is re-raised by the caller either way.
            logger.exception("cooldown_compensation_failed", extra={"claimant_id": claimant_id})
            return
        logger.info("cooldown_compensated", extra={"claimant_id": claimant_id, "restored": restored})

    def _result(self, token: ReservedToken, stamped: datetime) -> ClaimResult:
        return ClaimResult(
            token=token.value,
            token_id=token.id,
            created_at=stamped,
            next_available_at=stamped + self._cooldown,
        )


__all__ = ["TokenAllocator"]
