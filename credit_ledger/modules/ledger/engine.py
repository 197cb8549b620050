"""Ledger engine: grant, FIFO consume, reservations and availability queries."""

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.database.models import (
    ConsumptionLogEntry,
    CreditReservation,
    CreditTransaction,
    OwnerType,
    ReservationStatus,
    SourceType,
    TransactionType,
)
from credit_ledger.modules.ledger.balance_cache import BalanceCache
from credit_ledger.modules.ledger.batch_store import BatchStore
from credit_ledger.modules.ledger.consumption_log import ConsumptionLog
from credit_ledger.modules.ledger.errors import (
    InvalidExpiryError,
    ReservationNotFoundError,
    UnknownOwnerError,
    validate_amount,
)
from credit_ledger.modules.ledger.holds import draw_budget, plan_draws
from credit_ledger.modules.ledger.owners import Owner, OwnerResolver
from credit_ledger.modules.ledger.reservations import ReservationStore
from credit_ledger.modules.ledger.results import (
    AvailableCredits,
    BatchDraw,
    BatchView,
    CommitResult,
    ConsumeResult,
    ConsumeSuccess,
    GrantResult,
    InsufficientCredits,
    ReleaseResult,
    ReleaseSuccess,
    ReservationInvalid,
    ReservationSuccess,
    ReserveResult,
)
from credit_ledger.modules.ledger.unit_of_work import OwnerScopedService


def batch_view(batch) -> BatchView:
    return BatchView(
        id=batch.id,
        feature_key=batch.feature_key,
        source_type=SourceType(batch.source_type).value,
        original_amount=batch.original_amount,
        remaining_amount=batch.remaining_amount,
        granted_at=batch.granted_at,
        expires_at=batch.expires_at,
        description=batch.description,
    )


def _replayed_consume(transaction: CreditTransaction) -> ConsumeSuccess:
    draws = [
        BatchDraw(batch_id=UUID(draw["batch_id"]), amount=draw["amount"])
        for draw in transaction.details.get("draws", [])
    ]
    return ConsumeSuccess(
        batches_drawn=draws,
        transaction_id=transaction.id,
        amount=-transaction.amount,
        balance_after=transaction.balance_after,
        replayed=True,
    )


class LedgerEngine(OwnerScopedService):
    """Transactional core of the ledger.

    Every mutation runs as one owner-scoped unit of work: the batches, the
    balance cache and the audit rows it touches commit together or not at
    all. Insufficient credit and invalid reservations come back as result
    values; caller bugs raise ``LedgerException`` subclasses.
    """

    async def _ensure_owner(self, session: AsyncSession, owner: Owner) -> None:
        if not await OwnerResolver(session).exists(owner):
            raise UnknownOwnerError(owner)

    # Grant

    async def grant(
        self,
        owner: Owner,
        amount: int,
        source_type: SourceType,
        expires_at: datetime,
        feature_key: str | None = None,
        source_reference_id: str | None = None,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> GrantResult:
        """Create a batch of ``amount`` credits expiring at ``expires_at``.

        Replaying a grant with the same ``source_type`` and
        ``source_reference_id`` returns the original batch without writing.
        """
        amount = validate_amount(amount)
        source_type = SourceType(source_type)
        now = self.clock()
        if expires_at is None or expires_at.tzinfo is None or expires_at <= now:
            raise InvalidExpiryError(expires_at)

        async def operation(session: AsyncSession) -> GrantResult:
            await self._ensure_owner(session, owner)
            return await self.grant_in_session(
                session,
                owner,
                amount,
                source_type,
                expires_at,
                granted_at=now,
                feature_key=feature_key,
                source_reference_id=source_reference_id,
                description=description,
                metadata=metadata,
            )

        result = await self.run_for_owner(owner, operation)
        self.logger.info(
            "Credits granted" if not result.replayed else "Grant replayed",
            owner=owner.key,
            amount=amount,
            source_type=source_type.value,
            feature_key=feature_key,
            batch_id=str(result.batch_id),
            balance_after=result.balance_after,
        )
        return result

    async def grant_in_session(
        self,
        session: AsyncSession,
        owner: Owner,
        amount: int,
        source_type: SourceType,
        expires_at: datetime,
        granted_at: datetime,
        feature_key: str | None = None,
        source_reference_id: str | None = None,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> GrantResult:
        """Grant inside a unit of work the caller already holds for ``owner``."""
        log = ConsumptionLog(session)

        idempotency_key = None
        if source_reference_id is not None:
            idempotency_key = f"{source_type.value}:{source_reference_id}"
            existing = await log.find_by_idempotency_key(owner, idempotency_key)
            if existing is not None:
                return GrantResult(
                    batch_id=existing.batch_id,
                    transaction_id=existing.id,
                    balance_after=existing.balance_after,
                    replayed=True,
                )

        balance = await BalanceCache(session).lock_or_create(owner)
        batch = await BatchStore(session).create(
            owner,
            amount,
            source_type,
            expires_at=expires_at,
            granted_at=granted_at,
            feature_key=feature_key,
            source_reference_id=source_reference_id,
            description=description,
        )
        BalanceCache.apply_grant(balance, amount, granted_at)

        transaction_type = (
            TransactionType.ROLLOVER
            if source_type == SourceType.ROLLOVER
            else TransactionType.GRANT
        )
        transaction = await log.append_transaction(
            owner,
            amount=amount,
            balance_after=balance.available_credits,
            transaction_type=transaction_type,
            created_at=granted_at,
            batch_id=batch.id,
            description=description,
            details={
                **(metadata or {}),
                "source_type": source_type.value,
                "feature_key": feature_key,
                "expires_at": expires_at.isoformat(),
            },
            idempotency_key=idempotency_key,
        )
        return GrantResult(
            batch_id=batch.id,
            transaction_id=transaction.id,
            balance_after=balance.available_credits,
        )

    # Consume

    async def consume(
        self,
        owner: Owner,
        amount: int,
        feature_key: str | None = None,
        action_type: str = "consume",
        action_reference_id: str | None = None,
        description: str | None = None,
    ) -> ConsumeResult:
        """Draw ``amount`` credits FIFO by nearest expiry, all or nothing."""
        amount = validate_amount(amount)
        idempotency_key = (
            f"consume:{action_type}:{action_reference_id}"
            if action_reference_id is not None
            else None
        )

        async def operation(session: AsyncSession) -> ConsumeResult:
            return await self._consume_locked(
                session,
                owner,
                amount,
                feature_key=feature_key,
                action_type=action_type,
                action_reference_id=action_reference_id,
                description=description,
                idempotency_key=idempotency_key,
            )

        result = await self.run_for_owner(owner, operation)
        self._log_consume(owner, amount, feature_key, result)
        return result

    async def _consume_locked(
        self,
        session: AsyncSession,
        owner: Owner,
        amount: int,
        feature_key: str | None,
        action_type: str,
        action_reference_id: str | None,
        description: str | None,
        idempotency_key: str | None,
        reservation: CreditReservation | None = None,
    ) -> ConsumeResult:
        now = self.clock()
        log = ConsumptionLog(session)

        if idempotency_key is not None:
            existing = await log.find_by_idempotency_key(owner, idempotency_key)
            if existing is not None:
                return _replayed_consume(existing)

        # 1. Balance row first, then the batches in id order
        balance = await BalanceCache(session).lock(owner)
        if balance is None:
            await self._ensure_owner(session, owner)
            return InsufficientCredits(
                requested=amount, available=0, feature_key=feature_key
            )
        store = BatchStore(session)
        batches = await store.lock_usable(owner, feature_key, now)

        # 2. Held credit is never spendable, except the caller's own hold
        holds = await ReservationStore(session).active_by_scope(owner)
        held = 0
        if reservation is not None:
            held = reservation.amount
            holds[reservation.feature_key] -= held
        budget = draw_budget(await store.live_totals(owner, now), holds, feature_key)
        spendable = max(0, min(budget.total, balance.available_credits + held))
        if spendable < amount:
            return InsufficientCredits(
                requested=amount, available=spendable, feature_key=feature_key
            )

        # 3. Walk the FIFO order until the request is covered
        draws = plan_draws(batches, amount, budget)
        for batch, take in draws:
            batch.remaining_amount -= take

        BalanceCache.apply_consume(balance, amount, now)
        if reservation is not None:
            BalanceCache.apply_release(balance, held, now)

        transaction = await log.append_transaction(
            owner,
            amount=-amount,
            balance_after=balance.available_credits,
            transaction_type=TransactionType.CONSUME,
            created_at=now,
            reservation_id=reservation.id if reservation is not None else None,
            description=description,
            details={
                "action_type": action_type,
                "action_reference_id": action_reference_id,
                "feature_key": feature_key,
                "draws": [
                    {"batch_id": str(batch.id), "amount": take}
                    for batch, take in draws
                ],
            },
            idempotency_key=idempotency_key,
        )
        for batch, take in draws:
            log.append_entry(
                owner,
                batch,
                transaction_id=transaction.id,
                quantity=take,
                action_type=action_type,
                consumed_at=now,
                feature_key=feature_key,
                action_reference_id=action_reference_id,
            )

        return ConsumeSuccess(
            batches_drawn=[BatchDraw(batch.id, take) for batch, take in draws],
            transaction_id=transaction.id,
            amount=amount,
            balance_after=balance.available_credits,
        )

    def _log_consume(
        self, owner: Owner, amount: int, feature_key: str | None, result
    ) -> None:
        if isinstance(result, ConsumeSuccess):
            self.logger.info(
                "Credits consumed" if not result.replayed else "Consume replayed",
                owner=owner.key,
                amount=amount,
                feature_key=feature_key,
                batches=len(result.batches_drawn),
                balance_after=result.balance_after,
            )
        elif isinstance(result, InsufficientCredits):
            self.logger.info(
                "Insufficient credits",
                owner=owner.key,
                requested=amount,
                available=result.available,
                feature_key=feature_key,
            )

    # Reservations

    async def reserve(
        self,
        owner: Owner,
        amount: int,
        ttl: timedelta | None = None,
        feature_key: str | None = None,
        action_type: str | None = None,
        action_reference_id: str | None = None,
    ) -> ReserveResult:
        """Hold ``amount`` credits without touching any batch."""
        amount = validate_amount(amount)
        if ttl is None:
            ttl = timedelta(seconds=self.settings.LEDGER_DEFAULT_RESERVATION_TTL_SECONDS)

        async def operation(session: AsyncSession) -> ReserveResult:
            now = self.clock()
            store = ReservationStore(session)

            if action_reference_id is not None:
                existing = await store.find_for_action(
                    owner, action_type, action_reference_id
                )
                if existing is not None:
                    return ReservationSuccess(
                        reservation_id=existing.id,
                        amount=existing.amount,
                        expires_at=existing.expires_at,
                        replayed=True,
                    )

            balance = await BalanceCache(session).lock(owner)
            if balance is None:
                await self._ensure_owner(session, owner)
                return InsufficientCredits(
                    requested=amount, available=0, feature_key=feature_key
                )
            pools = await BatchStore(session).live_totals(owner, now)
            budget = draw_budget(pools, await store.active_by_scope(owner), feature_key)
            spendable = max(0, min(budget.total, balance.available_credits))
            if spendable < amount:
                return InsufficientCredits(
                    requested=amount, available=spendable, feature_key=feature_key
                )

            BalanceCache.apply_hold(balance, amount, now)
            reservation = await store.create(
                owner,
                amount,
                expires_at=now + ttl,
                created_at=now,
                feature_key=feature_key,
                action_type=action_type,
                action_reference_id=action_reference_id,
            )
            return ReservationSuccess(
                reservation_id=reservation.id,
                amount=amount,
                expires_at=reservation.expires_at,
            )

        result = await self.run_for_owner(owner, operation)
        if isinstance(result, ReservationSuccess):
            self.logger.info(
                "Credits reserved",
                owner=owner.key,
                amount=amount,
                reservation_id=str(result.reservation_id),
                replayed=result.replayed,
            )
        return result

    async def _reservation_owner(self, reservation_id: UUID) -> Owner:
        async with self.session_factory() as session:
            reservation = await ReservationStore(session).get(reservation_id)
            if reservation is None:
                raise ReservationNotFoundError(reservation_id)
            return Owner.of(reservation)

    def _expire_hold(self, balance, reservation: CreditReservation, now: datetime):
        BalanceCache.apply_release(balance, reservation.amount, now)
        ReservationStore.resolve(reservation, ReservationStatus.EXPIRED, now)
        return ReservationInvalid(
            reservation_id=reservation.id,
            status=ReservationStatus.EXPIRED.value,
            reason="reservation expired",
        )

    @staticmethod
    def _not_active(reservation: CreditReservation) -> ReservationInvalid:
        status = ReservationStatus(reservation.status).value
        return ReservationInvalid(
            reservation_id=reservation.id,
            status=status,
            reason=f"reservation is {status}",
        )

    async def release(self, reservation_id: UUID) -> ReleaseResult:
        """Return an active hold to the available balance."""
        owner = await self._reservation_owner(reservation_id)

        async def operation(session: AsyncSession) -> ReleaseResult:
            now = self.clock()
            balance = await BalanceCache(session).lock(owner)
            reservation = await ReservationStore(session).lock(reservation_id)
            if reservation.status != ReservationStatus.ACTIVE:
                return self._not_active(reservation)
            if reservation.expires_at <= now:
                return self._expire_hold(balance, reservation, now)

            BalanceCache.apply_release(balance, reservation.amount, now)
            ReservationStore.resolve(reservation, ReservationStatus.RELEASED, now)
            return ReleaseSuccess(
                reservation_id=reservation.id, amount=reservation.amount
            )

        result = await self.run_for_owner(owner, operation)
        self.logger.info(
            "Reservation released" if result.success else "Release rejected",
            owner=owner.key,
            reservation_id=str(reservation_id),
        )
        return result

    async def commit(self, reservation_id: UUID) -> CommitResult:
        """Consume the reserved amount FIFO and clear the hold in one unit.

        If the pool no longer covers the hold (its batches expired meanwhile)
        ``InsufficientCredits`` is returned and the reservation stays active.
        """
        owner = await self._reservation_owner(reservation_id)

        async def operation(session: AsyncSession) -> CommitResult:
            now = self.clock()
            balance = await BalanceCache(session).lock(owner)
            reservation = await ReservationStore(session).lock(reservation_id)
            if reservation.status != ReservationStatus.ACTIVE:
                return self._not_active(reservation)
            if reservation.expires_at <= now:
                return self._expire_hold(balance, reservation, now)

            result = await self._consume_locked(
                session,
                owner,
                reservation.amount,
                feature_key=reservation.feature_key,
                action_type=reservation.action_type or "reservation",
                action_reference_id=reservation.action_reference_id,
                description=None,
                idempotency_key=f"commit:{reservation.id}",
                reservation=reservation,
            )
            if isinstance(result, ConsumeSuccess):
                ReservationStore.resolve(
                    reservation,
                    ReservationStatus.COMMITTED,
                    now,
                    transaction_id=result.transaction_id,
                )
            return result

        result = await self.run_for_owner(owner, operation)
        if isinstance(result, ReservationInvalid):
            self.logger.info(
                "Commit rejected",
                owner=owner.key,
                reservation_id=str(reservation_id),
                status=result.status,
            )
        else:
            amount = (
                result.amount if isinstance(result, ConsumeSuccess) else result.requested
            )
            self._log_consume(owner, amount, None, result)
        return result

    # Queries

    async def get_available(
        self, owner: Owner, feature_key: str | None = None
    ) -> AvailableCredits:
        """Spendable credit for ``owner``, split into general and feature pools."""
        now = self.clock()
        async with self.session_factory() as session:
            balance = await BalanceCache(session).get(owner)
            if balance is None:
                await self._ensure_owner(session, owner)
            store = BatchStore(session)
            batches = await store.list_usable(owner, feature_key, now)
            pools = await store.live_totals(owner, now)
            holds = await ReservationStore(session).active_by_scope(owner)

        general = sum(b.remaining_amount for b in batches if b.feature_key is None)
        feature = sum(b.remaining_amount for b in batches if b.feature_key is not None)
        cached_available = balance.available_credits if balance else 0

        window_days = (
            self.settings.LEDGER_USER_EXPIRING_SOON_DAYS
            if owner.owner_type == OwnerType.USER
            else self.settings.LEDGER_ORG_EXPIRING_SOON_DAYS
        )
        soon = now + timedelta(days=window_days)

        return AvailableCredits(
            general_available=general,
            feature_available=feature,
            total_available=max(
                0, min(draw_budget(pools, holds, feature_key).total, cached_available)
            ),
            reserved_credits=balance.reserved_credits if balance else 0,
            earliest_expiry=min((b.expires_at for b in batches), default=None),
            expiring_soon=sum(b.remaining_amount for b in batches if b.expires_at <= soon),
            batches=[batch_view(b) for b in batches],
        )

    async def list_batches(
        self,
        owner: Owner,
        include_expired: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[BatchView], int]:
        async with self.session_factory() as session:
            batches, total = await BatchStore(session).list_for_owner(
                owner, include_expired=include_expired, limit=limit, offset=offset
            )
        return [batch_view(b) for b in batches], total

    async def list_transactions(
        self, owner: Owner, limit: int = 50, offset: int = 0
    ) -> tuple[list[CreditTransaction], int]:
        async with self.session_factory() as session:
            return await ConsumptionLog(session).list_transactions(
                owner, limit=limit, offset=offset
            )

    async def list_consumption(
        self, owner: Owner, limit: int = 50, offset: int = 0
    ) -> tuple[list[ConsumptionLogEntry], int]:
        async with self.session_factory() as session:
            return await ConsumptionLog(session).list_entries(
                owner, limit=limit, offset=offset
            )
