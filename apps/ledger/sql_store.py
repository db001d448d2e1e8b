"""
SQL ledger store on SQLModel/SQLAlchemy (PostgreSQL or SQLite).

Each mutation runs in one database transaction. The account row is locked
with SELECT ... FOR UPDATE where the dialect supports it and consumption is
a conditional UPDATE guarded by ``balance >= amount``, so the check and the
decrement can never interleave with another writer.
"""
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

import structlog
from sqlalchemy import func, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlmodel import Session, select

from apps.core.config import COUNTER_FOR_TYPE, TransactionType
from apps.core.exceptions import StorageUnavailableError, UnexpectedLedgerError, ValidationError
from apps.db.models.credit import (
    CreditAccount,
    CreditBalance,
    CreditTransaction,
    CreditTransactionRead,
    UsageLog,
    UsageLogRead,
    utcnow,
)
from apps.db.models.pricing import (
    CreditPackage,
    CreditPackageCreate,
    CreditPackageRead,
    PricingTier,
    PricingTierCreate,
    PricingTierRead,
    PricingTierUpdate,
)
from apps.ledger.base import ConsumeOutcome, LedgerEntry, LedgerStore, check_replay

logger = structlog.get_logger(__name__)


def _parse_uuid(value: str) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except ValueError:
        return None


class SQLLedgerStore(LedgerStore):
    """Ledger store talking to a relational database through SQLModel."""

    def __init__(self, engine: Engine):
        self.engine = engine

    @property
    def name(self) -> str:
        return "sql"

    @contextmanager
    def _session(self, operation: str):
        """One session, one transaction; storage errors mapped to ledger errors."""
        try:
            with Session(self.engine, expire_on_commit=False) as session:
                with session.begin():
                    yield session
        except (OperationalError, InterfaceError) as e:
            logger.error("Ledger storage unavailable", operation=operation, error=str(e))
            raise StorageUnavailableError(operation) from e
        except SQLAlchemyError as e:
            logger.error("Ledger storage error", operation=operation, error=str(e))
            raise UnexpectedLedgerError(operation) from e

    # Account helpers
    def _insert_account_if_missing(self, session: Session, user_id: str) -> None:
        now = utcnow()
        values = {
            "user_id": user_id,
            "balance": 0,
            "total_purchased": 0,
            "total_bonus": 0,
            "total_refunded": 0,
            "total_used": 0,
            "version": 0,
            "created_at": now,
            "updated_at": now,
        }
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            statement = postgresql.insert(CreditAccount).values(**values)
        elif dialect == "sqlite":
            statement = sqlite.insert(CreditAccount).values(**values)
        else:
            if session.get(CreditAccount, user_id) is None:
                session.add(CreditAccount(**values))
                session.flush()
            return
        session.execute(statement.on_conflict_do_nothing(index_elements=["user_id"]))

    def _lock_account(self, session: Session, user_id: str) -> CreditAccount:
        self._insert_account_if_missing(session, user_id)
        statement = (
            select(CreditAccount)
            .where(CreditAccount.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.exec(statement).one()

    def _find_by_idempotency_key(
        self, session: Session, user_id: str, idempotency_key: str
    ) -> Optional[CreditTransactionRead]:
        statement = select(CreditTransaction).where(
            CreditTransaction.user_id == user_id,
            CreditTransaction.idempotency_key == idempotency_key,
        )
        prior = session.exec(statement).first()
        return CreditTransactionRead.model_validate(prior) if prior else None

    def _usage_log_for(self, session: Session, transaction_id: UUID) -> Optional[UsageLogRead]:
        statement = select(UsageLog).where(UsageLog.transaction_id == transaction_id)
        log = session.exec(statement).first()
        return UsageLogRead.model_validate(log) if log else None

    def _append_transaction(
        self,
        session: Session,
        account: CreditAccount,
        amount: int,
        transaction_type: TransactionType,
        description: Optional[str],
        meta: Optional[Dict[str, Any]],
        reference_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> CreditTransaction:
        transaction = CreditTransaction(
            user_id=account.user_id,
            amount=amount,
            transaction_type=transaction_type.value,
            balance_after=account.balance,
            sequence=account.version,
            description=description,
            reference_id=reference_id,
            idempotency_key=idempotency_key,
            meta=meta or {},
        )
        session.add(transaction)
        session.flush()
        return transaction

    def _check_refund_bound(self, session: Session, user_id: str, reference_id: str, amount: int) -> str:
        reference = _parse_uuid(reference_id)
        original = session.get(CreditTransaction, reference) if reference else None
        if (
            original is None
            or original.user_id != user_id
            or original.transaction_type != TransactionType.USAGE.value
        ):
            raise ValidationError(
                "Refund reference must be a usage transaction of the same user",
                details={"reference_id": reference_id},
            )

        statement = select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
            CreditTransaction.user_id == user_id,
            CreditTransaction.transaction_type == TransactionType.REFUND.value,
            CreditTransaction.reference_id == str(reference),
        )
        already_refunded = session.exec(statement).one()
        consumed = -original.amount
        if already_refunded + amount > consumed:
            raise ValidationError(
                "Refund exceeds the credits consumed",
                details={
                    "reference_id": str(reference),
                    "consumed": consumed,
                    "already_refunded": already_refunded,
                    "requested": amount,
                },
            )
        return str(reference)

    # Ledger operations
    def get_or_create_account(self, user_id: str) -> CreditBalance:
        with self._session("get_balance") as session:
            self._insert_account_if_missing(session, user_id)
            account = session.get(CreditAccount, user_id)
            return CreditBalance.model_validate(account)

    def apply_credit(
        self,
        user_id: str,
        amount: int,
        transaction_type: TransactionType,
        description: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
        reference_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> LedgerEntry:
        counter = COUNTER_FOR_TYPE[transaction_type]
        try:
            with self._session("apply_credit") as session:
                account = self._lock_account(session, user_id)

                if idempotency_key:
                    prior = self._find_by_idempotency_key(session, user_id, idempotency_key)
                    if prior is not None:
                        check_replay(prior, transaction_type, amount)
                        return LedgerEntry(
                            account=CreditBalance.model_validate(account),
                            transaction=prior,
                            replayed=True,
                        )

                if transaction_type == TransactionType.REFUND and reference_id:
                    reference_id = self._check_refund_bound(session, user_id, reference_id, amount)

                session.execute(
                    update(CreditAccount)
                    .where(CreditAccount.user_id == user_id)
                    .values({
                        "balance": CreditAccount.balance + amount,
                        counter: getattr(CreditAccount, counter) + amount,
                        "version": CreditAccount.version + 1,
                        "updated_at": utcnow(),
                    })
                    .execution_options(synchronize_session=False)
                )
                session.refresh(account)

                transaction = self._append_transaction(
                    session, account, amount, transaction_type, description, meta,
                    reference_id=reference_id, idempotency_key=idempotency_key,
                )
                return LedgerEntry(
                    account=CreditBalance.model_validate(account),
                    transaction=CreditTransactionRead.model_validate(transaction),
                )
        except UnexpectedLedgerError as e:
            replay = self._replay_after_conflict(e, user_id, idempotency_key)
            if replay is None:
                raise
            check_replay(replay, transaction_type, amount)
            return LedgerEntry(
                account=self.get_or_create_account(user_id),
                transaction=replay,
                replayed=True,
            )

    def consume(
        self,
        user_id: str,
        amount: int,
        provider: str,
        operation: str,
        description: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
        request_metadata: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> ConsumeOutcome:
        try:
            with self._session("consume") as session:
                account = self._lock_account(session, user_id)

                if idempotency_key:
                    prior = self._find_by_idempotency_key(session, user_id, idempotency_key)
                    if prior is not None:
                        check_replay(prior, TransactionType.USAGE, -amount)
                        return ConsumeOutcome(
                            consumed=True,
                            balance=prior.balance_after,
                            transaction=prior,
                            usage_log=self._usage_log_for(session, prior.id),
                            replayed=True,
                        )

                result = session.execute(
                    update(CreditAccount)
                    .where(CreditAccount.user_id == user_id, CreditAccount.balance >= amount)
                    .values({
                        "balance": CreditAccount.balance - amount,
                        "total_used": CreditAccount.total_used + amount,
                        "version": CreditAccount.version + 1,
                        "updated_at": utcnow(),
                    })
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    return ConsumeOutcome(consumed=False, balance=account.balance)

                session.refresh(account)
                transaction = self._append_transaction(
                    session, account, -amount, TransactionType.USAGE, description, meta,
                    idempotency_key=idempotency_key,
                )
                usage_log = UsageLog(
                    user_id=user_id,
                    transaction_id=transaction.id,
                    provider=provider,
                    operation=operation,
                    credits_used=amount,
                    request_metadata=request_metadata or {},
                    response_metadata={},
                )
                session.add(usage_log)
                session.flush()

                return ConsumeOutcome(
                    consumed=True,
                    balance=account.balance,
                    transaction=CreditTransactionRead.model_validate(transaction),
                    usage_log=UsageLogRead.model_validate(usage_log),
                )
        except UnexpectedLedgerError as e:
            replay = self._replay_after_conflict(e, user_id, idempotency_key)
            if replay is None:
                raise
            check_replay(replay, TransactionType.USAGE, -amount)
            with self._session("consume") as session:
                usage_log = self._usage_log_for(session, replay.id)
            return ConsumeOutcome(
                consumed=True,
                balance=replay.balance_after,
                transaction=replay,
                usage_log=usage_log,
                replayed=True,
            )

    def _replay_after_conflict(
        self, error: UnexpectedLedgerError, user_id: str, idempotency_key: Optional[str]
    ) -> Optional[CreditTransactionRead]:
        """Find the winner of a lost race on the same idempotency key."""
        if not idempotency_key or not isinstance(error.__cause__, IntegrityError):
            return None
        with self._session("idempotency_lookup") as session:
            prior = self._find_by_idempotency_key(session, user_id, idempotency_key)
        if prior is not None:
            logger.info("Idempotent replay after concurrent write", user_id=user_id, idempotency_key=idempotency_key)
        return prior

    # Reporting
    def list_transactions(self, user_id: str, limit: int) -> List[CreditTransactionRead]:
        with self._session("list_transactions") as session:
            statement = (
                select(CreditTransaction)
                .where(CreditTransaction.user_id == user_id)
                .order_by(CreditTransaction.sequence.desc())
                .limit(limit)
            )
            return [CreditTransactionRead.model_validate(row) for row in session.exec(statement).all()]

    def list_usage_logs(self, user_id: str, since: datetime) -> List[UsageLogRead]:
        with self._session("list_usage_logs") as session:
            statement = (
                select(UsageLog)
                .where(UsageLog.user_id == user_id, UsageLog.created_at >= since)
                .order_by(UsageLog.created_at.desc())
            )
            return [UsageLogRead.model_validate(row) for row in session.exec(statement).all()]

    def summarize_transactions(self, user_id: str) -> Tuple[int, int]:
        with self._session("summarize_transactions") as session:
            statement = select(
                func.count(CreditTransaction.id),
                func.coalesce(func.sum(CreditTransaction.amount), 0),
            ).where(CreditTransaction.user_id == user_id)
            count, total = session.exec(statement).one()
            return int(count), int(total)

    # Catalog
    def find_active_pricing_tier(self, provider: str, operation: str) -> Optional[PricingTierRead]:
        with self._session("find_pricing_tier") as session:
            statement = (
                select(PricingTier)
                .where(
                    PricingTier.provider == provider,
                    PricingTier.operation == operation,
                    PricingTier.is_active == True,  # noqa: E712
                )
                .order_by(PricingTier.updated_at.desc())
                .limit(1)
            )
            tier = session.exec(statement).first()
            return PricingTierRead.model_validate(tier) if tier else None

    def list_pricing_tiers(self, active_only: bool = True) -> List[PricingTierRead]:
        with self._session("list_pricing_tiers") as session:
            statement = select(PricingTier).order_by(PricingTier.provider, PricingTier.operation)
            if active_only:
                statement = statement.where(PricingTier.is_active == True)  # noqa: E712
            return [PricingTierRead.model_validate(row) for row in session.exec(statement).all()]

    def create_pricing_tier(self, tier: PricingTierCreate) -> PricingTierRead:
        with self._session("create_pricing_tier") as session:
            db_tier = PricingTier(**tier.model_dump())
            session.add(db_tier)
            session.flush()
            return PricingTierRead.model_validate(db_tier)

    def update_pricing_tier(self, tier_id: str, changes: PricingTierUpdate) -> Optional[PricingTierRead]:
        identifier = _parse_uuid(tier_id)
        if identifier is None:
            return None
        with self._session("update_pricing_tier") as session:
            db_tier = session.get(PricingTier, identifier)
            if db_tier is None:
                return None
            for field, value in changes.model_dump(exclude_unset=True).items():
                setattr(db_tier, field, value)
            db_tier.updated_at = utcnow()
            session.add(db_tier)
            session.flush()
            return PricingTierRead.model_validate(db_tier)

    def list_credit_packages(self, active_only: bool = True) -> List[CreditPackageRead]:
        with self._session("list_credit_packages") as session:
            statement = select(CreditPackage).order_by(CreditPackage.credits_amount)
            if active_only:
                statement = statement.where(CreditPackage.is_active == True)  # noqa: E712
            return [CreditPackageRead.model_validate(row) for row in session.exec(statement).all()]

    def get_credit_package(self, package_id: str) -> Optional[CreditPackageRead]:
        identifier = _parse_uuid(package_id)
        if identifier is None:
            return None
        with self._session("get_credit_package") as session:
            package = session.get(CreditPackage, identifier)
            return CreditPackageRead.model_validate(package) if package else None

    def create_credit_package(self, package: CreditPackageCreate) -> CreditPackageRead:
        with self._session("create_credit_package") as session:
            db_package = CreditPackage(**package.model_dump())
            session.add(db_package)
            session.flush()
            return CreditPackageRead.model_validate(db_package)

    def health_check(self) -> bool:
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error("SQL ledger health check failed", error=str(e))
            return False
