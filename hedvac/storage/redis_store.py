"""Redis document ledger store.

Each account, event and record is stored as a Redis hash or JSON document.
Read-check-write sequences run under WATCH/MULTI, so a concurrent change to
any watched key aborts the transaction and it is retried from the read.

Key layout (``p`` is the configured prefix):
    p:account:{identity}          hash   account fields
    p:balance:{identity}          hash   asset -> smallest units
    p:history:{identity}          zset   ledger record JSON scored by record id
    p:processed                   hash   transfer id -> marker JSON
    p:settings                    hash   bot settings (resume cursor)
    p:rain:{event_no}             hash   rain event
    p:rain:index                  zset   event_no scored by id
    p:rain:creator:{identity}     zset   event_no scored by id
    p:loot:{event_no}             hash   loot event
    p:loot:{event_no}:claims      hash   user id -> claim JSON
    p:loot:index                  zset   event_no scored by id
    p:loot:active                 zset   event_no scored by expiry epoch
    p:reconciliation              hash   record id -> record JSON
    p:seq:{name}                  string id counters
"""

import json
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, TypeVar

import redis.asyncio as redis
from redis.exceptions import WatchError

from hedvac.core.exceptions import (
    DuplicateTransferError,
    HedvacError,
    InsufficientFundsError,
    LootClaimError,
)
from hedvac.models import (
    RESUME_CURSOR_KEY,
    Account,
    LedgerTransaction,
    LootClaim,
    LootEvent,
    LootType,
    PromotionStatus,
    RainEvent,
    ReconciliationKind,
    ReconciliationRecord,
    TransactionReason,
)
from hedvac.storage.base import LedgerStore
from hedvac.utils.helpers import parse_consensus_timestamp, to_epoch, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

NO_EXPIRY_SCORE = float("inf")


def _iso(dt: datetime | None) -> str:
    return dt.isoformat() if dt else ""


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _record_to_json(record: LedgerTransaction) -> str:
    return json.dumps(
        {
            "id": record.id,
            "tx_id": record.tx_id,
            "identity": record.identity,
            "asset": record.asset,
            "amount": record.amount,
            "balance_after": record.balance_after,
            "reason": record.reason.value,
            "details": record.details,
            "created_at": _iso(record.created_at),
        },
        sort_keys=True,
    )


def _record_from_json(raw: str) -> LedgerTransaction:
    data = json.loads(raw)
    return LedgerTransaction(
        id=data["id"],
        tx_id=data["tx_id"],
        identity=data["identity"],
        asset=data["asset"],
        amount=int(data["amount"]),
        balance_after=int(data["balance_after"]),
        reason=TransactionReason(data["reason"]),
        details=data.get("details") or {},
        created_at=_dt(data["created_at"]),
    )


def _account_from_hash(data: dict[str, str]) -> Account:
    return Account(
        identity=data["identity"],
        hedera_account_id=data.get("hedera_account_id") or None,
        created_at=_dt(data.get("created_at")),
        updated_at=_dt(data.get("updated_at")),
    )


def _rain_to_hash(event: RainEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "event_no": event.event_no,
        "creator_id": event.creator_id,
        "asset": event.asset,
        "amount": event.amount,
        "distributed_amount": event.distributed_amount,
        "recipient_count": event.recipient_count,
        "refunded_amount": event.refunded_amount,
        "duration_minutes": event.duration_minutes,
        "min_role": event.min_role or "",
        "message": event.message or "",
        "status": event.status.value,
        "created_at": _iso(event.created_at),
    }


def _rain_from_hash(data: dict[str, str]) -> RainEvent:
    return RainEvent(
        id=int(data["id"]),
        event_no=data["event_no"],
        creator_id=data["creator_id"],
        asset=data["asset"],
        amount=int(data["amount"]),
        distributed_amount=int(data["distributed_amount"]),
        recipient_count=int(data["recipient_count"]),
        refunded_amount=int(data["refunded_amount"]),
        duration_minutes=int(data["duration_minutes"]),
        min_role=data.get("min_role") or None,
        message=data.get("message") or None,
        status=PromotionStatus(data["status"]),
        created_at=_dt(data["created_at"]),
    )


def _loot_to_hash(event: LootEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "event_no": event.event_no,
        "creator_id": event.creator_id,
        "asset": event.asset,
        "total_amount": event.total_amount,
        "claimed_amount": event.claimed_amount,
        "claim_count": event.claim_count,
        "max_claims": event.max_claims,
        "loot_type": event.loot_type.value,
        "message": event.message or "",
        "min_role": event.min_role or "",
        "channel_id": event.channel_id or "",
        "refunded_amount": event.refunded_amount,
        "status": event.status.value,
        "created_at": _iso(event.created_at),
        "expires_at": _iso(event.expires_at),
    }


def _loot_from_hash(data: dict[str, str]) -> LootEvent:
    return LootEvent(
        id=int(data["id"]),
        event_no=data["event_no"],
        creator_id=data["creator_id"],
        asset=data["asset"],
        total_amount=int(data["total_amount"]),
        claimed_amount=int(data["claimed_amount"]),
        claim_count=int(data["claim_count"]),
        max_claims=int(data["max_claims"]),
        loot_type=LootType(data["loot_type"]),
        message=data.get("message") or None,
        min_role=data.get("min_role") or None,
        channel_id=data.get("channel_id") or None,
        refunded_amount=int(data["refunded_amount"]),
        status=PromotionStatus(data["status"]),
        created_at=_dt(data["created_at"]),
        expires_at=_dt(data.get("expires_at")),
    )


def _claim_to_json(claim: LootClaim) -> str:
    return json.dumps(
        {
            "id": claim.id,
            "event_no": claim.event_no,
            "user_id": claim.user_id,
            "amount": claim.amount,
            "claimed_at": _iso(claim.claimed_at),
        }
    )


def _claim_from_json(raw: str) -> LootClaim:
    data = json.loads(raw)
    return LootClaim(
        id=data["id"],
        event_no=data["event_no"],
        user_id=data["user_id"],
        amount=int(data["amount"]),
        claimed_at=_dt(data["claimed_at"]),
    )


def _reconciliation_to_json(record: ReconciliationRecord) -> str:
    return json.dumps(
        {
            "id": record.id,
            "kind": record.kind.value,
            "identity": record.identity,
            "asset": record.asset,
            "amount": record.amount,
            "details": record.details,
            "resolved": record.resolved,
            "created_at": _iso(record.created_at),
            "resolved_at": _iso(record.resolved_at),
        }
    )


def _reconciliation_from_json(raw: str) -> ReconciliationRecord:
    data = json.loads(raw)
    return ReconciliationRecord(
        id=data["id"],
        kind=ReconciliationKind(data["kind"]),
        identity=data["identity"],
        asset=data["asset"],
        amount=int(data["amount"]),
        details=data.get("details") or {},
        resolved=bool(data["resolved"]),
        created_at=_dt(data["created_at"]),
        resolved_at=_dt(data.get("resolved_at")),
    )


class RedisLedgerStore(LedgerStore):
    """LedgerStore backed by Redis hashes and sorted sets.

    The client must be created with ``decode_responses=True``.
    """

    MAX_WATCH_RETRIES = 100

    def __init__(self, client: redis.Redis, prefix: str = "hedvac"):
        self.redis = client
        self.prefix = prefix

    @property
    def backend(self) -> str:
        return "redis"

    def _key(self, *parts: str) -> str:
        return ":".join((self.prefix, *parts))

    async def initialize(self) -> None:
        await self.redis.ping()
        logger.info(f"Redis ledger store initialized (prefix={self.prefix})")

    async def close(self) -> None:
        await self.redis.aclose()

    async def _transact(
        self, keys: list[str], body: Callable[[Any], Awaitable[T]]
    ) -> T:
        """Run ``body`` under WATCH on ``keys``, retrying on conflict.

        ``body`` reads with the pipeline in immediate mode, then calls
        ``pipe.multi()`` and queues its writes.
        """
        for attempt in range(self.MAX_WATCH_RETRIES):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(*keys)
                    result = await body(pipe)
                    await pipe.execute()
                    return result
                except WatchError:
                    logger.debug(f"Watched keys changed, retrying ({attempt + 1}): {keys}")
        raise HedvacError("Ledger store is too busy, try again", {"keys": keys})

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _queue_account_touch(
        self, pipe: Any, identity: str, exists: bool, now: datetime
    ) -> None:
        account_key = self._key("account", identity)
        if exists:
            pipe.hset(account_key, "updated_at", _iso(now))
        else:
            pipe.hset(
                account_key,
                mapping={"identity": identity, "created_at": _iso(now), "updated_at": _iso(now)},
            )

    def _queue_record(
        self,
        pipe: Any,
        record_id: int,
        identity: str,
        asset: str,
        amount: int,
        balance_after: int,
        reason: TransactionReason,
        details: dict[str, Any] | None,
        now: datetime,
    ) -> LedgerTransaction:
        record = LedgerTransaction(
            id=record_id,
            identity=identity,
            asset=asset,
            amount=amount,
            balance_after=balance_after,
            reason=reason,
            details=details or {},
            created_at=now,
        )
        pipe.hincrby(self._key("balance", identity), asset, amount)
        pipe.zadd(self._key("history", identity), {_record_to_json(record): record_id})
        return record

    # =========================================================================
    # Accounts
    # =========================================================================

    async def get_account(self, identity: str) -> Account | None:
        data = await self.redis.hgetall(self._key("account", identity))
        return _account_from_hash(data) if data else None

    async def upsert_account(
        self, identity: str, hedera_account_id: str | None = None
    ) -> Account:
        account_key = self._key("account", identity)

        async def body(pipe: Any) -> Account:
            now = utcnow()
            data = await pipe.hgetall(account_key)
            if not data:
                data = {"identity": identity, "created_at": _iso(now), "updated_at": _iso(now)}
            if hedera_account_id is not None:
                data["hedera_account_id"] = hedera_account_id
                data["updated_at"] = _iso(now)
            pipe.multi()
            pipe.hset(account_key, mapping=data)
            return _account_from_hash(data)

        return await self._transact([account_key], body)

    async def get_balance(self, identity: str, asset: str) -> int:
        value = await self.redis.hget(self._key("balance", identity), asset)
        return int(value or 0)

    async def get_balances(self, identity: str) -> dict[str, int]:
        data = await self.redis.hgetall(self._key("balance", identity))
        return {asset: int(value) for asset, value in sorted(data.items()) if int(value) > 0}

    # =========================================================================
    # Balance Mutations
    # =========================================================================

    async def apply_credit(
        self,
        identity: str,
        asset: str,
        amount: int,
        reason: TransactionReason,
        details: dict[str, Any] | None = None,
    ) -> LedgerTransaction:
        account_key = self._key("account", identity)
        balance_key = self._key("balance", identity)

        async def body(pipe: Any) -> LedgerTransaction:
            exists = await pipe.exists(account_key)
            current = int(await pipe.hget(balance_key, asset) or 0)
            record_id = await pipe.incr(self._key("seq", "ledger"))
            now = utcnow()
            pipe.multi()
            self._queue_account_touch(pipe, identity, bool(exists), now)
            return self._queue_record(
                pipe, record_id, identity, asset, amount, current + amount, reason, details, now
            )

        return await self._transact([account_key, balance_key], body)

    async def apply_debit(
        self,
        identity: str,
        asset: str,
        amount: int,
        reason: TransactionReason,
        details: dict[str, Any] | None = None,
    ) -> LedgerTransaction:
        account_key = self._key("account", identity)
        balance_key = self._key("balance", identity)

        async def body(pipe: Any) -> LedgerTransaction:
            current = int(await pipe.hget(balance_key, asset) or 0)
            if current < amount:
                raise InsufficientFundsError(asset, amount, current)
            exists = await pipe.exists(account_key)
            record_id = await pipe.incr(self._key("seq", "ledger"))
            now = utcnow()
            pipe.multi()
            self._queue_account_touch(pipe, identity, bool(exists), now)
            return self._queue_record(
                pipe, record_id, identity, asset, -amount, current - amount, reason, details, now
            )

        return await self._transact([account_key, balance_key], body)

    async def apply_deposit(
        self,
        identity: str,
        transfer_id: str,
        consensus_timestamp: str | None,
        legs: list[tuple[str, int]],
    ) -> list[LedgerTransaction]:
        account_key = self._key("account", identity)
        balance_key = self._key("balance", identity)
        processed_key = self._key("processed")

        async def body(pipe: Any) -> list[LedgerTransaction]:
            if await pipe.hexists(processed_key, transfer_id):
                raise DuplicateTransferError(transfer_id)
            exists = await pipe.exists(account_key)
            balances: dict[str, int] = {}
            for asset, _ in legs:
                if asset not in balances:
                    balances[asset] = int(await pipe.hget(balance_key, asset) or 0)
            record_ids = [await pipe.incr(self._key("seq", "ledger")) for _ in legs]
            now = utcnow()

            pipe.multi()
            self._queue_account_touch(pipe, identity, bool(exists), now)
            records = []
            for record_id, (asset, amount) in zip(record_ids, legs, strict=True):
                balances[asset] += amount
                details = {"transfer_id": transfer_id, "consensus_timestamp": consensus_timestamp}
                records.append(
                    self._queue_record(
                        pipe,
                        record_id,
                        identity,
                        asset,
                        amount,
                        balances[asset],
                        TransactionReason.DEPOSIT,
                        details,
                        now,
                    )
                )
            marker = {
                "consensus_timestamp": consensus_timestamp,
                "identity": identity,
                "processed_at": _iso(now),
            }
            pipe.hset(processed_key, transfer_id, json.dumps(marker))
            return records

        return await self._transact([account_key, balance_key, processed_key], body)

    async def get_history(self, identity: str, limit: int = 50) -> list[LedgerTransaction]:
        raw = await self.redis.zrevrange(self._key("history", identity), 0, limit - 1)
        return [_record_from_json(item) for item in raw]

    # =========================================================================
    # Deposit Tracking
    # =========================================================================

    async def is_transfer_processed(self, transfer_id: str) -> bool:
        return bool(await self.redis.hexists(self._key("processed"), transfer_id))

    async def get_cursor(self) -> str | None:
        return await self.redis.hget(self._key("settings"), RESUME_CURSOR_KEY) or None

    async def advance_cursor(self, timestamp: str) -> bool:
        settings_key = self._key("settings")

        async def body(pipe: Any) -> bool:
            current = await pipe.hget(settings_key, RESUME_CURSOR_KEY)
            if current and parse_consensus_timestamp(current) >= parse_consensus_timestamp(
                timestamp
            ):
                await pipe.unwatch()
                return False
            pipe.multi()
            pipe.hset(settings_key, RESUME_CURSOR_KEY, timestamp)
            return True

        return await self._transact([settings_key], body)

    async def set_cursor(self, timestamp: str | None) -> None:
        if timestamp is None:
            await self.redis.hdel(self._key("settings"), RESUME_CURSOR_KEY)
        else:
            await self.redis.hset(self._key("settings"), RESUME_CURSOR_KEY, timestamp)

    # =========================================================================
    # Rain
    # =========================================================================

    async def save_rain_event(self, event: RainEvent) -> RainEvent:
        event.id = await self.redis.incr(self._key("seq", "rain"))
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(self._key("rain", event.event_no), mapping=_rain_to_hash(event))
            pipe.zadd(self._key("rain", "index"), {event.event_no: event.id})
            pipe.zadd(self._key("rain", "creator", event.creator_id), {event.event_no: event.id})
            await pipe.execute()
        return event

    async def list_rain_events(
        self, creator_id: str | None = None, limit: int = 20
    ) -> list[RainEvent]:
        index_key = (
            self._key("rain", "creator", creator_id) if creator_id else self._key("rain", "index")
        )
        event_nos = await self.redis.zrevrange(index_key, 0, limit - 1)
        events = []
        for event_no in event_nos:
            data = await self.redis.hgetall(self._key("rain", event_no))
            if data:
                events.append(_rain_from_hash(data))
        return events

    # =========================================================================
    # Loot
    # =========================================================================

    async def create_loot_event(self, event: LootEvent) -> LootEvent:
        event.id = await self.redis.incr(self._key("seq", "loot"))
        expiry_score = to_epoch(event.expires_at) if event.expires_at else NO_EXPIRY_SCORE
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(self._key("loot", event.event_no), mapping=_loot_to_hash(event))
            pipe.zadd(self._key("loot", "index"), {event.event_no: event.id})
            if event.status == PromotionStatus.ACTIVE:
                pipe.zadd(self._key("loot", "active"), {event.event_no: expiry_score})
            await pipe.execute()
        return event

    async def get_loot_event(self, event_no: str) -> LootEvent | None:
        data = await self.redis.hgetall(self._key("loot", event_no))
        return _loot_from_hash(data) if data else None

    async def list_loot_events(
        self, status: PromotionStatus | None = None, limit: int = 50
    ) -> list[LootEvent]:
        if status == PromotionStatus.ACTIVE:
            event_nos = await self.redis.zrange(self._key("loot", "active"), 0, -1)
        else:
            event_nos = await self.redis.zrevrange(self._key("loot", "index"), 0, -1)

        events = []
        for event_no in event_nos:
            event = await self.get_loot_event(event_no)
            if event and (status is None or event.status == status):
                events.append(event)
        events.sort(key=lambda e: e.id, reverse=True)
        return events[:limit]

    async def list_expired_loot_events(self, now: datetime) -> list[LootEvent]:
        event_nos = await self.redis.zrangebyscore(
            self._key("loot", "active"), "-inf", to_epoch(now)
        )
        events = []
        for event_no in event_nos:
            event = await self.get_loot_event(event_no)
            if event and event.status == PromotionStatus.ACTIVE and event.is_expired(now):
                events.append(event)
        return events

    async def claim_loot(
        self, event_no: str, user_id: str, now: datetime
    ) -> tuple[LootClaim, LootEvent]:
        loot_key = self._key("loot", event_no)
        claims_key = self._key("loot", event_no, "claims")

        async def body(pipe: Any) -> tuple[LootClaim, LootEvent]:
            data = await pipe.hgetall(loot_key)
            if not data:
                raise LootClaimError(event_no, LootClaimError.NOT_FOUND)
            event = _loot_from_hash(data)
            if event.status != PromotionStatus.ACTIVE:
                raise LootClaimError(event_no, LootClaimError.NOT_ACTIVE)
            if event.is_expired(now):
                raise LootClaimError(event_no, LootClaimError.EXPIRED)
            if event.claim_count >= event.max_claims:
                raise LootClaimError(event_no, LootClaimError.FULL)
            if await pipe.hexists(claims_key, user_id):
                raise LootClaimError(event_no, LootClaimError.ALREADY_CLAIMED)

            claim = LootClaim(
                id=await pipe.incr(self._key("seq", "loot_claim")),
                event_no=event_no,
                user_id=user_id,
                amount=event.amount_per_claim,
                claimed_at=now,
            )
            event.claim_count += 1
            event.claimed_amount += claim.amount
            if event.claim_count >= event.max_claims:
                event.status = PromotionStatus.COMPLETED
                event.refunded_amount = event.total_amount - event.claimed_amount

            pipe.multi()
            pipe.hset(claims_key, user_id, _claim_to_json(claim))
            pipe.hset(loot_key, mapping=_loot_to_hash(event))
            if event.status != PromotionStatus.ACTIVE:
                pipe.zrem(self._key("loot", "active"), event_no)
            return claim, event

        return await self._transact([loot_key, claims_key], body)

    async def expire_loot_event(self, event_no: str, now: datetime) -> LootEvent | None:
        loot_key = self._key("loot", event_no)

        async def body(pipe: Any) -> LootEvent | None:
            data = await pipe.hgetall(loot_key)
            event = _loot_from_hash(data) if data else None
            if event is None or event.status != PromotionStatus.ACTIVE or not event.is_expired(now):
                await pipe.unwatch()
                return None
            event.status = PromotionStatus.EXPIRED
            event.refunded_amount = event.total_amount - event.claimed_amount
            pipe.multi()
            pipe.hset(loot_key, mapping=_loot_to_hash(event))
            pipe.zrem(self._key("loot", "active"), event_no)
            return event

        return await self._transact([loot_key], body)

    async def complete_loot_event(self, event_no: str) -> bool:
        loot_key = self._key("loot", event_no)

        async def body(pipe: Any) -> bool:
            status = await pipe.hget(loot_key, "status")
            if status != PromotionStatus.EXPIRED.value:
                await pipe.unwatch()
                return False
            pipe.multi()
            pipe.hset(loot_key, "status", PromotionStatus.COMPLETED.value)
            return True

        return await self._transact([loot_key], body)

    async def list_loot_claims(self, event_no: str) -> list[LootClaim]:
        raw = await self.redis.hvals(self._key("loot", event_no, "claims"))
        return sorted((_claim_from_json(item) for item in raw), key=lambda c: c.id)

    # =========================================================================
    # Reconciliation
    # =========================================================================

    async def add_reconciliation(self, record: ReconciliationRecord) -> ReconciliationRecord:
        record.id = await self.redis.incr(self._key("seq", "reconciliation"))
        await self.redis.hset(
            self._key("reconciliation"), str(record.id), _reconciliation_to_json(record)
        )
        return record

    async def list_reconciliation(
        self, resolved: bool | None = False, limit: int = 100
    ) -> list[ReconciliationRecord]:
        raw = await self.redis.hvals(self._key("reconciliation"))
        records = [_reconciliation_from_json(item) for item in raw]
        if resolved is not None:
            records = [r for r in records if r.resolved == resolved]
        records.sort(key=lambda r: r.id, reverse=True)
        return records[:limit]

    async def resolve_reconciliation(self, record_id: int) -> ReconciliationRecord | None:
        key = self._key("reconciliation")

        async def body(pipe: Any) -> ReconciliationRecord | None:
            raw = await pipe.hget(key, str(record_id))
            if raw is None:
                await pipe.unwatch()
                return None
            record = _reconciliation_from_json(raw)
            if record.resolved:
                await pipe.unwatch()
                return record
            record.resolved = True
            record.resolved_at = utcnow()
            pipe.multi()
            pipe.hset(key, str(record_id), _reconciliation_to_json(record))
            return record

        return await self._transact([key], body)
