"""Shared FastAPI dependencies."""

from fastapi import Depends

from taskbuddy.config import get_settings
from taskbuddy.database import get_session as _get_session
from taskbuddy.database import get_session_factory
from taskbuddy.events.emitter import EventEmitter, EventSink
from taskbuddy.gamification.approval_service import ApprovalService
from taskbuddy.ledger.store import LedgerStore
from taskbuddy.redis_client import get_redis_or_none
from taskbuddy.rewards.service import RedemptionEngine

get_db = _get_session


def get_event_emitter() -> EventSink:
    """Redis publisher plus notification store, depending on configuration."""
    session_factory = get_session_factory() if get_settings().persist_notifications else None
    return EventEmitter(redis=get_redis_or_none(), session_factory=session_factory)


def get_ledger_store(emitter: EventSink = Depends(get_event_emitter)) -> LedgerStore:
    return LedgerStore(get_session_factory(), emitter=emitter)


def get_approval_service(store: LedgerStore = Depends(get_ledger_store)) -> ApprovalService:
    return ApprovalService(store)


def get_redemption_engine(store: LedgerStore = Depends(get_ledger_store)) -> RedemptionEngine:
    return RedemptionEngine(store)
