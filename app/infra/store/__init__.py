"""Shared state store adapters for the routing engine."""

from app.infra.store.base import ChatStore, ClaimOutcome, CompletionOutcome
from app.infra.store.memory import InMemoryChatStore

__all__ = ["ChatStore", "ClaimOutcome", "CompletionOutcome", "InMemoryChatStore"]
