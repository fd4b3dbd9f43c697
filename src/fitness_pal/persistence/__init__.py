"""Durable storage for Fitness Pal conversations."""

from .reconciler import PersistenceReconciler
from .repository import (
    ConversationRepository,
    InMemoryConversationRepository,
    JsonFileConversationRepository,
    RestConversationRepository,
)

__all__ = [
    "ConversationRepository",
    "InMemoryConversationRepository",
    "JsonFileConversationRepository",
    "PersistenceReconciler",
    "RestConversationRepository",
]
