"""State management modules."""

from moai.state.documents import DocumentChange, DocumentStore
from moai.state.manager import StateManager
from moai.state.streams import ChangeBroker, ChangeEvent, ChangeKind, ChangeStream

__all__ = [
    "StateManager",
    "DocumentStore",
    "DocumentChange",
    "ChangeBroker",
    "ChangeEvent",
    "ChangeKind",
    "ChangeStream",
]
