from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import pandas as pd

from crm_assistant.core.entity_matcher import id_key
from crm_assistant.core.snapshot_loader import CurrentUser
from crm_assistant.core.time_windows import local_now

USER = "user"
ASSISTANT = "assistant"

# Kinds of grounded entities
PROPOSAL = "proposal"
CLINIC = "clinic"
USER_ENTITY = "user"
CAMPAIGN = "campaign"


@dataclass
class TableData:
    headers: List[str]
    rows: List[List[str]]
    title: Optional[str] = None


@dataclass
class Message:
    sender: str
    text: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: str = field(default_factory=lambda: pd.Timestamp.now(tz="UTC").isoformat())
    data_type: str = "text"
    table_data: Optional[TableData] = None


@dataclass(frozen=True)
class GroundedReference:
    """
    Entities the last grounded answer showed, e.g. the proposal ids of a
    listing or the single clinic of a detail view.
    """
    kind: str
    ids: Tuple[str, ...]

    @classmethod
    def single(cls, kind: str, entity_id) -> "GroundedReference":
        return cls(kind=kind, ids=(id_key(entity_id),))

    @classmethod
    def many(cls, kind: str, entity_ids) -> "GroundedReference":
        return cls(kind=kind, ids=tuple(id_key(i) for i in entity_ids))

    def refers_to(self, kind: str, entity_id) -> bool:
        return self.kind == kind and id_key(entity_id) in self.ids


@dataclass
class Resolution:
    """Output of a resolver: a grounding text block for the model prompt."""
    retrieved: bool
    context: str
    grounded: Optional[GroundedReference] = None
    resolver: str = ""


@dataclass
class ConversationState:
    """
    Per-conversation state: the append-only message log, the caller and the
    entities the last grounded answer referred to.
    """
    current_user: Optional[CurrentUser] = None
    messages: List[Message] = field(default_factory=list)
    last_grounded: Optional[GroundedReference] = None
    clock: Callable[[], pd.Timestamp] = local_now

    def now(self) -> pd.Timestamp:
        return self.clock()

    def append(self, message: Message) -> Message:
        self.messages.append(message)
        return message

    def refers_to(self, kind: str, entity_id) -> bool:
        return self.last_grounded is not None and self.last_grounded.refers_to(kind, entity_id)
