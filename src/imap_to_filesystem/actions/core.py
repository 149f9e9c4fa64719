from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ActionType(str, Enum):
    ADD_KEYWORD = "add_keyword"
    MOVE = "move"


@dataclass(frozen=True)
class Action:
    type: ActionType
    uid: int
    filter_name: str
    keyword: Optional[str] = None
    mailbox: Optional[str] = None
    reason: str = ""
