from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


class SanctionStatus(str, enum.Enum):
    PROPOSED = "proposed"
    EXPIRED = "expired"
    ENACTED = "enacted"


class VoteChoice(str, enum.Enum):
    AGREE = "agree"
    DISAGREE = "disagree"


@dataclass(frozen=True)
class UserRef:
    name: str
    id: Optional[int] = None
    edit_count: int = 0
    registered_at: Optional[datetime] = None
    blocked: bool = False

    @property
    def name_lower(self) -> str:
        return self.name.lower()


@dataclass
class Vote:
    voter: UserRef
    choice: VoteChoice
    cast_at: datetime
    period: Optional[int] = None  # days, Agree votes only


@dataclass
class Sanction:
    id: str  # canonical SanctionId text
    target: UserRef
    proposed_at: datetime
    voting_deadline: datetime
    status: SanctionStatus = SanctionStatus.PROPOSED
    votes: List[Vote] = field(default_factory=list)
    row_id: Optional[int] = None


@dataclass(frozen=True)
class Tally:
    agree: int = 0
    disagree: int = 0


@dataclass
class TopicPost:
    post_id: str
    author: UserRef
    timestamp: datetime
    content: str  # wikitext


@dataclass
class NotificationEvent:
    type: str
    agent: Optional[UserRef]
    extra: Dict = field(default_factory=dict)


@dataclass
class PageView:
    """What the platform is about to render, and what we ask it to add."""
    title: Optional[str]
    request: Dict[str, str] = field(default_factory=dict)
    modules: List[str] = field(default_factory=list)
    redirect_to: Optional[str] = None

    def add_modules(self, *names: str) -> None:
        for name in names:
            if name not in self.modules:
                self.modules.append(name)

    def redirect(self, url: str) -> None:
        self.redirect_to = url


class _NotASanction:
    """Returned by the resolver for topics that are not sanctions."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_A_SANCTION"


NOT_A_SANCTION = _NotASanction()


@dataclass(frozen=True)
class Revision:
    id: int
    user: UserRef
