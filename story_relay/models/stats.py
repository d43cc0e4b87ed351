"""
Tallies for a single relay pass.
"""

from dataclasses import dataclass, field

from .domain import RequestState


@dataclass
class RelayResult:
    """Counts produced by the relay pipeline for one request."""

    catalog_size: int = 0
    downloaded: int = 0
    attempted: int = 0
    archived: int = 0
    relayed: int = 0

    @property
    def partial(self) -> bool:
        return self.relayed < self.catalog_size

    @property
    def failed(self) -> int:
        return self.catalog_size - self.relayed


@dataclass
class RequestSummary:
    """What happened to one user request, end to end."""

    state: RequestState
    result: RelayResult = field(default_factory=RelayResult)
    reason: str = ""


@dataclass
class RequestProgress:
    """How far a request got; still readable after a deadline cancels it."""

    relaying: bool = False
    result: RelayResult = field(default_factory=RelayResult)
