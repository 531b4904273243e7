"""Value types returned by the services"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from app.services.issue import Issue


@dataclass(frozen=True)
class RequestResult:
    """Outcome of a webhook decision: an HTTP-like status and a message for the caller"""

    status_code: int
    message: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass(frozen=True)
class Repository:
    """A remote project and, if found, the id of the webhook we registered on it.

    ``error`` holds the status code of a failed hook listing for this repository.
    """

    full_name: str
    display_name: str
    hook_id: Optional[str] = None
    error: Optional[int] = None


@dataclass(frozen=True)
class IssuePage:
    """One page of a bulk import.

    ``cursor`` is where the next call should start; ``total_estimate`` is a
    best-effort guess of the collection size, not a count.
    """

    issues: List["Issue"] = field(default_factory=list)
    cursor: int = 0
    total_estimate: int = 0
    is_last_page: bool = True
