"""Per-row outcomes and the batch result they fold into."""

from dataclasses import asdict, dataclass, field
from typing import Awaitable, Iterable, Union


@dataclass(frozen=True)
class Ok:
    entity_id: str


@dataclass(frozen=True)
class Err:
    entity_id: str
    error: str


Outcome = Union[Ok, Err]


async def attempt(entity_id: str, op: Awaitable) -> Outcome:
    """Await one write and capture its failure as a value."""
    try:
        await op
    except Exception as e:
        return Err(entity_id, f"{type(e).__name__}: {e}")
    return Ok(entity_id)


@dataclass
class SyncResult:
    success: bool = True
    processed: int = 0
    errors: int = 0
    duration_ms: int = 0
    error_details: list[str] = field(default_factory=list)
    skipped: bool = False

    @classmethod
    def fold(cls, outcomes: Iterable[Outcome], duration_ms: int = 0) -> "SyncResult":
        result = cls(duration_ms=duration_ms)
        for outcome in outcomes:
            result.add(outcome)
        return result

    @classmethod
    def failure(cls, message: str, duration_ms: int = 0) -> "SyncResult":
        """A job that could not make any progress at all."""
        return cls(success=False, processed=0, errors=1, duration_ms=duration_ms, error_details=[message])

    @classmethod
    def busy(cls) -> "SyncResult":
        return cls(success=False, skipped=True, error_details=["Sync already in progress"])

    def add(self, outcome: Outcome) -> None:
        if isinstance(outcome, Ok):
            self.processed += 1
        else:
            self.errors += 1
            self.error_details.append(f"{outcome.entity_id}: {outcome.error}")
            self.success = False

    def add_error(self, entity_id: str, error: str) -> None:
        self.add(Err(entity_id, error))

    def merge(self, other: "SyncResult") -> None:
        self.processed += other.processed
        self.errors += other.errors
        self.error_details.extend(other.error_details)
        self.success = self.success and other.success

    def to_dict(self) -> dict:
        return asdict(self)
