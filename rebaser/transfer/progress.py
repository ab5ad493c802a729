"""Progress inference from archive tool output."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence


@dataclass(frozen=True)
class ProgressUpdate:
    """A coarse progress estimate for a job."""
    progress: int
    message: str


@dataclass(frozen=True)
class Milestone:
    """A marker in tool output and the progress it implies."""
    marker: str
    progress: int
    message: str


EXPORT_MILESTONES = (
    Milestone("Extracting schema", 20, "Extracting database schema"),
    Milestone("Extracting data", 40, "Extracting database data"),
)

IMPORT_MILESTONES = (
    Milestone("Importing", 80, "Importing data to SQL Server"),
)


class ProgressStrategy(ABC):
    """
    Turns partial tool output into progress estimates.

    Implementations see stdout in arbitrary chunks and may return None
    when a chunk tells them nothing new.
    """

    @abstractmethod
    def feed(self, chunk: str) -> Optional[ProgressUpdate]:
        """
        Consume a chunk of output.

        Args:
            chunk: Text read from the tool's stdout

        Returns:
            A new estimate, or None
        """
        pass

    def reset(self) -> None:
        """Forget any accumulated state."""
        pass


class MilestoneProgress(ProgressStrategy):
    """
    Matches an ordered list of milestones against the output stream.

    Only a bounded tail of the output is kept, enough to match a marker
    split across two chunks. Reported progress only ever increases.
    """

    def __init__(self, milestones: Sequence[Milestone]):
        self.milestones: List[Milestone] = sorted(milestones, key=lambda m: m.progress)
        self._tail_size = max((len(m.marker) for m in self.milestones), default=1) - 1
        self.reset()

    def reset(self) -> None:
        self._buffer = ""
        self._reached = -1
        self._progress = 0

    @property
    def progress(self) -> int:
        return self._progress

    def feed(self, chunk: str) -> Optional[ProgressUpdate]:
        if not chunk:
            return None

        text = self._buffer + chunk
        self._buffer = text[-self._tail_size:] if self._tail_size > 0 else ""

        best = None
        for index in range(self._reached + 1, len(self.milestones)):
            if self.milestones[index].marker in text:
                best = index

        if best is None:
            return None

        milestone = self.milestones[best]
        self._reached = best
        if milestone.progress <= self._progress:
            return None
        self._progress = milestone.progress
        return ProgressUpdate(progress=milestone.progress, message=milestone.message)


def export_progress() -> MilestoneProgress:
    return MilestoneProgress(EXPORT_MILESTONES)


def import_progress() -> MilestoneProgress:
    return MilestoneProgress(IMPORT_MILESTONES)
