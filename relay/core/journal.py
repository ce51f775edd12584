"""relay.core.journal

The journal: append-only newline-delimited JSON.

One record per line, one writer per process. There is no update and no delete;
corrections are new records. Replay and audit read these files back verbatim.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Generic, TypeVar

from pydantic import BaseModel, ValidationError

from relay.core.config import PathsConfig
from relay.core.exceptions import JournalError
from relay.core.models import Decision, SignalRecord

T = TypeVar("T", bound=BaseModel)


class JsonlLog(Generic[T]):
    """Append-only NDJSON store of one pydantic record type."""

    def __init__(self, path: Path, model: type[T]) -> None:
        self.path = Path(path)
        self.model = model

    def _ensure_parent(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, record: T) -> None:
        self.append_many([record])

    def append_many(self, records: Iterable[T]) -> int:
        lines = [r.model_dump_json() for r in records]
        if not lines:
            return 0
        self._ensure_parent()
        try:
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write("\n".join(lines) + "\n")
        except OSError as e:
            raise JournalError(f"cannot append to {self.path}: {e}") from e
        return len(lines)

    def read_all(self) -> list[T]:
        if not self.path.exists():
            return []
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise JournalError(f"cannot read {self.path}: {e}") from e

        out: list[T] = []
        for lineno, line in enumerate(text.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                out.append(self.model.model_validate_json(line))
            except ValidationError as e:
                raise JournalError(f"{self.path}:{lineno}: invalid {self.model.__name__} record: {e}") from e
        return out

    def __len__(self) -> int:
        return len(self.read_all())


class SignalLog(JsonlLog[SignalRecord]):
    def __init__(self, path: Path) -> None:
        super().__init__(path, SignalRecord)

    @classmethod
    def from_paths(cls, paths: PathsConfig) -> SignalLog:
        return cls(paths.signal_log_path())


class DecisionLog(JsonlLog[Decision]):
    def __init__(self, path: Path) -> None:
        super().__init__(path, Decision)

    @classmethod
    def from_paths(cls, paths: PathsConfig) -> DecisionLog:
        return cls(paths.decision_log_path())

    def ids(self) -> set[str]:
        return {d.id for d in self.read_all()}
