"""Write-once variable store shared by the stages of one run."""

import threading
from collections.abc import Iterator, Mapping
from typing import Optional

from eksdeploy.errors import VariableConflictError


class RunContext(Mapping[str, str]):
    """Mapping of resolved variables. Values are recorded once and never replaced."""

    def __init__(self, initial: Optional[Mapping[str, str]] = None) -> None:
        self._values: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def record(self, name: str, value: str) -> bool:
        """Insert *name* if absent. Returns True when the value was new."""
        with self._lock:
            existing = self._values.get(name)
            if existing is None:
                self._values[name] = value
                return True
            if existing != value:
                raise VariableConflictError(
                    f"Variable {name} is already set to '{existing}', refusing '{value}'"
                )
            return False

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._values)

    def __getitem__(self, name: str) -> str:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._values)
