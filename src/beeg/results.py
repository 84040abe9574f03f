"""Check outcomes and per-node results."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, is_dataclass
from enum import Enum
from typing import Any, Iterator

from .config import Node


class Status(Enum):
    """Classification of a node's check result."""

    OK = "ok"
    NOT_FOUND = "not_found"
    CONNECTION_FAILED = "connection_failed"
    TIMEOUT = "timeout"
    COMMAND_FAILED = "command_failed"
    PARSE_ERROR = "parse_error"
    ERROR = "error"

    @property
    def is_error(self) -> bool:
        """True for failures; ``not_found`` is a negative answer, not an error."""
        return self not in (Status.OK, Status.NOT_FOUND)

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").upper()


@dataclass(frozen=True)
class Outcome:
    """What a check concluded about one node, before timing is attached."""

    status: Status
    value: Any = None
    detail: str = ""
    raw_output: str | None = None

    @classmethod
    def success(cls, value: Any) -> Outcome:
        return cls(Status.OK, value=value)

    @classmethod
    def not_found(cls, detail: str = "not found") -> Outcome:
        return cls(Status.NOT_FOUND, detail=detail)

    @classmethod
    def parse_error(cls, raw_output: str, detail: str = "unrecognized output") -> Outcome:
        return cls(Status.PARSE_ERROR, detail=detail, raw_output=raw_output)

    @classmethod
    def failure(cls, status: Status, detail: str) -> Outcome:
        return cls(status, detail=detail)


@dataclass(frozen=True)
class Result:
    """Final result for one node, built once by the executor."""

    node: Node
    status: Status
    value: Any = None
    detail: str = ""
    raw_output: str | None = None
    duration: float = 0.0

    @classmethod
    def from_outcome(cls, node: Node, outcome: Outcome, duration: float) -> Result:
        return cls(
            node=node,
            status=outcome.status,
            value=outcome.value,
            detail=outcome.detail,
            raw_output=outcome.raw_output,
            duration=duration,
        )

    @property
    def ok(self) -> bool:
        return self.status is Status.OK

    def to_dict(self) -> dict[str, Any]:
        """Serialize with stable field names."""
        data: dict[str, Any] = {
            "node": self.node.name,
            "host": self.node.host,
            "status": self.status.value,
            "duration": round(self.duration, 3),
        }
        if self.status is Status.OK:
            data["value"] = asdict(self.value) if is_dataclass(self.value) else self.value
        elif self.status is Status.NOT_FOUND:
            data["detail"] = self.detail
        else:
            data["error"] = self.detail
            if self.raw_output is not None:
                data["raw_output"] = self.raw_output
        return data


@dataclass
class ResultSet:
    """Results of one check run, in node registry order."""

    check: str
    results: list[Result] = field(default_factory=list)

    def __iter__(self) -> Iterator[Result]:
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)

    @property
    def errors(self) -> list[Result]:
        return [r for r in self.results if r.status.is_error]

    @property
    def not_found(self) -> list[Result]:
        return [r for r in self.results if r.status is Status.NOT_FOUND]

    def to_list(self) -> list[dict[str, Any]]:
        return [r.to_dict() for r in self.results]


def exit_code(result_set: ResultSet, policy: str = "always-zero") -> int:
    """Process exit status for a finished run.

    ``always-zero`` reports success whatever the nodes returned; ``strict``
    returns 1 when any node result is an error.
    """
    if policy == "strict" and result_set.errors:
        return 1
    return 0
