"""Diagnostic checks run against a single node."""

from __future__ import annotations

import logging
import re
import secrets
import shlex
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from .config import Node
from .results import Outcome, ResultSet, Status
from .transport import CommandOutput, NonZeroExit, Transport, TransportError

logger = logging.getLogger(__name__)


class ParseFailure(ValueError):
    """Command output did not have the expected shape."""


@dataclass(frozen=True)
class Candidate:
    """One command in a fallback chain and the parser for its output."""

    command: str
    parse: Callable[[str], Any]


async def first_success(
    transport: Transport, node: Node, commands: Sequence[str], timeout: float
) -> tuple[str, CommandOutput] | None:
    """Run commands in order until one exits 0 with output.

    Later commands are never started once one succeeds. Transport errors
    propagate and end the chain.
    """
    for command in commands:
        output = await transport.run(node, command, timeout)
        if output.ok and output.stdout.strip():
            return command, output
        logger.debug(
            "[%s] candidate failed (exit %s): %s", node.name, output.exit_status, command
        )
    return None


def format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "yes" if value else "no"
    return str(value)


class Check(ABC):
    """A diagnostic probe that turns command output into a fact."""

    name: str = ""
    title: str = ""
    columns: tuple[str, ...] = ("Value",)

    @abstractmethod
    async def probe(self, transport: Transport, node: Node, timeout: float) -> Outcome:
        """Probe ``node`` and return the outcome."""

    def cells(self, value: Any) -> tuple[str, ...]:
        """Table cells for a successful fact, one per column."""
        return (format_value(value),)

    def warnings(self, result_set: ResultSet) -> list[str]:
        """Cross-node findings worth pointing out after a batch run."""
        missing = [r.node.name for r in result_set.not_found]
        if not missing:
            return []
        title = self.title or self.name
        return [f"{title} missing on {len(missing)} node(s): {', '.join(missing)}"]


class FallbackCheck(Check):
    """Check driven by an ordered list of candidate commands.

    The first candidate that succeeds supplies the fact. If none do, the
    tool is considered absent and the outcome is ``not_found``.
    """

    def __init__(
        self,
        name: str,
        column: str,
        candidates: Sequence[Candidate],
        versioned: bool = True,
        title: str | None = None,
    ) -> None:
        self.name = name
        self.title = title or column
        self.columns = (column,)
        self.candidates = tuple(candidates)
        self.versioned = versioned

    async def probe(self, transport: Transport, node: Node, timeout: float) -> Outcome:
        by_command = {c.command: c for c in self.candidates}
        found = await first_success(transport, node, list(by_command), timeout)
        if found is None:
            return Outcome.not_found(f"{self.title} not found")

        command, output = found
        try:
            return Outcome.success(by_command[command].parse(output.stdout))
        except ParseFailure as e:
            return Outcome.parse_error(output.stdout, f"{command}: {e}")

    def warnings(self, result_set: ResultSet) -> list[str]:
        found = super().warnings(result_set)
        if not self.versioned:
            return found

        versions: dict[str, list[str]] = defaultdict(list)
        for result in result_set:
            if result.ok:
                versions[str(result.value)].append(result.node.name)
        if len(versions) > 1:
            found.append(f"{self.title} version mismatch across nodes:")
            for version in sorted(versions):
                found.append(f"  {version}: {', '.join(versions[version])}")
        return found


# Parsers

VERSION_FIELD_RE = re.compile(r"^\s*version:\s*(\S+)", re.MULTILINE | re.IGNORECASE)
VERSION_TOKEN_RE = re.compile(r"\d+(?:\.\d+)+")
NVCC_RE = re.compile(r"\bV(\d+(?:\.\d+)+)")
CUDA_VERSION_RE = re.compile(r"CUDA Version:?\s*(\d+(?:\.\d+)+)", re.IGNORECASE)


def parse_version(text: str) -> str:
    """Return the ``version:`` field if present, else the first version token."""
    match = VERSION_FIELD_RE.search(text)
    if match:
        return match.group(1)
    match = VERSION_TOKEN_RE.search(text)
    if match:
        return match.group(0)
    raise ParseFailure("no version number in output")


def parse_cuda_version(text: str) -> str:
    for pattern in (NVCC_RE, CUDA_VERSION_RE):
        match = pattern.search(text)
        if match:
            return match.group(1)
    raise ParseFailure("no CUDA version in output")


def parse_ofed_version(text: str) -> str:
    """``ofed_info -s`` prints e.g. ``MLNX_OFED_LINUX-5.8-1.0.1.1:``."""
    line = text.strip().splitlines()[0].strip().rstrip(":")
    if not re.search(r"\d", line):
        raise ParseFailure("no version number in output")
    return line


def parse_presence(text: str) -> bool:
    return True


NVIDIA_DRIVER = FallbackCheck(
    "nvidia-driver",
    "Driver",
    [
        Candidate(
            "nvidia-smi --query-gpu=driver_version --format=csv,noheader", parse_version
        ),
        Candidate("modinfo -F version nvidia", parse_version),
    ],
    title="NVIDIA driver",
)

CUDA = FallbackCheck(
    "cuda",
    "CUDA",
    [
        Candidate("nvcc --version", parse_cuda_version),
        Candidate("cat /usr/local/cuda/version.txt", parse_cuda_version),
        Candidate("nvidia-smi", parse_cuda_version),
    ],
)

NVIDIA_FS = FallbackCheck(
    "nvidia-fs",
    "nvidia-fs",
    [
        Candidate("modinfo nvidia_fs", parse_presence),
        Candidate("modinfo nvidia-fs", parse_presence),
        Candidate(
            "lsmod | awk '$1 == \"nvidia_fs\" || $1 == \"nvidia-fs\" {print $1}'",
            parse_presence,
        ),
    ],
    versioned=False,
)

OFED = FallbackCheck(
    "ofed",
    "OFED/RDMA",
    [
        Candidate("ofed_info -s", parse_ofed_version),
        Candidate("modinfo -F version mlx5_core", parse_version),
        Candidate("modinfo -F version mlx5_ib", parse_version),
        Candidate("ibv_devinfo --version", parse_version),
    ],
)


# Storage targets

TARGET_LINE_RE = re.compile(r"^\s*(\d+)\b(.*)$")
PAREN_RE = re.compile(r"\(([^)]+)\)")

STORAGE_SERVICE_COMMAND = "systemctl is-active beegfs-storage"
TARGET_LIST_COMMANDS = (
    "beegfs-ctl --listtargets --state --storage",
    "beegfs-ctl --listtargets --storage",
)


@dataclass(frozen=True)
class TargetState:
    target: int
    status: str
    state: str


@dataclass(frozen=True)
class StorageTargetReport:
    service_active: bool
    targets: tuple[TargetState, ...]

    @property
    def missing(self) -> list[int]:
        return [t.target for t in self.targets if t.status == Status.NOT_FOUND.value]


def parse_target_filter(spec: str) -> tuple[int, ...] | None:
    """Parse ``all`` (returns None) or a comma-separated list of target ids."""
    if spec.strip().lower() == "all":
        return None
    ids = []
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        if not part.isdigit():
            raise ValueError(f"Invalid target id: {part!r}")
        ids.append(int(part))
    if not ids:
        raise ValueError("No target ids given")
    return tuple(dict.fromkeys(ids))


def parse_target_listing(text: str) -> dict[int, str]:
    """Map target id to state from ``beegfs-ctl --listtargets`` output.

    With ``--state`` the columns are TargetID, Reachability, Consistency and
    NodeID; the state is reported as ``Reachability/Consistency``. A
    parenthesised state such as ``(Good)`` takes precedence.
    """
    found: dict[int, str] = {}
    for line in text.splitlines():
        match = TARGET_LINE_RE.match(line)
        if not match:
            continue
        rest = match.group(2)
        parens = PAREN_RE.findall(rest)
        words = rest.split()
        if parens:
            state = parens[-1]
        elif len(words) >= 3:
            state = f"{words[0]}/{words[1]}"
        else:
            state = "unknown"
        found[int(match.group(1))] = state

    if not found and "targetid" not in text.lower():
        raise ParseFailure("no target listing in output")
    return found


class StorageTargetCheck(Check):
    """Storage service and target states on one storage node."""

    name = "storage-target"
    title = "beegfs-ctl"
    columns = ("Service", "Targets")

    def __init__(self, targets: tuple[int, ...] | None = None) -> None:
        self.targets = targets

    async def probe(self, transport: Transport, node: Node, timeout: float) -> Outcome:
        service = await transport.run(node, STORAGE_SERVICE_COMMAND, timeout)

        found = await first_success(transport, node, TARGET_LIST_COMMANDS, timeout)
        if found is None:
            return Outcome.not_found("beegfs-ctl not available")
        _, listing = found

        try:
            states = parse_target_listing(listing.stdout)
        except ParseFailure as e:
            return Outcome.parse_error(listing.stdout, str(e))

        wanted = sorted(states) if self.targets is None else self.targets
        targets = tuple(
            TargetState(tid, Status.OK.value, states[tid])
            if tid in states
            else TargetState(tid, Status.NOT_FOUND.value, "missing")
            for tid in wanted
        )
        return Outcome.success(StorageTargetReport(service.ok, targets))

    def cells(self, value: StorageTargetReport) -> tuple[str, ...]:
        targets = ", ".join(
            f"{t.target}={t.state if t.status == Status.OK.value else 'NOT FOUND'}"
            for t in value.targets
        )
        return ("active" if value.service_active else "inactive", targets or "none")

    def warnings(self, result_set: ResultSet) -> list[str]:
        found = super().warnings(result_set)
        for result in result_set:
            if not result.ok:
                continue
            report: StorageTargetReport = result.value
            if report.missing:
                found.append(
                    f"missing targets on {result.node.name}: "
                    + ", ".join(str(t) for t in report.missing)
                )
            by_state: dict[str, list[str]] = defaultdict(list)
            for target in report.targets:
                if target.status == Status.OK.value:
                    by_state[target.state].append(str(target.target))
            if len(by_state) > 1:
                found.append(f"target state mismatch on {result.node.name}:")
                for state in sorted(by_state):
                    found.append(f"  {state}: {', '.join(by_state[state])}")
            if not report.service_active:
                found.append(f"beegfs-storage service is inactive on {result.node.name}")
        return found


# Client mounts

MOUNTS_CONF = "/etc/beegfs/beegfs-mounts.conf"


@dataclass(frozen=True)
class MountHealth:
    defined: bool
    client_active: bool
    df: bool
    listable: bool
    writable: bool
    # sub-probes that could not run, by field name
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def healthy(self) -> bool:
        return all((self.defined, self.client_active, self.df, self.listable, self.writable))


class ClientMountCheck(Check):
    """Health of a client mount point, polled by the live dashboard."""

    name = "client-mount"
    columns = ("Defined", "Client", "df -h", "ls", "rw")

    def __init__(self, mount: str) -> None:
        self.mount = mount.rstrip("/") or "/"

    def commands(self) -> dict[str, str]:
        mount = shlex.quote(self.mount)
        probe_file = shlex.quote(f"{self.mount}/.beeg_check_{secrets.token_hex(4)}")
        return {
            "defined": (
                f"awk -v m={mount} '$1 !~ /^#/ && $1 == m {{found=1}} "
                f"END {{exit !found}}' {MOUNTS_CONF}"
            ),
            "client_active": (
                "systemctl is-active beegfs-client && systemctl is-active beegfs-helperd"
            ),
            "df": f"df -h {mount}",
            "listable": f"ls -la {mount} >/dev/null",
            "writable": (
                f"dd if=/dev/urandom of={probe_file} bs=4K count=1 status=none"
                f" && rm -f {probe_file}"
            ),
        }

    async def probe(self, transport: Transport, node: Node, timeout: float) -> Outcome:
        """Run every sub-probe, recording transport errors per field.

        The node only fails as a whole when no sub-probe could run at all.
        """
        fields: dict[str, bool] = {}
        errors: dict[str, str] = {}
        first_error: TransportError | None = None
        for field_name, command in self.commands().items():
            try:
                output = await transport.run(node, command, timeout)
            except TransportError as e:
                logger.debug("[%s] %s sub-probe failed: %s", node.name, field_name, e)
                first_error = first_error or e
                fields[field_name] = False
                errors[field_name] = str(e)
                continue
            fields[field_name] = output.ok
        if first_error is not None and len(errors) == len(fields):
            raise first_error
        return Outcome.success(MountHealth(**fields, errors=errors))

    def cells(self, value: MountHealth) -> tuple[str, ...]:
        names = ("defined", "client_active", "df", "listable", "writable")
        return tuple(
            f"ERR:{value.errors[name]}"
            if name in value.errors
            else ("OK" if getattr(value, name) else "ERR")
            for name in names
        )

    def warnings(self, result_set: ResultSet) -> list[str]:
        found = super().warnings(result_set)
        unhealthy = [r.node.name for r in result_set if r.ok and not r.value.healthy]
        if unhealthy:
            found.append(f"mount {self.mount} unhealthy on: {', '.join(unhealthy)}")
        return found


class ExecCheck(Check):
    """Runs an arbitrary read-only command and reports its output."""

    name = "exec"
    columns = ("Output",)

    def __init__(self, command: str) -> None:
        self.command = command

    async def probe(self, transport: Transport, node: Node, timeout: float) -> Outcome:
        output = await transport.run(node, self.command, timeout)
        try:
            output.check_returncode()
        except NonZeroExit as e:
            return Outcome(Status.COMMAND_FAILED, detail=str(e), raw_output=output.stdout)
        return Outcome.success(output.stdout.rstrip("\n"))

    def warnings(self, result_set: ResultSet) -> list[str]:
        return []


CHECKS: dict[str, Check] = {
    check.name: check for check in (NVIDIA_DRIVER, CUDA, NVIDIA_FS, OFED)
}
