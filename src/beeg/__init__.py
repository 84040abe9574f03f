"""beeg: Run diagnostic checks across BeeGFS cluster nodes."""

from .checks import CHECKS, Check, ClientMountCheck, ExecCheck, FallbackCheck, StorageTargetCheck
from .config import Config, ConfigInvalid, Node, load_config
from .executor import Executor, LivePoller, NodeStatus
from .registry import NodeRegistry, resolve_selector
from .results import Outcome, Result, ResultSet, Status
from .transport import LocalTransport, SSHTransport, Transport, transport_from_config

__all__ = [
    "CHECKS",
    "Check",
    "ClientMountCheck",
    "ExecCheck",
    "FallbackCheck",
    "StorageTargetCheck",
    "Config",
    "ConfigInvalid",
    "Node",
    "load_config",
    "Executor",
    "LivePoller",
    "NodeStatus",
    "NodeRegistry",
    "resolve_selector",
    "Outcome",
    "Result",
    "ResultSet",
    "Status",
    "LocalTransport",
    "SSHTransport",
    "Transport",
    "transport_from_config",
]
