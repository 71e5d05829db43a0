"""Test cluster nodes for integration tests.

A node is declared through its NodeSpec, frozen, then started, stopped,
restarted or upgraded in place to the next declared distribution.
"""

from testclusters.errors import (
    TestClustersError,
    ConfigurationFrozen,
    IllegalOverride,
    NoActiveProcess,
    NoMoreVersions,
    ReadinessTimeout,
)
from testclusters.node import (
    ElasticsearchNode,
    NodeState,
)
from testclusters.readiness import (
    HttpWaiter,
    ReadinessGate,
)
from testclusters.reaper import (
    PidFileReaper,
    reap,
)
from testclusters.spec import (
    ExtractedDistribution,
    NodeSpec,
    TestDistribution,
)
from testclusters.version import Version

__all__ = [
    # Errors
    "TestClustersError",
    "ConfigurationFrozen",
    "IllegalOverride",
    "NoActiveProcess",
    "NoMoreVersions",
    "ReadinessTimeout",
    # Node
    "ElasticsearchNode",
    "NodeState",
    # Readiness
    "HttpWaiter",
    "ReadinessGate",
    # Reaper
    "PidFileReaper",
    "reap",
    # Spec
    "ExtractedDistribution",
    "NodeSpec",
    "TestDistribution",
    "Version",
]
