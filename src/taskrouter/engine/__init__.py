"""Capacity-aware assignment: workload state, balancer and engine facade."""

from taskrouter.engine.balancer import WorkloadBalancer, pool_suitability
from taskrouter.engine.routing_engine import RoutedTask, RoutingEngine
from taskrouter.engine.workload import CapacityLedger, WorkloadSnapshot, WorkloadState

__all__ = [
    "CapacityLedger",
    "RoutedTask",
    "RoutingEngine",
    "WorkloadBalancer",
    "WorkloadSnapshot",
    "WorkloadState",
    "pool_suitability",
]
