"""relay.execution

Turning approved decisions into venue orders.
"""

from __future__ import annotations

from relay.execution.base import ExecutionReport, Executor, Instrument, VenueApi, VenuePosition
from relay.execution.factory import create_executor
from relay.execution.paper import PaperVenueApi, SimulatorExecutor
from relay.execution.reconcile import OrderPlan, PlannedOrder, PositionSnapshot, Target, plan_orders
from relay.execution.venue import VenueExecutor

__all__ = [
    "ExecutionReport",
    "Executor",
    "Instrument",
    "OrderPlan",
    "PaperVenueApi",
    "PlannedOrder",
    "PositionSnapshot",
    "SimulatorExecutor",
    "Target",
    "VenueApi",
    "VenueExecutor",
    "VenuePosition",
    "create_executor",
    "plan_orders",
]
