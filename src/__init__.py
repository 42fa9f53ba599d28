"""
Managed Instance Group Canary Rollout Tool.
"""

from clients import ComputeRestClient
from compute_api import ComputeAPI
from config import RolloutConfig
from log_utils import setup_logging
from models import ClusterSnapshot, FleetSnapshot, FleetVersion, Location
from rollout import RolloutOrchestrator, is_done, plan_scale

__all__ = [
    "ComputeRestClient",
    "ComputeAPI",
    "RolloutConfig",
    "setup_logging",
    "ClusterSnapshot",
    "FleetSnapshot",
    "FleetVersion",
    "Location",
    "RolloutOrchestrator",
    "is_done",
    "plan_scale",
]
