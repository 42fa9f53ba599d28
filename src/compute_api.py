"""
Capability interface the rollout orchestrator uses to observe and mutate a
managed instance group.

Implementations must validate the Location before doing any I/O, page through
list results themselves, and raise only errors from the errors module
(LocationError, NotFoundError, APIError, RolloutCancelledError).
"""

import threading
from abc import ABC, abstractmethod
from typing import List, Optional

from models import (
    BackendRef,
    FleetSnapshot,
    FleetVersion,
    HealthRecord,
    Location,
    ManagedInstance,
    TemplateRef,
    UpdatePolicy,
)


class ComputeAPI(ABC):
    """Fleet control-plane operations needed for a canary rollout."""

    @abstractmethod
    def get_group(
        self,
        project_id: str,
        location: Location,
        name: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> FleetSnapshot:
        """Fetch the current state of a managed instance group."""

    @abstractmethod
    def list_group_instances(
        self,
        project_id: str,
        location: Location,
        name: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[ManagedInstance]:
        """List every instance of the group, across all result pages."""

    @abstractmethod
    def patch_group(
        self,
        project_id: str,
        location: Location,
        name: str,
        versions: List[FleetVersion],
        update_policy: UpdatePolicy,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Replace the group's versions and update policy."""

    @abstractmethod
    def get_template(
        self,
        project_id: str,
        name: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> TemplateRef:
        """Resolve an instance template by name."""

    @abstractmethod
    def find_backend_for_group(
        self,
        project_id: str,
        group: FleetSnapshot,
        cancel_event: Optional[threading.Event] = None,
    ) -> BackendRef:
        """Find the backend service that has the group as one of its backends."""

    @abstractmethod
    def get_backend_health(
        self,
        project_id: str,
        backend: BackendRef,
        group: FleetSnapshot,
        cancel_event: Optional[threading.Event] = None,
    ) -> HealthRecord:
        """Return per-instance health of the group as seen by the backend service."""
