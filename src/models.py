"""
Data models for the managed instance group canary rollout.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from errors import LocationError

CANARY_VERSION_NAME = "canary"

# instance URL -> True when the backend service reports it UNHEALTHY
HealthRecord = Dict[str, bool]


@dataclass(frozen=True)
class Location:
    """Region or zone of a managed instance group; exactly one is set."""

    region: str = ""
    zone: str = ""

    @classmethod
    def from_region(cls, region: str) -> "Location":
        return cls(region=region)

    @classmethod
    def from_zone(cls, zone: str) -> "Location":
        return cls(zone=zone)

    def validate(self) -> None:
        """
        Check that exactly one of region and zone is set.

        Raises:
            LocationError: If both or neither are set
        """
        if self.region and self.zone:
            raise LocationError(
                f"must specify either region or zone, not both "
                f"(region={self.region}, zone={self.zone})"
            )
        if not self.region and not self.zone:
            raise LocationError("must specify either region or zone")

    @property
    def is_regional(self) -> bool:
        return bool(self.region)

    def scope_path(self) -> str:
        """Return the API scope segment, e.g. 'regions/us-east1'."""
        self.validate()
        if self.region:
            return f"regions/{self.region}"
        return f"zones/{self.zone}"

    def __str__(self) -> str:
        return self.region or self.zone or "<unset>"


@dataclass(frozen=True)
class RolloutTarget:
    """What a single run rolls out, and where."""

    project_id: str
    location: Location
    group_name: str
    template_name: str


@dataclass(frozen=True)
class FixedOrPercent:
    """Instance count expressed as a fixed number or a percentage of the group."""

    fixed: Optional[int] = None
    percent: Optional[int] = None


@dataclass(frozen=True)
class FleetVersion:
    """One weighted slice of an instance group's versions."""

    name: str  # "" for the primary slice, "canary" for the canary slice
    template: str  # instance template self link
    target_size: Optional[FixedOrPercent] = None

    @property
    def fixed_size(self) -> int:
        if self.target_size is None or self.target_size.fixed is None:
            return 0
        return self.target_size.fixed


@dataclass(frozen=True)
class FleetSnapshot:
    """Point-in-time state of a managed instance group."""

    name: str
    self_link: str
    instance_group: str  # URL of the underlying instance group
    versions: Tuple[FleetVersion, ...]
    target_size: int
    zones: Tuple[str, ...] = ()
    is_stable: bool = False
    version_target_reached: bool = False

    @property
    def zone_count(self) -> int:
        return len(self.zones)

    @property
    def settled(self) -> bool:
        return self.is_stable and self.version_target_reached


@dataclass(frozen=True)
class ManagedInstance:
    """An instance of the group and the template it currently runs."""

    instance: str  # instance URL
    template: str  # instance template self link


@dataclass(frozen=True)
class TemplateRef:
    """Resolved instance template."""

    name: str
    self_link: str


@dataclass(frozen=True)
class BackendRef:
    """Backend service fronting the instance group."""

    name: str
    self_link: str
    region: Optional[str] = None  # None for global backend services

    @property
    def is_regional(self) -> bool:
        return bool(self.region)


@dataclass(frozen=True)
class ClusterSnapshot:
    """State handed from one rollout loop iteration to the next."""

    group: FleetSnapshot
    template: TemplateRef
    backend: BackendRef

    def refreshed(self, group: FleetSnapshot) -> "ClusterSnapshot":
        return replace(self, group=group)


@dataclass(frozen=True)
class UpdatePolicy:
    """Rolling update policy sent with a group patch."""

    max_surge: int
    max_unavailable: int = 0
    type: str = "PROACTIVE"


@dataclass(frozen=True)
class GroupPatch:
    """Partial update of an instance group's versions and update policy."""

    versions: Tuple[FleetVersion, ...]
    update_policy: UpdatePolicy


@dataclass
class ScaleStep:
    """Outcome of one scale() call."""

    iteration: int
    old_canary_size: int
    new_canary_size: int
    max_surge: int
    collapsed: bool  # True when the whole group now runs the target template
    applied_at: Optional[float] = None


@dataclass
class RolloutResult:
    """Result of a rollout run."""

    group_name: str
    template_name: str
    status: str  # "completed", "already_complete", "dry_run"
    iterations: int = 0
    steps: List[ScaleStep] = field(default_factory=list)
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    duration_seconds: Optional[float] = None
