"""
Canary rollout of an instance template to a managed instance group.

Each loop iteration doubles the canary slice (1, 2, 4, ...), waits for the
group to become stable, and checks the backend service health of the canary
instances. Once the canary would cover the whole group, the group is collapsed
to a single version running the new template and the rollout is done.

Nothing here rolls back an applied step; a failed gate leaves the group as it
is for an operator to inspect.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from clients import ComputeRestClient
from compute_api import ComputeAPI
from errors import (
    AmbiguousPrimaryError,
    MissingPrimaryError,
    RolloutCancelledError,
    StabilityTimeoutError,
    UnhealthyCanaryError,
)
from models import (
    CANARY_VERSION_NAME,
    ClusterSnapshot,
    FixedOrPercent,
    FleetVersion,
    GroupPatch,
    HealthRecord,
    Location,
    ManagedInstance,
    RolloutResult,
    RolloutTarget,
    ScaleStep,
    UpdatePolicy,
)

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL = 60
DEFAULT_MAX_TICKS = 60


def plan_scale(cluster: ClusterSnapshot) -> Tuple[GroupPatch, int, int]:
    """
    Compute the next canary step for a cluster.

    Args:
        cluster: Current cluster snapshot

    Returns:
        Tuple of (patch, old_canary_size, new_canary_size)

    Raises:
        AmbiguousPrimaryError: If two or more non-canary versions exist
        MissingPrimaryError: If no non-canary version exists
    """
    group = cluster.group
    target_link = cluster.template.self_link

    primary: Optional[FleetVersion] = None
    old_canary_size = 0

    for version in group.versions:
        if version.template == target_link:
            if version.fixed_size > 0:
                old_canary_size = version.fixed_size
                logger.info(
                    f"Found existing canary deployment with {old_canary_size} instances"
                )
            continue

        if version.name == CANARY_VERSION_NAME:
            logger.warning(
                f"Ignoring stale canary version running {version.template}; "
                f"it will be replaced by {target_link}"
            )
            continue

        if primary is not None:
            raise AmbiguousPrimaryError(
                f"found two non-canary templates: '{primary.template}' and "
                f"'{version.template}', cannot determine primary template"
            )
        primary = version

    if primary is None:
        raise MissingPrimaryError("could not find primary (non-canary) template")

    new_canary_size = 1 if old_canary_size == 0 else old_canary_size * 2

    if new_canary_size >= group.target_size:
        new_canary_size = group.target_size
        versions: Tuple[FleetVersion, ...] = (FleetVersion(name="", template=target_link),)
    else:
        versions = (
            FleetVersion(name="", template=primary.template),
            FleetVersion(
                name=CANARY_VERSION_NAME,
                template=target_link,
                target_size=FixedOrPercent(fixed=new_canary_size),
            ),
        )

    # Regional groups reject a fixed maxSurge between 0 and the zone count
    max_surge = max(new_canary_size - old_canary_size, group.zone_count, 0)

    patch = GroupPatch(
        versions=versions,
        update_policy=UpdatePolicy(max_surge=max_surge, max_unavailable=0),
    )
    return patch, old_canary_size, new_canary_size


def find_unhealthy_canary(
    health: HealthRecord, instances: List[ManagedInstance], template_link: str
) -> Optional[str]:
    """Return the first canary instance the backend reports unhealthy, if any."""
    unhealthy = {instance for instance, bad in health.items() if bad}
    for inst in instances:
        if inst.template == template_link and inst.instance in unhealthy:
            return inst.instance
    return None


def is_done(cluster: ClusterSnapshot) -> bool:
    """True once the group runs the target template as its only version."""
    versions = cluster.group.versions
    return len(versions) == 1 and versions[0].template == cluster.template.self_link


class RolloutOrchestrator:
    """Drives a canary rollout of one instance template to one instance group."""

    def __init__(
        self,
        project_id: str,
        location: Location,
        group_name: str,
        template_name: str,
        api: Optional[ComputeAPI] = None,
        sleep_func: Optional[Callable[[float], None]] = None,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        max_ticks: int = DEFAULT_MAX_TICKS,
        dry_run: bool = False,
    ):
        """
        Initialize the rollout orchestrator.

        Args:
            project_id: GCP project ID
            location: Region or zone of the instance group
            group_name: Managed instance group name
            template_name: Instance template to roll out
            api: Compute API implementation (defaults to ComputeRestClient)
            sleep_func: Called with seconds between stability ticks; when None,
                the orchestrator waits on the run's cancel event
            tick_interval: Seconds between stability checks
            max_ticks: Stability checks before giving up
            dry_run: If True, only log the first patch without applying it

        Raises:
            LocationError: If location is invalid
            APIError: If the default client cannot be initialized
        """
        location.validate()
        self.target = RolloutTarget(
            project_id=project_id,
            location=location,
            group_name=group_name,
            template_name=template_name,
        )
        self.sleep_func = sleep_func
        self.tick_interval = tick_interval
        self.max_ticks = max_ticks
        self.dry_run = dry_run

        if api is None:
            api = ComputeRestClient(project_id=project_id)
        self.api = api

        self.steps: List[ScaleStep] = []
        self.run_start_time: Optional[float] = None
        self.run_end_time: Optional[float] = None

    @staticmethod
    def _check_cancelled(cancel_event: threading.Event) -> None:
        if cancel_event.is_set():
            raise RolloutCancelledError("rollout cancelled")

    def _sleep(self, seconds: float, cancel_event: threading.Event) -> None:
        if self.sleep_func is not None:
            self.sleep_func(seconds)
        else:
            cancel_event.wait(seconds)
        self._check_cancelled(cancel_event)

    def start(self, cancel_event: Optional[threading.Event] = None) -> RolloutResult:
        """
        Run the rollout until the group runs only the target template.

        Args:
            cancel_event: Set it to abort the run at the next API call or sleep

        Returns:
            RolloutResult describing the run

        Raises:
            RolloutError: Any failure; the run is aborted without rollback
        """
        if cancel_event is None:
            cancel_event = threading.Event()

        t = self.target
        self.run_start_time = time.time()
        self.steps = []

        logger.info("=" * 70)
        logger.info("Managed Instance Group Canary Rollout")
        logger.info("=" * 70)
        logger.info(f"Project: {t.project_id}")
        logger.info(f"Location: {t.location}")
        logger.info(f"Instance group: {t.group_name}")
        logger.info(f"Template: {t.template_name}")
        logger.info(f"Dry run: {self.dry_run}")
        logger.info(f"Tick interval: {self.tick_interval}s")
        logger.info(f"Max ticks: {self.max_ticks}")
        logger.info(f"Start time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        logger.info("=" * 70)

        result = RolloutResult(
            group_name=t.group_name,
            template_name=t.template_name,
            status="completed",
            start_time=self.run_start_time,
        )
        failed = True
        try:
            self._run(result, cancel_event)
            failed = False
        finally:
            self.run_end_time = time.time()
            result.end_time = self.run_end_time
            result.duration_seconds = self.run_end_time - self.run_start_time
            result.steps = list(self.steps)
            self._print_report(result, failed)

        return result

    def _run(self, result: RolloutResult, cancel_event: threading.Event) -> None:
        logger.info(
            f"Starting rollout of template '{self.target.template_name}' "
            f"to managed instance group '{self.target.group_name}'"
        )
        cluster = self._get_info(cancel_event)

        if is_done(cluster):
            logger.info("Instance group already runs only the target template")
            result.status = "already_complete"
            return

        if self.dry_run:
            patch, old_size, new_size = plan_scale(cluster)
            logger.info(
                f"DRY RUN: Would patch canary from {old_size} to {new_size} instances "
                f"(maxSurge={patch.update_policy.max_surge}, "
                f"maxUnavailable={patch.update_policy.max_unavailable})"
            )
            for version in patch.versions:
                logger.info(
                    f"DRY RUN:   version name='{version.name}' "
                    f"template={version.template} size={version.fixed_size or 'remainder'}"
                )
            result.status = "dry_run"
            return

        iteration = 0
        while True:
            logger.info(f"Beginning rollout loop iteration #{iteration}")

            self._scale(cluster, iteration, cancel_event)
            cluster = self._wait_until_stable(cluster, cancel_event)
            self._check_backend_health(cluster, cancel_event)

            if is_done(cluster):
                break
            iteration += 1

        result.iterations = iteration + 1
        logger.info("Rollout complete")

    def _get_info(self, cancel_event: threading.Event) -> ClusterSnapshot:
        t = self.target

        self._check_cancelled(cancel_event)
        group = self.api.get_group(
            t.project_id, t.location, t.group_name, cancel_event=cancel_event
        )
        self._check_cancelled(cancel_event)
        template = self.api.get_template(
            t.project_id, t.template_name, cancel_event=cancel_event
        )
        self._check_cancelled(cancel_event)
        backend = self.api.find_backend_for_group(
            t.project_id, group, cancel_event=cancel_event
        )
        logger.info(f"Found backend service '{backend.name}' for {t.group_name}")

        return ClusterSnapshot(group=group, template=template, backend=backend)

    def _scale(
        self, cluster: ClusterSnapshot, iteration: int, cancel_event: threading.Event
    ) -> ScaleStep:
        t = self.target
        patch, old_size, new_size = plan_scale(cluster)

        logger.info(
            f"Patching managed instance group with canary target of {new_size} instances "
            f"(maxSurge={patch.update_policy.max_surge})"
        )

        self._check_cancelled(cancel_event)
        self.api.patch_group(
            t.project_id,
            t.location,
            t.group_name,
            list(patch.versions),
            patch.update_policy,
            cancel_event=cancel_event,
        )

        step = ScaleStep(
            iteration=iteration,
            old_canary_size=old_size,
            new_canary_size=new_size,
            max_surge=patch.update_policy.max_surge,
            collapsed=len(patch.versions) == 1,
            applied_at=time.time(),
        )
        self.steps.append(step)
        return step

    def _wait_until_stable(
        self, cluster: ClusterSnapshot, cancel_event: threading.Event
    ) -> ClusterSnapshot:
        t = self.target
        logger.info("Waiting for instance group to become stable...")

        for tick in range(self.max_ticks):
            self._check_cancelled(cancel_event)
            group = self.api.get_group(
                t.project_id, t.location, t.group_name, cancel_event=cancel_event
            )

            if group.settled:
                logger.info(f"✓ Instance group is stable after {tick} tick(s)")
                return cluster.refreshed(group)

            logger.info(
                f"  {t.group_name}: isStable={group.is_stable}, "
                f"versionTargetReached={group.version_target_reached} "
                f"(tick {tick + 1}/{self.max_ticks}), sleeping {self.tick_interval}s"
            )
            self._sleep(self.tick_interval, cancel_event)

        raise StabilityTimeoutError(self.max_ticks)

    def _check_backend_health(
        self, cluster: ClusterSnapshot, cancel_event: threading.Event
    ) -> None:
        t = self.target
        logger.info(f"Checking health of backend service '{cluster.backend.name}'")

        self._check_cancelled(cancel_event)
        health = self.api.get_backend_health(
            t.project_id, cluster.backend, cluster.group, cancel_event=cancel_event
        )
        logger.info(f"Found {sum(health.values())} unhealthy instance(s)")

        self._check_cancelled(cancel_event)
        instances = self.api.list_group_instances(
            t.project_id, t.location, t.group_name, cancel_event=cancel_event
        )

        bad = find_unhealthy_canary(health, instances, cluster.template.self_link)
        if bad is not None:
            raise UnhealthyCanaryError(bad)

    def _format_duration(self, seconds: float) -> str:
        """Format duration in human-readable format."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        elif seconds < 3600:
            mins = int(seconds // 60)
            secs = seconds % 60
            return f"{mins}m {secs:.0f}s"
        else:
            hours = int(seconds // 3600)
            mins = int((seconds % 3600) // 60)
            secs = seconds % 60
            return f"{hours}h {mins}m {secs:.0f}s"

    def _print_report(self, result: RolloutResult, failed: bool) -> None:
        """Log timing and per-step summary of the run."""
        logger.info("")
        logger.info("=" * 70)
        logger.info("ROLLOUT REPORT")
        logger.info("=" * 70)
        logger.info(f"Outcome:         {'FAILED' if failed else result.status}")
        logger.info(
            f"Start time:      {datetime.fromtimestamp(self.run_start_time).strftime('%Y-%m-%d %H:%M:%S')}"
        )
        logger.info(
            f"End time:        {datetime.fromtimestamp(self.run_end_time).strftime('%Y-%m-%d %H:%M:%S')}"
        )
        logger.info(
            f"Total duration:  {self._format_duration(self.run_end_time - self.run_start_time)}"
        )

        if self.steps:
            logger.info("")
            logger.info("SCALE STEPS")
            logger.info("-" * 40)
            logger.info(f"{'Iteration':<10} {'Canary':<16} {'Max surge':<10} {'Collapsed'}")
            logger.info("-" * 70)
            for s in self.steps:
                sizes = f"{s.old_canary_size} -> {s.new_canary_size}"
                logger.info(
                    f"{s.iteration:<10} {sizes:<16} {s.max_surge:<10} {'Yes' if s.collapsed else 'No'}"
                )

        logger.info("=" * 70)
