"""
Configuration management for the managed instance group canary rollout.
"""

from dataclasses import dataclass
from typing import Optional

from models import Location


@dataclass
class RolloutConfig:
    """Configuration for a canary rollout run."""

    project_id: str
    group_name: str
    template_name: str
    region: Optional[str] = None
    zone: Optional[str] = None
    tick_interval: int = 60
    max_ticks: int = 60
    dry_run: bool = False
    verbose: bool = False

    @property
    def location(self) -> Location:
        """Location of the instance group (not validated here)."""
        return Location(region=self.region or "", zone=self.zone or "")

    @classmethod
    def from_args(cls, args) -> "RolloutConfig":
        """
        Create configuration from command-line arguments.

        Args:
            args: Parsed argparse arguments

        Returns:
            RolloutConfig instance
        """
        return cls(
            project_id=args.project,
            group_name=args.instance_group,
            template_name=args.template,
            region=args.region,
            zone=args.zone,
            tick_interval=args.tick_interval,
            max_ticks=args.max_ticks,
            dry_run=args.dry_run,
            verbose=args.verbose,
        )
