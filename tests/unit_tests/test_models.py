"""
Unit tests for data models.
"""

import unittest
from dataclasses import FrozenInstanceError

from errors import LocationError
from models import (
    BackendRef,
    ClusterSnapshot,
    FixedOrPercent,
    FleetSnapshot,
    FleetVersion,
    Location,
    TemplateRef,
)


class TestLocation(unittest.TestCase):
    """Test Location data model."""

    def test_region_scope(self):
        location = Location.from_region("europe-west2")
        self.assertTrue(location.is_regional)
        self.assertEqual(location.scope_path(), "regions/europe-west2")
        self.assertEqual(str(location), "europe-west2")

    def test_zone_scope(self):
        location = Location.from_zone("europe-west2-a")
        self.assertFalse(location.is_regional)
        self.assertEqual(location.scope_path(), "zones/europe-west2-a")

    def test_both_set_is_invalid(self):
        """Test region and zone together are rejected."""
        location = Location(region="europe-west2", zone="europe-west2-a")
        with self.assertRaises(LocationError):
            location.validate()
        with self.assertRaises(LocationError):
            location.scope_path()

    def test_neither_set_is_invalid(self):
        """Test an empty location is rejected."""
        with self.assertRaises(LocationError):
            Location().validate()

    def test_location_error_is_value_error(self):
        with self.assertRaises(ValueError):
            Location().validate()


class TestFleetVersion(unittest.TestCase):
    """Test FleetVersion data model."""

    def test_fixed_size(self):
        version = FleetVersion(
            name="canary", template="tmpl", target_size=FixedOrPercent(fixed=4)
        )
        self.assertEqual(version.fixed_size, 4)

    def test_unsized_and_percent_versions_have_no_fixed_size(self):
        self.assertEqual(FleetVersion(name="", template="tmpl").fixed_size, 0)
        percent = FleetVersion(
            name="", template="tmpl", target_size=FixedOrPercent(percent=50)
        )
        self.assertEqual(percent.fixed_size, 0)


class TestClusterSnapshot(unittest.TestCase):
    """Test ClusterSnapshot data model."""

    def setUp(self):
        self.group = FleetSnapshot(
            name="web",
            self_link="projects/p/regions/r/instanceGroupManagers/web",
            instance_group="projects/p/regions/r/instanceGroups/web",
            versions=(FleetVersion(name="", template="tmpl-v1"),),
            target_size=3,
            zones=("r-a", "r-b"),
        )
        self.cluster = ClusterSnapshot(
            group=self.group,
            template=TemplateRef(name="tmpl-v2", self_link="tmpl-v2"),
            backend=BackendRef(name="web-backend", self_link=""),
        )

    def test_refreshed_replaces_only_group(self):
        """Test refreshing yields a new snapshot and leaves the old one intact."""
        newer = FleetSnapshot(
            name="web",
            self_link=self.group.self_link,
            instance_group=self.group.instance_group,
            versions=(FleetVersion(name="", template="tmpl-v2"),),
            target_size=3,
            is_stable=True,
            version_target_reached=True,
        )

        refreshed = self.cluster.refreshed(newer)

        self.assertIs(refreshed.group, newer)
        self.assertIs(refreshed.template, self.cluster.template)
        self.assertIs(refreshed.backend, self.cluster.backend)
        self.assertIs(self.cluster.group, self.group)
        self.assertTrue(newer.settled)
        self.assertFalse(self.group.settled)

    def test_snapshots_are_immutable(self):
        with self.assertRaises(FrozenInstanceError):
            self.group.target_size = 5

    def test_zone_count(self):
        self.assertEqual(self.group.zone_count, 2)
        self.assertFalse(self.cluster.backend.is_regional)


if __name__ == "__main__":
    unittest.main()
