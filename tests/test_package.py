"""Tests for package-level functionality."""

import visual_traceroute


class TestPackage:
    """Test package-level functionality."""

    def test_version_exists(self):
        """Test that version attribute exists."""
        assert hasattr(visual_traceroute, "__version__")
        assert isinstance(visual_traceroute.__version__, str)

    def test_imports(self):
        """Test that main functions can be imported."""
        from visual_traceroute import load_config

        assert callable(load_config)

    def test_all_exports(self):
        """Test that all expected names are exported."""
        expected_exports = [
            "load_config",
            "is_private_ip",
            "geolocate_ip",
            "geolocate_ips",
            "resolve_hostname",
            "simulate_traceroute",
            "trace_target",
            "select_due_schedules",
            "format_log_records",
            "run_scheduled_traceroutes",
            "ScheduleStore",
            "TracerouteApp",
        ]

        for name in expected_exports:
            assert hasattr(visual_traceroute, name), f"Missing export: {name}"
