"""Tests for the service entry points and the command line."""

import json
from datetime import timedelta
from unittest import mock

import pytest
from apscheduler.triggers.interval import IntervalTrigger

from visual_traceroute.logs import LogIngestClient, LogIngestError
from visual_traceroute.state import MemoryStateStore, StateStoreError
from visual_traceroute.visual_traceroute import (
    SWEEP_JOB_ID,
    TracerouteApp,
    create_sweep_scheduler,
    main,
)

from helpers import FakeResponse

S1 = {"id": "s1", "name": "Google DNS", "target": "8.8.8.8", "intervalMinutes": 5, "enabled": True}


class BrokenStateStore(MemoryStateStore):
    def get(self, key):
        raise StateStoreError("state service returned status 503", 503, "unavailable")

    def set(self, key, value, expected_version=None):
        raise StateStoreError("state service returned status 503", 503, "unavailable")


class RejectingLogClient(LogIngestClient):
    def submit(self, records):
        raise LogIngestError("Log ingest returned status 400: bad", 400)


class TestSchedules:
    """Test schedule management entry points."""

    def test_save_run_round_trip(self, app, log_client):
        """Test saving a schedule, listing it and forcing a run."""
        assert app.save_schedule({"schedule": S1})["success"] is True

        listed = app.get_schedules()
        assert listed["success"] is True
        assert listed["schedules"] == [S1]

        out = app.run_scheduled_traceroutes({"scheduleId": "s1", "forceRun": True})

        assert out["success"] is True
        assert out["schedulesRun"] == 1
        assert out["results"][0]["success"] is True
        assert 8 <= out["results"][0]["hops"] <= 20
        assert len(log_client.records) == out["results"][0]["recordsIngested"]
        assert "lastRun" in app.get_schedules()["schedules"][0]

    def test_sweep_with_empty_payload(self, app):
        """Test that a sweep needs no payload."""
        out = app.run_scheduled_traceroutes()
        assert out == {"success": True, "schedulesChecked": 0, "schedulesRun": 0, "results": []}

    @pytest.mark.parametrize(
        "payload",
        [
            None,
            {},
            {"schedule": {"name": "no id", "target": "x", "intervalMinutes": 5}},
            {"schedule": {**S1, "intervalMinutes": 0}},
            {"schedule": {**S1, "id": ""}},
            {"schedule": "s1"},
        ],
    )
    def test_save_invalid(self, app, payload):
        """Test that invalid schedule data is rejected without a write."""
        assert app.save_schedule(payload) == {"success": False, "error": "Invalid schedule data"}
        assert app.get_schedules()["schedules"] == []

    def test_save_storage_failure(self, config):
        """Test that storage errors come back with diagnostics."""
        app = TracerouteApp(config, state=BrokenStateStore())

        out = app.save_schedule({"schedule": S1})

        assert out["success"] is False
        assert out["error"].startswith("Failed to save to storage")
        assert out["errorDetails"]["statusCode"] == 503
        assert out["errorDetails"]["body"] == "unavailable"

    def test_get_schedules_failure(self, config):
        """Test that a failed read is reported, not raised."""
        out = TracerouteApp(config, state=BrokenStateStore()).get_schedules()
        assert out["success"] is False
        assert out["schedules"] == []

    def test_delete(self, app):
        """Test deleting a schedule."""
        app.save_schedule({"schedule": S1})
        assert app.delete_schedule({"scheduleId": "s1"}) == {"success": True}
        assert app.get_schedules()["schedules"] == []

    @pytest.mark.parametrize(
        "payload, error",
        [
            ({}, "Schedule ID is required"),
            ({"scheduleId": ""}, "Schedule ID is required"),
            ({"scheduleId": "zzz"}, "Schedule not found"),
        ],
    )
    def test_delete_errors(self, app, payload, error):
        """Test delete failures."""
        assert app.delete_schedule(payload) == {"success": False, "error": error}

    def test_run_unknown_schedule(self, app):
        """Test that a targeted run of a missing schedule fails cleanly."""
        out = app.run_scheduled_traceroutes({"scheduleId": "nope"})
        assert out == {"success": False, "error": "Schedule not found: nope"}

    def test_run_disabled_schedule(self, app):
        """Test that a disabled schedule needs forceRun."""
        app.save_schedule({"schedule": {**S1, "enabled": False}})

        out = app.run_scheduled_traceroutes({"scheduleId": "s1"})

        assert out["success"] is False
        assert "disabled" in out["error"]

    def test_unknown_fields_are_kept(self, app):
        """Test that extra schedule fields round-trip."""
        app.save_schedule({"schedule": {**S1, "workflowId": "wf-9", "owner": "netops"}})
        stored = app.get_schedules()["schedules"][0]
        assert stored["workflowId"] == "wf-9"
        assert stored["owner"] == "netops"


class TestIngestLogs:
    """Test on-demand log ingestion."""

    RESULT = {
        "target": "example.com",
        "status": "completed",
        "startTime": 1,
        "endTime": 2,
        "hops": [
            {"hop": 1, "ip": "10.0.0.1", "hostname": "hop1.transit.net", "rtt": [1, 2, 3], "isPublic": False},
            {"hop": 2, "ip": "93.184.216.34", "rtt": [4, 5, 6], "isPublic": True},
        ],
    }

    def test_ingest(self, app, log_client):
        """Test that every hop becomes a record."""
        out = app.ingest_logs({"tracerouteResult": self.RESULT, "scheduleName": "Manual"})

        assert out == {"success": True, "recordsIngested": 2}
        assert log_client.records[1]["schedule.name"] == "Manual"
        assert log_client.records[1]["traceroute.hostname"] == "unknown"

    @pytest.mark.parametrize("payload", [None, {}, {"tracerouteResult": {"target": "x"}}])
    def test_invalid_result(self, app, payload):
        """Test that results without hops are rejected."""
        assert app.ingest_logs(payload) == {
            "success": False,
            "error": "Invalid traceroute result provided",
        }

    def test_ingest_rejected(self, config, state):
        """Test that an ingest failure is reported."""
        app = TracerouteApp(config, state=state, log_client=RejectingLogClient())
        out = app.ingest_logs({"tracerouteResult": self.RESULT})
        assert out["success"] is False
        assert "400" in out["error"]


class TestGeolocate:
    """Test the single-address lookup entry point."""

    def test_private_address(self, app, http):
        """Test that private addresses are refused without a lookup."""
        assert app.geolocate({"ip": "10.1.2.3"}) == {"success": False, "error": "Private IP address"}
        assert http.calls == []

    def test_all_providers_failed(self, app, http):
        """Test the error when every provider fails."""
        out = app.geolocate({"ip": "8.8.8.8"})
        assert out == {"success": False, "error": "All geolocation APIs failed"}
        assert len(http.calls) == 3

    def test_success(self, app, http):
        """Test the camelCase location body."""
        http.add(
            "https://api.ip2location.io/",
            FakeResponse(json_data={"country_code": "US", "country_name": "United States", "city_name": "Ashburn"}),
        )

        out = app.geolocate({"ip": "8.8.8.8"})

        assert out["success"] is True
        assert out["data"]["city"] == "Ashburn"
        assert out["data"]["countryCode"] == "US"
        assert out["data"]["query"] == "8.8.8.8"

    def test_missing_ip(self, app):
        """Test that the address is required."""
        assert app.geolocate({})["success"] is False


class TestRunTraceroute:
    """Test the interactive traceroute entry point."""

    def test_run(self, app):
        """Test that the result is returned and nothing is stored."""
        out = app.run_traceroute({"target": "8.8.8.8"})

        assert out["success"] is True
        result = out["result"]
        assert result["status"] == "completed"
        assert result["hops"][-1]["ip"] == "8.8.8.8"
        assert 8 <= len(result["hops"]) <= 20
        assert app.get_schedules()["schedules"] == []

    def test_missing_target(self, app):
        """Test that an empty target is refused."""
        assert app.run_traceroute({"target": ""}) == {"success": False, "error": "Target is required"}

    def test_error_result(self, app):
        """Test that a failed traceroute reports its error result."""
        with mock.patch(
            "visual_traceroute.traceroute.lookup_hostname", side_effect=RuntimeError("boom")
        ):
            out = app.run_traceroute({"target": "example.com"})

        assert out["success"] is False
        assert out["error"] == "boom"
        assert out["result"]["status"] == "error"


class TestSweepScheduler:
    """Test the periodic sweep used by the watch command."""

    def test_job_registration(self, app):
        """Test that one interval job is registered and not started."""
        scheduler = create_sweep_scheduler(app, 7)

        job = scheduler.get_job(SWEEP_JOB_ID)
        assert isinstance(job.trigger, IntervalTrigger)
        assert job.trigger.interval == timedelta(minutes=7)
        assert job.max_instances == 1
        assert job.args == (app,)
        assert not scheduler.running

    def test_job_runs_a_sweep(self, app, capsys):
        """Test that the job sweeps the schedules and prints the summary."""
        app.save_schedule({"schedule": S1})
        job = create_sweep_scheduler(app, 5).get_job(SWEEP_JOB_ID)

        job.func(*job.args)

        out = json.loads(capsys.readouterr().out)
        assert out["schedulesRun"] == 1
        assert "lastRun" in app.get_schedules()["schedules"][0]


class TestMain:
    """Test the command line interface."""

    @pytest.fixture
    def cli(self, tmp_path, monkeypatch, http):
        config_file = tmp_path / "visual_traceroute.toml"
        config_file.write_text(
            '[geolocation]\nenabled = false\n\n[state]\nbackend = "file"\npath = "state.json"\n'
        )
        monkeypatch.chdir(tmp_path)

        def run(*argv):
            monkeypatch.setattr("sys.argv", ["visual-traceroute", "-c", str(config_file), *argv])
            with mock.patch("visual_traceroute.visual_traceroute.setup_logger"):
                return main()

        return run

    def test_schedule_lifecycle(self, cli, capsys, tmp_path):
        """Test add, list, run and delete through the CLI."""
        assert cli("schedules", "add", "--id", "s1", "--name", "DNS", "--target", "8.8.8.8", "--interval", "5") == 0
        capsys.readouterr()

        assert cli("schedules", "list") == 0
        listed = json.loads(capsys.readouterr().out)
        assert [s["id"] for s in listed["schedules"]] == ["s1"]

        assert cli("run", "--schedule-id", "s1") == 0
        run = json.loads(capsys.readouterr().out)
        assert run["schedulesRun"] == 1

        assert cli("schedules", "delete", "s1") == 0
        capsys.readouterr()
        assert cli("schedules", "delete", "s1") == 1
        assert json.loads(capsys.readouterr().out)["error"] == "Schedule not found"
        assert (tmp_path / "state.json").exists()

    def test_trace(self, cli, capsys):
        """Test the trace command output."""
        assert cli("trace", "1.1.1.1") == 0
        out = json.loads(capsys.readouterr().out)
        assert out["result"]["hops"][-1]["ip"] == "1.1.1.1"

    def test_geo_private(self, cli, capsys):
        """Test the exit code of a failed lookup."""
        assert cli("geo", "192.168.1.1") == 1
        assert json.loads(capsys.readouterr().out)["error"] == "Private IP address"
