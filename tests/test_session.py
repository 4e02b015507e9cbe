"""
Tests for ProjectSession: setup, launch order, adding features and interrupts.
"""

from unittest.mock import patch

import pytest

from featureloop.features import NoFeaturesError
from featureloop.markers import MarkerSet
from featureloop.schema import Marker, ProjectState
from featureloop.session import ProjectSession
from featureloop.supervisor import TickOutcome
from featureloop.ticker import VirtualTicker


@pytest.fixture
def session(layout, config, host, workspaces):
    return ProjectSession(
        layout,
        config,
        host,
        workspaces,
        router_ticker=VirtualTicker(max_ticks=1),
        supervisor_ticker=VirtualTicker(max_ticks=1),
        sleep=lambda _: None,
    )


class TestPrepareAndLaunch:

    def test_no_features_launches_nothing(self, session, host, workspaces):
        with pytest.raises(NoFeaturesError):
            session.run()

        assert host.started == []
        assert workspaces.created == []

    def test_prepare_creates_workspaces(self, session, layout, feature_list, workspaces):
        feature_list("search", "cart")

        assert session.prepare() == ["search", "cart"]
        assert workspaces.created == ["search", "cart"]
        assert layout.mailbox.exists()
        assert layout.qa_reports_dir.is_dir()

    def test_launch_order_and_environment(self, session, layout, host, feature_list):
        feature_list("search", "cart")
        session.prepare()

        session.launch_all(["search", "cart"])

        assert [agent_id for agent_id, _, _ in host.started] == ["supervisor", "qa", "search", "cart"]
        _, workdir, env = host.started[2]
        assert workdir == layout.workspace("search")
        assert env == {"MAIN_REPO": str(layout.project_dir), "FEATURE": "search"}

    def test_prompts_delivered_on_launch(self, session, layout, host, feature_list):
        feature_list("search")
        session.prepare()

        session.launch_all(["search"])

        assert host.typed("search") == [
            f"Read {layout.prompt_file('search')} and follow the instructions in it exactly."
        ]
        assert all("\n" not in text for _, text, _ in host.sent)
        worker_prompt = layout.prompt_file("search").read_text()
        assert "'search' feature on branch feature/search" in worker_prompt
        assert ".featureloop/status.log" in worker_prompt
        integrator_prompt = layout.prompt_file("supervisor").read_text()
        assert ".featureloop/worktrees/feature-*/.featureloop/status.log" in integrator_prompt
        assert "from: supervisor" in integrator_prompt
        assert ".featureloop/qa-reports/latest.json" in layout.prompt_file("qa").read_text()

    def test_failed_worker_launch_skips_only_that_worker(self, session, host, feature_list):
        feature_list("a", "b", "c")
        host.broken = {"b"}

        handles = session.launch_all(session.prepare())

        assert [handle.agent_id for handle in handles] == ["supervisor", "qa", "a", "c"]
        assert [agent_id for agent_id, _, _ in host.started] == ["supervisor", "qa", "a", "c"]

    def test_failed_workspace_skips_that_feature(self, session, host, workspaces, feature_list):
        feature_list("a", "b", "c")
        workspaces.broken = {"b"}

        assert session.prepare() == ["a", "c"]
        session.launch_all(["a", "c"])

        assert [agent_id for agent_id, _, _ in host.started] == ["supervisor", "qa", "a", "c"]


class TestAddFeature:

    def test_waits_for_next_run_when_idle(self, session, layout, host, workspaces):
        assert session.add_feature("search", "Full-text search") is False

        assert layout.feature_spec("search").exists()
        assert workspaces.created == []
        assert host.started == []

    def test_joins_running_session(self, session, layout, host, workspaces):
        host.alive = {"supervisor"}

        assert session.add_feature("search", "Full-text search") is True

        assert workspaces.created == ["search"]
        assert [agent_id for agent_id, _, _ in host.started] == ["search"]
        message = session.mailbox.messages()[-1]
        assert (message.sender, message.recipient) == ("monitor", "supervisor")
        assert message.body.startswith("NEW_FEATURE: search added to the project.")
        assert ".featureloop/specs/features/search.spec.md" in message.body


class TestInterrupts:

    def test_normal_completion_stops_router(self, session):
        done = TickOutcome(state=ProjectState.COMPLETE, done=True)
        with patch.object(session.supervisor, "run", return_value=done), \
                patch.object(session.router, "stop") as stop:
            assert session.supervise() is done

        stop.assert_called_once()

    def test_first_interrupt_keeps_router_running(self, session):
        with patch.object(session.supervisor, "run", side_effect=KeyboardInterrupt), \
                patch.object(session.router, "wait") as wait, \
                patch.object(session.router, "stop") as stop:
            assert session.supervise() is None

        wait.assert_called_once()
        stop.assert_not_called()

    def test_second_interrupt_stops_router(self, session):
        with patch.object(session.supervisor, "run", side_effect=KeyboardInterrupt), \
                patch.object(session.router, "wait", side_effect=KeyboardInterrupt), \
                patch.object(session.router, "stop") as stop:
            assert session.supervise() is None

        stop.assert_called_once()


class TestRun:

    def test_run_until_complete(self, session, layout, host, feature_list):
        feature_list("search")
        MarkerSet(layout).touch(Marker.PROJECT_COMPLETE)

        outcome = session.run()

        assert outcome.done
        assert outcome.archive.archive_dir.is_dir()
        assert (outcome.archive.archive_dir / "markers" / "PROJECT_COMPLETE").exists()
        assert [agent_id for agent_id, _, _ in host.started] == ["supervisor", "qa", "search"]
        assert not session.router.running

    def test_run_without_launch(self, session, layout, host, feature_list):
        feature_list("search")
        MarkerSet(layout).touch(Marker.PROJECT_COMPLETE)

        session.run(launch=False)

        assert host.started == []

    def test_run_continues_past_failed_launch(self, session, layout, host, feature_list):
        feature_list("a", "b", "c")
        host.broken = {"b"}
        MarkerSet(layout).touch(Marker.PROJECT_COMPLETE)

        with patch.object(session.router, "start") as start_router:
            outcome = session.run()

        start_router.assert_called_once()
        assert outcome.done
        assert [agent_id for agent_id, _, _ in host.started] == ["supervisor", "qa", "a", "c"]

    def test_completion_stops_agents(self, session, layout, host, feature_list):
        feature_list("search")
        MarkerSet(layout).touch(Marker.PROJECT_COMPLETE)

        session.run()

        assert host.cleaned_up
        assert sorted(host.stopped) == ["qa", "search", "supervisor"]

    def test_completion_can_leave_agents_running(self, session, layout, config, host, feature_list):
        config.stop_agents_on_complete = False
        feature_list("search")
        MarkerSet(layout).touch(Marker.PROJECT_COMPLETE)

        session.run()

        assert not host.cleaned_up
        assert host.alive == {"supervisor", "qa", "search"}
