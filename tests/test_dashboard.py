"""
Tests for the read-only dashboard.
"""

import json

from rich.console import Console

from featureloop.dashboard import render_snapshot, take_snapshot
from featureloop.mailbox import Mailbox
from featureloop.markers import MarkerSet
from featureloop.schema import Marker, ProjectState


def render_text(snapshot):
    console = Console(record=True, width=120, color_system=None)
    console.print(render_snapshot(snapshot))
    return console.export_text()


class TestSnapshot:

    def test_counts_and_state(self, layout, feature_list, write_ledger):
        feature_list("search", "cart", "auth")
        write_ledger("search", "IN_PROGRESS", "COMPLETE")
        write_ledger("cart", "BLOCKED")

        snapshot = take_snapshot(layout)

        assert snapshot.state == ProjectState.BUILDING
        assert snapshot.complete == 1
        assert snapshot.counts["COMPLETE"] == 1
        assert snapshot.counts["BLOCKED"] == 1
        assert snapshot.counts["NO_LOG"] == 1

    def test_recent_messages(self, layout):
        mailbox = Mailbox(layout.mailbox)
        for i in range(8):
            mailbox.post("monitor", "qa", f"message {i}")

        snapshot = take_snapshot(layout, message_limit=3)

        assert [m.body for m in snapshot.messages] == ["message 5", "message 6", "message 7"]

    def test_snapshot_changes_nothing(self, layout, feature_list):
        feature_list("search")
        MarkerSet(layout).touch(Marker.QA_NEEDS_FIXES)
        before = sorted(p.name for p in layout.state_dir.rglob("*"))

        take_snapshot(layout)

        assert sorted(p.name for p in layout.state_dir.rglob("*")) == before

    def test_to_dict_is_json(self, layout, feature_list, write_ledger):
        feature_list("search")
        write_ledger("search", "TESTING")
        MarkerSet(layout).touch(Marker.ALL_MERGED)

        data = json.loads(json.dumps(take_snapshot(layout).to_dict()))

        assert data["state"] == "ALL_MERGED"
        assert data["markers"] == ["ALL_MERGED"]
        assert data["features"][0]["status"] == "TESTING"


class TestRender:

    def test_render_lists_features_and_messages(self, layout, feature_list, write_ledger):
        feature_list("search", "cart")
        write_ledger("search", "COMPLETE")
        Mailbox(layout.mailbox).post("monitor", "qa", "RUN_QA")

        text = render_text(take_snapshot(layout))

        assert "search" in text
        assert "COMPLETE" in text
        assert "NO_LOG" in text
        assert "IN PROGRESS (1/2)" in text
        assert "monitor -> qa: RUN_QA" in text

    def test_render_complete(self, layout):
        MarkerSet(layout).touch(Marker.PROJECT_COMPLETE)

        text = render_text(take_snapshot(layout))

        assert "PROJECT COMPLETE" in text
        assert "(none)" in text
