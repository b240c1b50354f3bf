"""Tests for the dashboard."""

import asyncio
from unittest.mock import MagicMock

import pytest
from conftest import FakeTransport, Run

from octobus.dashboard import Dashboard, DashboardSink, HostOutput, HostStatusChange, StatusBar
from octobus.executor import SessionAttempt, SessionStatus
from octobus.fleet import Fleet
from octobus.sink import StreamKind


def posted(app):
    return [call.args[0] for call in app.post_message.call_args_list]


def test_posts_complete_lines():
    app = MagicMock()
    sink = DashboardSink(app)

    sink.write("web1", StreamKind.STDOUT, b"hello\nwor")
    sink.write("web1", StreamKind.STDOUT, b"ld\n")
    sink.write("web1", StreamKind.STDERR, b"oops\n")

    messages = posted(app)
    assert all(isinstance(m, HostOutput) for m in messages)
    assert [(m.label, m.stream, m.line) for m in messages] == [
        ("web1", StreamKind.STDOUT, "hello"),
        ("web1", StreamKind.STDOUT, "world"),
        ("web1", StreamKind.STDERR, "oops"),
    ]


def test_close_drops_fragment():
    app = MagicMock()
    sink = DashboardSink(app)

    sink.write("web1", StreamKind.STDOUT, b"partial")
    sink.close("web1", StreamKind.STDOUT)
    sink.write("web1", StreamKind.STDOUT, b"next\n")

    assert [m.line for m in posted(app)] == ["next"]


def test_status_messages():
    app = MagicMock()
    DashboardSink(app).on_status(SessionAttempt(raw="web1", index=3), SessionStatus.RUNNING)

    (message,) = posted(app)
    assert isinstance(message, HostStatusChange)
    assert (message.label, message.index, message.status) == ("web1", 3, SessionStatus.RUNNING)


@pytest.mark.asyncio
async def test_quit_stops_running_fleet(credentials):
    transport = FakeTransport({"web1": [Run(hang=True)]})

    async def runner(app):
        fleet = Fleet(transport, credentials, app.sink, user="root", on_status=app.sink.on_status)
        app.attach_fleet(fleet)
        return await fleet.tail_forever(["web1"], "/var/log/syslog")

    app = Dashboard(1, runner)
    async with app.run_test() as pilot:
        for _ in range(100):
            if transport.commands:
                break
            await pilot.pause(0.05)
        assert transport.commands == {"web1": ["tail -f /var/log/syslog"]}
        await pilot.press("q")

    assert await asyncio.to_thread(app.wait_for_fleet, 5)
    assert [a.status for a in app.fleet_result] == [SessionStatus.CANCELLED]
    assert transport.closed == 1


@pytest.mark.asyncio
async def test_completed_counts_each_attempt_once():
    async def runner(app):
        return []

    app = Dashboard(3, runner)
    async with app.run_test() as pilot:
        app.on_host_status_change(HostStatusChange("web1", 0, SessionStatus.FAILED))
        app.on_host_status_change(HostStatusChange("web1", 1, SessionStatus.RUNNING))
        app.on_host_status_change(HostStatusChange("web1", 1, SessionStatus.SUCCESS))
        app.on_host_status_change(HostStatusChange("web1", 0, SessionStatus.CANCELLED))
        await pilot.pause()

        assert app.query_one("#status-bar", StatusBar).completed == 2
        assert list(app.panels) == ["web1"]
