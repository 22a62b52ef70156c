# tests/test_registry.py
from tab_orchestra.server.context import Context
from tab_orchestra.server.registry import GroupRegistry

from fakes import FakeClock, FakeServerWS


def test_membership_is_stored_on_both_sides(ctx, connect):
    a = connect()
    group = ctx.join(a.connection_id, "design")

    assert a.connection_id in group.members
    assert "design" in a.groups
    assert group.member_count == 1


def test_join_is_idempotent(ctx, connect):
    a = connect()
    ctx.join(a.connection_id, "g")
    group = ctx.join(a.connection_id, "g")
    assert group.member_count == 1
    assert a.groups == {"g"}


def test_group_ids_are_case_sensitive(ctx, connect):
    a = connect()
    ctx.join(a.connection_id, "Team")
    ctx.join(a.connection_id, "team")
    assert len(ctx.groups) == 2


def test_join_unknown_connection_creates_nothing(ctx):
    assert ctx.join("nope", "g") is None
    assert "g" not in ctx.groups


def test_leave_keeps_empty_group(ctx, connect):
    a = connect()
    ctx.join(a.connection_id, "g")
    group = ctx.leave(a.connection_id, "g")

    assert group is not None and group.member_count == 0
    assert "g" not in a.groups
    assert "g" in ctx.groups


def test_leave_when_not_a_member_is_noop(ctx, connect):
    a, b = connect(), connect()
    ctx.join(a.connection_id, "g")
    assert ctx.leave(b.connection_id, "g") is None
    assert ctx.leave(a.connection_id, "unknown") is None
    assert ctx.groups.get("g").member_count == 1


def test_detach_leaves_every_group_and_purges(ctx, connect):
    a, b = connect(), connect()
    for gid in ("x", "y"):
        ctx.join(a.connection_id, gid)
    ctx.join(b.connection_id, "x")

    left = ctx.detach(a.connection_id)

    assert sorted(g.group_id for g in left) == ["x", "y"]
    assert a.connection_id not in ctx.connections
    assert ctx.groups.get("x").members == {b.connection_id}
    assert ctx.groups.get("y").members == set()
    assert ctx.detach(a.connection_id) == []


def test_history_is_bounded_fifo():
    clock = FakeClock()
    context = Context(history_limit=100, clock=clock)
    conn = context.attach(FakeServerWS())
    group = context.join(conn.connection_id, "g")

    for i in range(101):
        group.add_tab({"url": f"https://example.com/{i}"})

    tabs = group.snapshot()["sharedTabs"]
    assert len(tabs) == 100
    assert tabs[0]["url"] == "https://example.com/1"
    assert tabs[-1]["url"] == "https://example.com/100"


def test_reclaimable_only_when_empty_and_past_grace():
    groups = GroupRegistry()
    busy = groups.get_or_create("busy", now=0)
    busy.members.add("c1")
    groups.get_or_create("idle", now=0)
    groups.get_or_create("young", now=3000)

    assert groups.reclaimable(now=3601, grace_period=3600) == ["idle"]


def test_stale_connections(ctx, connect, clock):
    a, b = connect(), connect()
    clock.advance(200)
    ctx.touch(b.connection_id)
    clock.advance(150)

    assert ctx.connections.stale(clock(), 300) == [a.connection_id]


def test_stats(ctx, connect):
    a = connect()
    group = ctx.join(a.connection_id, "g")
    group.add_tab({"url": "https://a.test"})
    ctx.join(a.connection_id, "h")

    assert ctx.stats() == {"connectedClients": 1, "activeGroups": 2, "totalSharedTabs": 1}
