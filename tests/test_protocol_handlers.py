# tests/test_protocol_handlers.py
import asyncio

from tab_orchestra.server.protocol_handlers import (
    handle_ai_cluster_update,
    handle_annotation_created,
    handle_disconnect,
    handle_heartbeat,
    handle_join_group,
    handle_leave_group,
    handle_share_tab,
)


def join(ctx, conn, gid="g"):
    asyncio.run(handle_join_group(ctx, conn, {"type": "join_group", "groupId": gid}))


def test_join_sends_snapshot_and_notifies_members(ctx, connect):
    a, b = connect(), connect()
    join(ctx, a)
    a.ws.clear()

    join(ctx, b)

    assert b.ws.types() == ["group_joined", "group_data"]
    assert b.ws.sent[0] == {"type": "group_joined", "groupId": "g", "memberCount": 2}
    assert b.ws.sent[1]["sharedTabs"] == [] and b.ws.sent[1]["annotations"] == []
    assert a.ws.sent == [{"type": "member_joined", "groupId": "g", "clientId": b.connection_id, "memberCount": 2}]


def test_join_without_group_id_is_ignored(ctx, connect):
    a = connect()
    asyncio.run(handle_join_group(ctx, a, {"type": "join_group"}))
    asyncio.run(handle_join_group(ctx, a, {"type": "join_group", "groupId": ""}))
    assert a.ws.sent == []
    assert len(ctx.groups) == 0


def test_share_tab_reaches_every_member_including_sender(ctx, connect, clock):
    a, b = connect(), connect()
    join(ctx, a)
    join(ctx, b)
    a.ws.clear()
    b.ws.clear()

    tab = {"title": "Docs", "url": "https://docs.example.com", "timestamp": 111, "id": "t1"}
    asyncio.run(handle_share_tab(ctx, a, {"type": "share_tab", "data": tab}))

    for ws in (a.ws, b.ws):
        assert ws.types() == ["tab_shared", "group_data"]
        record = ws.sent[0]["data"]
        assert record["sharedBy"] == a.connection_id
        assert record["groupId"] == "g"
        assert record["clientTimestamp"] == 111
        assert record["timestamp"] == int(clock() * 1000)
        assert record["id"] == "t1"
        assert ws.sent[1]["sharedTabs"] == [record]

    # the client's own dict is never mutated
    assert tab["timestamp"] == 111 and "sharedBy" not in tab


def test_share_tab_outside_a_group_is_dropped(ctx, connect):
    a = connect()
    asyncio.run(handle_share_tab(ctx, a, {"type": "share_tab", "data": {"url": "https://x.test"}}))
    assert a.ws.sent == []
    assert ctx.stats()["totalSharedTabs"] == 0


def test_share_tab_fans_out_to_all_joined_groups(ctx, connect):
    a = connect()
    join(ctx, a, "x")
    join(ctx, a, "y")
    asyncio.run(handle_share_tab(ctx, a, {"type": "share_tab", "data": {"url": "https://x.test"}}))

    assert len(ctx.groups.get("x").shared_tabs) == 1
    assert len(ctx.groups.get("y").shared_tabs) == 1


def test_failed_send_does_not_stop_the_broadcast(ctx, connect):
    a, broken, c = connect(), connect(fail=True), connect()
    for conn in (a, broken, c):
        join(ctx, conn)
    c.ws.clear()

    asyncio.run(handle_share_tab(ctx, a, {"type": "share_tab", "data": {"url": "https://x.test"}}))

    assert c.ws.types() == ["tab_shared", "group_data"]


def test_annotation_excludes_sender(ctx, connect, clock):
    a, b = connect(), connect()
    join(ctx, a)
    join(ctx, b)
    a.ws.clear()
    b.ws.clear()

    asyncio.run(handle_annotation_created(ctx, a, {"type": "annotation_created", "data": {"text": "nice"}}))

    assert a.ws.sent == []
    assert b.ws.sent == [{"type": "annotation_update", "data": {"text": "nice"}, "createdBy": a.connection_id}]
    stored = ctx.groups.get("g").annotations
    assert stored == [{"text": "nice", "createdBy": a.connection_id, "groupId": "g", "timestamp": int(clock() * 1000)}]


def test_cluster_update_is_relayed_not_stored(ctx, connect):
    a, b = connect(), connect()
    join(ctx, a)
    join(ctx, b)
    a.ws.clear()
    b.ws.clear()

    clusters = [{"name": "Docs", "tabs": []}]
    asyncio.run(handle_ai_cluster_update(ctx, a, {"type": "ai_cluster_update", "data": clusters}))

    assert a.ws.sent == []
    assert b.ws.sent == [{"type": "ai_cluster_update", "data": clusters, "updatedBy": a.connection_id}]
    assert ctx.groups.get("g").snapshot() == {"sharedTabs": [], "annotations": []}


def test_heartbeat_refreshes_liveness_and_pongs(ctx, connect, clock):
    a = connect()
    clock.advance(42)
    asyncio.run(handle_heartbeat(ctx, a, {"type": "heartbeat"}))

    assert a.ws.sent == [{"type": "pong"}]
    assert a.last_seen == clock()


def test_leave_notifies_remaining_members(ctx, connect):
    a, b = connect(), connect()
    join(ctx, a)
    join(ctx, b)
    a.ws.clear()
    b.ws.clear()

    asyncio.run(handle_leave_group(ctx, b, {"type": "leave_group", "groupId": "g"}))

    assert a.ws.sent == [{"type": "member_left", "groupId": "g", "clientId": b.connection_id, "memberCount": 1}]
    assert b.ws.sent == []
    assert "g" not in b.groups


def test_disconnect_is_an_implicit_leave(ctx, connect):
    a, b = connect(), connect()
    join(ctx, a)
    join(ctx, b)
    a.ws.clear()

    asyncio.run(handle_disconnect(ctx, b.connection_id))

    assert a.ws.of_type("member_left") == [
        {"type": "member_left", "groupId": "g", "clientId": b.connection_id, "memberCount": 1}
    ]
    assert b.connection_id not in ctx.connections
    assert ctx.groups.get("g").members == {a.connection_id}


def test_history_survives_until_reclaimed(ctx, connect):
    a = connect()
    join(ctx, a)
    asyncio.run(handle_share_tab(ctx, a, {"type": "share_tab", "data": {"url": "https://x.test"}}))
    asyncio.run(handle_disconnect(ctx, a.connection_id))

    b = connect()
    join(ctx, b)
    snapshot = b.ws.of_type("group_data")[0]
    assert [t["url"] for t in snapshot["sharedTabs"]] == ["https://x.test"]
