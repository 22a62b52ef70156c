'''
    Description:
        - Protocol handlers for the client -> relay envelope types.
        - Each handler mutates the registries through Context first, then does its sends
          through ctx.router. Unknown groups / connections are no-ops.
'''

import logging

from tab_orchestra.protocol import envelopes

log = logging.getLogger("tab_orchestra.handlers")


def _group_id(env):
    gid = env.get("groupId")
    if isinstance(gid, str) and gid:
        return gid
    return None


def _server_ms(ctx) -> int:
    return int(ctx.clock() * 1000)


# ---------- Liveness ----------

async def handle_heartbeat(ctx, conn, env):
    ctx.touch(conn.connection_id)
    await ctx.router.send_to(conn.connection_id, envelopes.pong())


# ---------- Membership ----------

async def handle_join_group(ctx, conn, env):
    group_id = _group_id(env)
    if group_id is None:
        log.warning("join_group without groupId from %s", conn.tag())
        return
    group = ctx.join(conn.connection_id, group_id)
    if group is None:
        return

    snap = group.snapshot()
    await ctx.router.send_to(conn.connection_id, envelopes.group_joined(group_id, group.member_count))
    await ctx.router.send_to(conn.connection_id,
                             envelopes.group_data(group_id, snap["sharedTabs"], snap["annotations"]))
    await ctx.router.broadcast_to_group(
        group_id,
        envelopes.member_joined(group_id, conn.connection_id, group.member_count),
        exclude=conn.connection_id,
    )
    log.info("%s joined group %s (%d members)", conn.tag(), group_id, group.member_count)


async def handle_leave_group(ctx, conn, env):
    group_id = _group_id(env)
    if group_id is None:
        return
    group = ctx.leave(conn.connection_id, group_id)
    if group is None:
        return
    await ctx.router.broadcast_to_group(
        group_id, envelopes.member_left(group_id, conn.connection_id, group.member_count)
    )
    if not group.members:
        log.info("group %s is empty, kept for the grace period", group_id)


async def handle_disconnect(ctx, connection_id):
    """Implicit leave for every joined group, then the connection record is purged."""
    left = ctx.detach(connection_id)
    for group in left:
        await ctx.router.broadcast_to_group(
            group.group_id, envelopes.member_left(group.group_id, connection_id, group.member_count)
        )
    if left:
        log.info("client %s left %d group(s) on disconnect", connection_id, len(left))


# ---------- Group content ----------

async def handle_share_tab(ctx, conn, env):
    data = env.get("data")
    if not isinstance(data, dict):
        log.warning("share_tab with non-object data from %s", conn.tag())
        return

    for group in ctx.member_groups(conn.connection_id):
        record = dict(data)
        if "timestamp" in record:
            record["clientTimestamp"] = record["timestamp"]
        record.update(groupId=group.group_id, sharedBy=conn.connection_id, timestamp=_server_ms(ctx))
        group.add_tab(record)
        snap = group.snapshot()

        # sender included: the echo is its confirmation that the tab was stored
        await ctx.router.broadcast_to_group(group.group_id, envelopes.tab_shared(record))
        await ctx.router.broadcast_to_group(
            group.group_id, envelopes.group_data(group.group_id, snap["sharedTabs"], snap["annotations"])
        )
        log.info("tab shared in group %s: %s", group.group_id, record.get("title"))


async def handle_annotation_created(ctx, conn, env):
    data = env.get("data")
    for group in ctx.member_groups(conn.connection_id):
        record = dict(data) if isinstance(data, dict) else {"data": data}
        record.update(createdBy=conn.connection_id, groupId=group.group_id, timestamp=_server_ms(ctx))
        group.add_annotation(record)
        await ctx.router.broadcast_to_group(
            group.group_id, envelopes.annotation_update(data, conn.connection_id), exclude=conn.connection_id
        )


async def handle_ai_cluster_update(ctx, conn, env):
    # relay only, clusters are recomputed per client
    data = env.get("data")
    for group in ctx.member_groups(conn.connection_id):
        await ctx.router.broadcast_to_group(
            group.group_id, envelopes.cluster_relay(data, conn.connection_id), exclude=conn.connection_id
        )
