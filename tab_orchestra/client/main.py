import argparse
import asyncio
import logging
import sys

from tab_orchestra.config import get_settings
from tab_orchestra.protocol.types import (
    CLUSTER_WARNING,
    CLUSTERS_UPDATED,
    CONNECTION_STATUS_CHANGED,
    DUPLICATE_TAB_WARNING,
    GROUP_INFO_UPDATED,
    PEER_CLUSTERS_UPDATED,
    TAB_SHARED_LOCALLY,
)

from .agent import TabOrchestraAgent
from .reconciler import Outcome

HELP = ("Enter commands: /join <group>, /leave, /share <url> [title], /tabs, /clusters, "
        "/prompts <cluster>, /note <text>, /status, /quit")


def show_event(kind, data):
    if kind == CONNECTION_STATUS_CHANGED:
        suffix = f" ({data['error']})" if data.get("error") else ""
        print(f"[relay] {data['state']}{suffix}")
    elif kind == GROUP_INFO_UPDATED:
        print(f"[group {data['groupId']}] {data['event']}: {data['memberCount']} member(s)")
    elif kind == CLUSTERS_UPDATED:
        names = ", ".join(f"{c['name']} ({len(c['tabs'])})" for c in data["clusters"]) or "none"
        print(f"[clusters/{data['source']}] {names}")
    elif kind == CLUSTER_WARNING:
        print(f"[clusters] {data['message']}")
    elif kind == DUPLICATE_TAB_WARNING:
        print(f"[duplicate] {data['url']} was already shared")
    elif kind == PEER_CLUSTERS_UPDATED:
        print(f"[peer clusters] from {data['updatedBy']}")
    elif kind == TAB_SHARED_LOCALLY:
        state = "sent" if data["sent"] else "queued until reconnected"
        print(f"[share] {data['tab']['url']} {state}")


async def print_events(agent):
    while True:
        kind, data = await agent.events.get()
        show_event(kind, data)


def print_tabs(agent):
    tabs = agent.tabs()
    if not tabs:
        print("no shared tabs")
    for tab in tabs:
        print(f"  {tab.get('title') or '(untitled)'}  {tab.get('url')}  by {tab.get('sharedBy', 'me')}")


def print_clusters(agent):
    clusters = agent.clusters()
    if not clusters:
        print("no clusters")
    for cluster in clusters:
        print(f"  {cluster['name']}: {cluster['theme']}")
        for tab in cluster["tabs"]:
            print(f"    - {tab.get('title') or tab.get('url')}")


async def handle_line(agent, line):
    """Run one command. Returns False when the client should exit."""
    cmd, _, rest = line.partition(" ")
    rest = rest.strip()

    if cmd == "/quit":
        return False
    if cmd == "/join":
        if not rest:
            print("usage: /join <group>")
        elif not await agent.join(rest):
            print("join queued, relay not reachable yet")
    elif cmd == "/leave":
        if not await agent.leave():
            print("not in a group")
    elif cmd == "/share":
        url, _, title = rest.partition(" ")
        if not url:
            print("usage: /share <url> [title]")
            return True
        try:
            outcome = await agent.share_tab(title.strip() or url, url)
        except ValueError as e:
            print(e)
            return True
        if outcome is Outcome.INVALID:
            print("not a valid url")
    elif cmd == "/tabs":
        print_tabs(agent)
    elif cmd == "/clusters":
        print_clusters(agent)
    elif cmd == "/prompts":
        if not rest:
            print("usage: /prompts <cluster>")
            return True
        try:
            questions = await agent.discussion_prompts(rest)
        except KeyError:
            print("unknown cluster", rest)
            return True
        for q in questions:
            print(f"  ? {q}")
    elif cmd == "/note":
        if not rest:
            print("usage: /note <text>")
            return True
        try:
            await agent.annotate(rest)
        except ValueError as e:
            print(e)
    elif cmd == "/status":
        for key, value in agent.status().items():
            print(f"  {key}: {value}")
    else:
        print("unknown command", line)
    return True


async def main_loop(args):
    settings = get_settings()
    overrides = {k: v for k, v in (("relay_url", args.url), ("store_path", args.store)) if v}
    if overrides:
        settings = settings.model_copy(update=overrides)

    agent = TabOrchestraAgent(settings)
    printer = asyncio.create_task(print_events(agent))
    await agent.start(args.group)

    print(HELP)
    loop = asyncio.get_running_loop()
    try:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            line = line.strip()
            if not line:
                continue
            if not await handle_line(agent, line):
                break
    finally:
        await agent.stop()
        printer.cancel()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="tab-orchestra-client", description="Interactive Tab Orchestra client")
    parser.add_argument("--url", help="relay url, e.g. ws://localhost:8080")
    parser.add_argument("--group", help="group to join on startup")
    parser.add_argument("--store", help="path of the local JSON state file")
    return parser.parse_args(argv)


def run():
    args = parse_args()
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        asyncio.run(main_loop(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
