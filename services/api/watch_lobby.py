#!/usr/bin/env python3
"""
Watch a lobby's realtime events.

Connects to the Socket.IO server, joins a lobby room and prints every
change while you play through the REST API in another terminal.

Usage:
    1. Start the server: python run.py
    2. Create a lobby: curl -X POST localhost:8000/api/lobbies \\
           -H "Content-Type: application/json" -d '{"nickname": "Host"}'
    3. Run this watcher: python watch_lobby.py 4821
"""
import asyncio
import sys

import socketio

sio = socketio.AsyncClient(logger=False)


@sio.event
async def connect():
    print("Connected to Socket.IO server")


@sio.event
async def disconnect():
    print("Disconnected from server")


@sio.on("lobby:changed")
async def on_lobby_changed(data):
    """Fired on every lobby record change (start, judging, results, next round)."""
    lobby = data.get("new") or {}
    print(f"\nlobby:changed ({data.get('eventType')})")
    print(f"   Status: {lobby.get('status')}  Round: {lobby.get('current_round')}")
    print(f"   Topic: {lobby.get('current_topic')}")


@sio.on("player:changed")
async def on_player_changed(data):
    """Fired when a player joins, submits a photo or gains points."""
    player = data.get("new") or data.get("old") or {}
    print(f"\nplayer:changed ({data.get('eventType')})")
    print(f"   {player.get('nickname')}: ready={player.get('is_ready')} score={player.get('total_score')}")


@sio.on("round:created")
async def on_round_created(data):
    """Fired once per judged round."""
    round_data = data.get("new") or {}
    print(f"\nround:created (round {round_data.get('round_number')})")
    for r in round_data.get("rankings", []):
        print(f"   #{r.get('rank')} {r.get('nickname')}: {r.get('score')} pts")
        print(f"      \"{r.get('critique', '')}\"")


async def join_lobby(code: str) -> bool:
    """Join a lobby room to receive events."""
    print(f"\nJoining lobby: {code}")
    response = await sio.call("lobby:join", {"code": code})

    if response.get("ok"):
        state = response.get("state", {})
        players = [p["nickname"] for p in state.get("players", [])]
        print(f"   Joined! Current players: {', '.join(players)}")
        return True

    print(f"   Failed: {response.get('error')}")
    return False


async def main():
    if len(sys.argv) > 1:
        code = sys.argv[1].strip()
    else:
        code = input("Enter room code to watch: ").strip()

    if not code:
        print("No room code provided. Exiting.")
        return

    try:
        await sio.connect("http://localhost:8000", transports=["websocket"])
        if not await join_lobby(code):
            await sio.disconnect()
            return

        print("\nListening for events... (Ctrl+C to quit)")
        await sio.wait()
    except KeyboardInterrupt:
        print("\nShutting down...")
    finally:
        if sio.connected:
            await sio.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
