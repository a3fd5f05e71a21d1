"""Shared setup for game flow tests."""
from snapjudge.services import lobbies


async def lobby_with_players(storage, *nicknames, topic="Something Blue"):
    """Create a lobby hosted by the first nickname and join the rest."""
    host_name, *others = nicknames
    lobby, host = await lobbies.create_lobby(storage, host_name, topic)
    players = [host]
    for name in others:
        _, player = await lobbies.join_lobby(storage, lobby.code, name)
        players.append(player)
    return lobby, players


async def submit_all(storage, players):
    for p in players:
        await lobbies.submit_photo(storage, p.player_id, f"https://img.test/{p.nickname}.jpg")
