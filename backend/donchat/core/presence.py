"""
Presence registry: which user owns which live connection, and which
connections sit in which room.

The hub only talks to the ``PresenceRegistry`` interface so the in-process map
can be swapped for a shared one without touching event handling.
"""
from abc import ABC, abstractmethod
from typing import Dict, Optional, Set


class PresenceRegistry(ABC):
    @abstractmethod
    def add_connection(self, user_id: str, connection_id: str) -> None: ...

    @abstractmethod
    def remove_connection(self, connection_id: str) -> Optional[str]:
        """Forget the connection and its rooms. Returns the owning user id, if known."""

    @abstractmethod
    def connections_for(self, user_id: str) -> Set[str]: ...

    @abstractmethod
    def user_of(self, connection_id: str) -> Optional[str]: ...

    @abstractmethod
    def join(self, connection_id: str, room: str) -> None: ...

    @abstractmethod
    def leave(self, connection_id: str, room: str) -> None: ...

    @abstractmethod
    def members_of(self, room: str) -> Set[str]: ...

    @abstractmethod
    def rooms_of(self, connection_id: str) -> Set[str]: ...

    @abstractmethod
    def online_users(self) -> Set[str]: ...


class InMemoryPresenceRegistry(PresenceRegistry):
    """
    Process-local registry. Only mutated from the event loop thread, so it
    takes no locks; guard it with a mutex if it is ever shared across threads.
    """

    def __init__(self):
        # {user_id: set of connection ids}
        self.user_connections: Dict[str, Set[str]] = {}
        # {connection_id: user_id}
        self.connection_users: Dict[str, str] = {}
        # {room: set of connection ids}
        self.rooms: Dict[str, Set[str]] = {}
        # {connection_id: set of rooms}
        self.connection_rooms: Dict[str, Set[str]] = {}

    def add_connection(self, user_id: str, connection_id: str) -> None:
        self.user_connections.setdefault(user_id, set()).add(connection_id)
        self.connection_users[connection_id] = user_id
        self.connection_rooms.setdefault(connection_id, set())

    def remove_connection(self, connection_id: str) -> Optional[str]:
        for room in list(self.connection_rooms.get(connection_id, ())):
            self.leave(connection_id, room)
        self.connection_rooms.pop(connection_id, None)

        user_id = self.connection_users.pop(connection_id, None)
        if user_id is not None and user_id in self.user_connections:
            self.user_connections[user_id].discard(connection_id)
            if not self.user_connections[user_id]:
                # User is completely offline
                del self.user_connections[user_id]
        return user_id

    def connections_for(self, user_id: str) -> Set[str]:
        return set(self.user_connections.get(user_id, ()))

    def user_of(self, connection_id: str) -> Optional[str]:
        return self.connection_users.get(connection_id)

    def join(self, connection_id: str, room: str) -> None:
        self.rooms.setdefault(room, set()).add(connection_id)
        self.connection_rooms.setdefault(connection_id, set()).add(room)

    def leave(self, connection_id: str, room: str) -> None:
        if room in self.rooms:
            self.rooms[room].discard(connection_id)
            if not self.rooms[room]:
                del self.rooms[room]
        if connection_id in self.connection_rooms:
            self.connection_rooms[connection_id].discard(room)

    def members_of(self, room: str) -> Set[str]:
        return set(self.rooms.get(room, ()))

    def rooms_of(self, connection_id: str) -> Set[str]:
        return set(self.connection_rooms.get(connection_id, ()))

    def online_users(self) -> Set[str]:
        return set(self.user_connections)
