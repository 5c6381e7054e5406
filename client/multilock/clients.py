"""Named, reference-counted handles to simulated clients."""

import threading
from typing import Dict, List, Optional, Set, Tuple

from .exceptions import ClientNotFoundError


class Client:
    """One simulated client and the transport it talks over.

    The reference count is shared between the registry's owner (the
    harness holds one reference while the client is connected) and every
    Record pointing at the client.  When it drops to zero the client is
    unlinked from its registry and its transport is closed, exactly once.
    """

    def __init__(self, name: str, registry: "ClientRegistry") -> None:
        self.name = name
        self.transport = None
        self.refcount = 0
        self.freed = False
        self._registry = registry
        # Harness-side state.
        self.connected = False
        self.alarm_deadline = None  # type: Optional[float]
        self.canceled_tags = set()  # type: Set[int]

    def __repr__(self) -> str:
        return "Client({!r}, refs={}{})".format(
            self.name, self.refcount, ", freed" if self.freed else "")

    def acquire(self) -> "Client":
        self._registry.acquire(self)
        return self

    def release(self) -> bool:
        return self._registry.release(self)

    def close_transport(self) -> None:
        """Close the transport if one is open.  Safe to call twice."""
        transport = self.transport
        self.transport = None
        self.connected = False
        if transport is not None:
            transport.close()


class ClientRegistry:
    """Process-wide map from client name to Client.

    Names match exactly (case-sensitive).  Lookup, insertion and removal
    are serialized by one lock held only for the map operation itself.
    """

    def __init__(self) -> None:
        self._clients = {}  # type: Dict[str, Client]
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._clients

    def names(self) -> List[str]:
        with self._lock:
            return list(self._clients)

    def clients(self) -> List[Client]:
        with self._lock:
            return list(self._clients.values())

    def resolve(self, name: str, create: bool = False) -> Tuple[Client, bool]:
        """Find the client called *name*.

        Returns ``(client, created)``.  When the name is unknown a new,
        unreferenced client is linked in if *create* is set; otherwise
        ClientNotFoundError is raised.
        """
        with self._lock:
            client = self._clients.get(name)
            if client is not None:
                return client, False
            if not create:
                raise ClientNotFoundError(name)
            client = Client(name, self)
            self._clients[name] = client
            return client, True

    def acquire(self, client: Client) -> None:
        with self._lock:
            if client.freed:
                raise ClientNotFoundError(client.name)
            client.refcount += 1

    def release(self, client: Client) -> bool:
        """Drop one reference; return True if the client was freed."""
        with self._lock:
            if client.freed or client.refcount <= 0:
                return False
            client.refcount -= 1
            if client.refcount > 0:
                return False
            client.freed = True
            if self._clients.get(client.name) is client:
                del self._clients[client.name]
        client.close_transport()
        return True

    def discard(self, name: str) -> None:
        """Unlink a client nobody has referenced yet (failed bootstrap)."""
        with self._lock:
            client = self._clients.get(name)
            if client is None or client.refcount:
                return
            client.freed = True
            del self._clients[name]
        client.close_transport()
