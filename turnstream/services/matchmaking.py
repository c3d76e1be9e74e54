import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Iterator, Optional

from turnstream.services.identity import ClientIdentity
from turnstream.services.streams import Transport


@dataclass
class WaitingEntry:
    identity: ClientIdentity
    stream: Optional[Transport] = None
    frame: Optional[str] = None
    last_active: float = field(default_factory=time.monotonic)

    @property
    def client_id(self) -> str:
        return self.identity.client_id


class MatchQueue:
    """FIFO of clients waiting for an opponent."""

    def __init__(self) -> None:
        self._entries: "OrderedDict[str, WaitingEntry]" = OrderedDict()

    def enqueue(self, entry: WaitingEntry) -> bool:
        """Append to the tail; False if the client is already waiting."""
        if entry.client_id in self._entries:
            return False
        self._entries[entry.client_id] = entry
        return True

    def find_opponent(self, identity: ClientIdentity) -> Optional[WaitingEntry]:
        """First waiting entry, in arrival order, from a different address."""
        for entry in self._entries.values():
            if entry.identity.address_hash != identity.address_hash:
                return entry
        return None

    def get(self, client_id: str) -> Optional[WaitingEntry]:
        return self._entries.get(client_id)

    def remove(self, client_id: str) -> Optional[WaitingEntry]:
        return self._entries.pop(client_id, None)

    def entries(self) -> list[WaitingEntry]:
        return list(self._entries.values())

    def __contains__(self, client_id: str) -> bool:
        return client_id in self._entries

    def __iter__(self) -> Iterator[WaitingEntry]:
        return iter(self.entries())

    def __len__(self) -> int:
        return len(self._entries)
