import hashlib
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ClientIdentity:
    """Pseudonymous client key derived from a source address.

    Distinct users sharing one public address collapse onto the same
    identity; that is a known limitation.
    """
    client_id: str
    address_hash: str


def hash_address(address: str) -> str:
    return hashlib.sha256(address.encode("utf-8")).hexdigest()


def resolve(source_address: Optional[str], forwarded_for: Optional[str] = None) -> ClientIdentity:
    """Prefer the first hop of X-Forwarded-For, else the connection address."""
    address = ""
    if forwarded_for:
        address = forwarded_for.split(",")[0].strip()
    if not address:
        address = source_address or ""
    hashed = hash_address(address)
    return ClientIdentity(client_id=hashed, address_hash=hashed)
