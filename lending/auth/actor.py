import enum
import uuid
from dataclasses import dataclass


class Role(str, enum.Enum):
    READER = "READER"
    LIBRARIAN = "LIBRARIAN"
    ADMIN = "ADMIN"


STAFF_ROLES: frozenset[Role] = frozenset({Role.LIBRARIAN, Role.ADMIN})


@dataclass(frozen=True)
class Actor:
    """Caller identity as asserted by the identity provider. Trusted as given."""

    id: uuid.UUID
    role: Role
