import uuid
from dataclasses import dataclass
from vending.extensions import db
from vending.models.user import User
from vending.services.errors import Forbidden, InvalidRequest, RoleMismatch


@dataclass(frozen=True)
class Identity:
    """Authenticated caller, passed explicitly to every service operation."""
    id: uuid.UUID
    role: str


def parse_uuid(value, label='ID'):
    try:
        return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
    except ValueError:
        raise InvalidRequest(f'{label} is not valid')


def resolve_identity(subject):
    """
    Map a token subject to an Identity. The stored role wins over anything
    in the token so a role change takes effect on the next request.
    Returns None for unknown or deleted accounts.
    """
    try:
        user_id = uuid.UUID(str(subject))
    except ValueError:
        return None

    user = db.session.get(User, user_id)
    if not user:
        return None
    return Identity(id=user.user_id, role=user.role)


def require_role(identity, role):
    if identity.role != role:
        raise RoleMismatch(f'User is not a {role}')


def require_owner(identity, owner_id, message='Forbidden'):
    if identity.id != owner_id:
        raise Forbidden(message)
