"""
Accounts — registration, login and own-profile management.

Writes go through explicit steps: validate -> hash password (only when a new
one is given) -> persist. Nothing is hashed or checked implicitly on save.
"""

from sqlalchemy.exc import IntegrityError
from vending.extensions import db
from vending.models.user import ROLES, User
from vending.services.errors import (
    Conflict,
    NotFound,
    Unauthorized,
    ValidationError,
    service_result,
)
from vending.services.identity import parse_uuid, require_owner
from vending.services.locks import account_key, fetch_for_update, key_locks, lock_timeout

USERNAME_MIN, USERNAME_MAX = 5, 20
PASSWORD_MIN = 5
# bcrypt only looks at the first 72 bytes and rejects anything longer
PASSWORD_MAX_BYTES = 72

ACCOUNT_FIELDS = ('username', 'password', 'role')


def validate_account_fields(data, partial=False):
    """Return the cleaned subset of ACCOUNT_FIELDS or raise ValidationError."""
    errors = {}
    cleaned = {}

    for field in ACCOUNT_FIELDS:
        if field not in data or data[field] is None:
            if not partial:
                errors[field] = 'is required'
            continue
        value = data[field]
        if not isinstance(value, str):
            errors[field] = 'must be a string'
            continue

        if field == 'username':
            value = value.strip()
            if not USERNAME_MIN <= len(value) <= USERNAME_MAX:
                errors[field] = f'must be {USERNAME_MIN}-{USERNAME_MAX} characters'
                continue
        elif field == 'password':
            if len(value) < PASSWORD_MIN:
                errors[field] = f'must be at least {PASSWORD_MIN} characters'
                continue
            if len(value.encode('utf-8')) > PASSWORD_MAX_BYTES:
                errors[field] = f'must be at most {PASSWORD_MAX_BYTES} bytes'
                continue
        elif field == 'role' and value not in ROLES:
            errors[field] = f'{value} is not a valid role'
            continue

        cleaned[field] = value

    if errors:
        raise ValidationError(details=errors)
    return cleaned


def _ensure_username_free(username, user_id=None):
    existing = User.query.filter_by(username=username).first()
    if existing and existing.user_id != user_id:
        raise Conflict('User already exists')


def _commit_account():
    try:
        db.session.commit()
    except IntegrityError:
        # Lost a race on the unique username index
        db.session.rollback()
        raise Conflict('User already exists')


@service_result
def register(data):
    fields = validate_account_fields(data)
    _ensure_username_free(fields['username'])

    user = User(username=fields['username'], role=fields['role'], deposit=0)
    user.set_password(fields['password'])

    db.session.add(user)
    _commit_account()
    return user


@service_result
def authenticate(username, password):
    if not isinstance(username, str) or not isinstance(password, str):
        raise Unauthorized()

    user = User.query.filter_by(username=username.strip()).first()
    if not user or len(password.encode('utf-8')) > PASSWORD_MAX_BYTES:
        raise Unauthorized()
    if not user.check_password(password):
        raise Unauthorized()
    return user


def _own_account(identity, user_id):
    user_id = parse_uuid(user_id, 'User ID')
    require_owner(identity, user_id, 'Unauthorized to access this profile')
    user = fetch_for_update(User, user_id)
    if not user:
        raise NotFound('User not found')
    return user


@service_result
def get_account(identity, user_id):
    return _own_account(identity, user_id)


@service_result
def update_account(identity, user_id, data):
    """
    Apply username/role/password field by field to a freshly read row.
    deposit is not an updatable field here.
    """
    fields = validate_account_fields(data, partial=True)

    with key_locks.hold(account_key(identity.id), timeout=lock_timeout()):
        user = _own_account(identity, user_id)

        if 'username' in fields and fields['username'] != user.username:
            _ensure_username_free(fields['username'], user.user_id)
            user.username = fields['username']
        if 'role' in fields:
            user.role = fields['role']
        if 'password' in fields:
            user.set_password(fields['password'])

        _commit_account()
        return user


@service_result
def delete_account(identity, user_id):
    with key_locks.hold(account_key(identity.id), timeout=lock_timeout()):
        user = _own_account(identity, user_id)
        snapshot = user.to_dict()
        db.session.delete(user)
        db.session.commit()
        return snapshot
