"""
Service errors and the result boundary.

Inside a service, failures are raised so one handler can roll back the
session. At the boundary (@service_result) they become (value, error)
tuples, the same shape update_order_status-style helpers return.
"""

import functools
from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError
from vending.extensions import db


class ServiceError(Exception):
    code = 'INTERNAL_ERROR'
    status = 500
    default_message = 'Something failed'

    def __init__(self, message=None, details=None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self):
        body = {'error': self.message, 'error_code': self.code}
        if self.details:
            body['details'] = self.details
        return body


class ValidationError(ServiceError):
    code = 'VALIDATION_ERROR'
    status = 400
    default_message = 'Validation failed'


class InvalidRequest(ServiceError):
    code = 'INVALID_REQUEST'
    status = 400
    default_message = 'Invalid request'


class InvalidDenomination(ServiceError):
    code = 'INVALID_DENOMINATION'
    status = 400
    default_message = 'Invalid coin'


class Unauthorized(ServiceError):
    code = 'UNAUTHORIZED'
    status = 401
    default_message = 'Invalid username or password'


class InsufficientBalance(ServiceError):
    code = 'INSUFFICIENT_BALANCE'
    status = 402
    default_message = 'Insufficient deposit'


class Forbidden(ServiceError):
    code = 'FORBIDDEN'
    status = 403
    default_message = 'Forbidden'


class RoleMismatch(Forbidden):
    code = 'ROLE_MISMATCH'


class NotFound(ServiceError):
    code = 'NOT_FOUND'
    status = 404
    default_message = 'Not found'


class InsufficientStock(ServiceError):
    code = 'INSUFFICIENT_STOCK'
    status = 409
    default_message = 'Not enough stock'


class Conflict(ServiceError):
    """Concurrent modification detected; the only error worth retrying."""
    code = 'CONFLICT'
    status = 409
    default_message = 'Concurrent update, please retry'


class InternalError(ServiceError):
    pass


# PostgreSQL lock_not_available, raised when lock_timeout expires
LOCK_NOT_AVAILABLE = '55P03'


def is_lock_timeout(error):
    return getattr(error.orig, 'pgcode', None) == LOCK_NOT_AVAILABLE


def service_result(func):
    """Run func, returning (value, None) or (None, ServiceError).

    Any failure rolls the session back so no half-applied change survives.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs), None
        except ServiceError as e:
            db.session.rollback()
            if isinstance(e, Conflict):
                current_app.logger.warning('%s: %s', func.__name__, e.message)
            else:
                current_app.logger.info('%s rejected: %s', func.__name__, e.code)
            return None, e
        except StaleDataError as e:
            db.session.rollback()
            current_app.logger.warning('%s lost an update race: %s', func.__name__, e)
            return None, Conflict()
        except OperationalError as e:
            db.session.rollback()
            if not is_lock_timeout(e):
                current_app.logger.exception('%s failed', func.__name__)
                return None, InternalError()
            current_app.logger.warning('%s timed out on a row lock', func.__name__)
            return None, Conflict()
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception('%s failed', func.__name__)
            return None, InternalError()
    return wrapper
