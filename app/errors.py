from flask import jsonify, request
from werkzeug.exceptions import HTTPException
from app.extensions import db
import logging

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base class for failures the API reports with a stable error kind."""

    kind = 'Error'
    status_code = 400
    default_message = 'Request failed'

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self):
        return {'ok': False, 'error': self.kind, 'message': self.message}


class Unauthenticated(ServiceError):
    kind = 'Unauthenticated'
    status_code = 401
    default_message = 'Not logged in'


class Forbidden(ServiceError):
    kind = 'Forbidden'
    status_code = 403
    default_message = 'Insufficient permissions'


class NotFound(ServiceError):
    kind = 'NotFound'
    status_code = 404
    default_message = 'Resource not found'


class InvalidTransition(ServiceError):
    kind = 'InvalidTransition'
    status_code = 409
    default_message = 'Order status does not allow this operation'


class InvalidState(InvalidTransition):
    # Payment sub-state precondition failed (e.g. refund of unpaid order).
    default_message = 'Payment status does not allow this operation'


class InvalidAmount(ServiceError):
    kind = 'InvalidAmount'
    status_code = 400
    default_message = 'Invalid amount'


class AlreadyRated(ServiceError):
    kind = 'AlreadyRated'
    status_code = 409
    default_message = 'Order has already been rated'


class DuplicateIdentity(ServiceError):
    kind = 'DuplicateIdentity'
    status_code = 409
    default_message = 'Account already exists'


class DuplicateKey(ServiceError):
    kind = 'DuplicateKey'
    status_code = 409
    default_message = 'An entry with this name or code already exists'


class InvalidCredential(ServiceError):
    kind = 'InvalidCredential'
    status_code = 401
    default_message = 'Invalid password'


class ValidationError(ServiceError):
    kind = 'ValidationError'
    status_code = 400
    default_message = 'Input validation failed'

    def __init__(self, fields, message=None):
        super().__init__(message)
        # field name -> message, one entry per failing field
        self.fields = dict(fields)

    def to_dict(self):
        data = super().to_dict()
        data['fields'] = [
            {'field': name, 'message': msg}
            for name, msg in self.fields.items()
        ]
        return data


def register_error_handlers(app):

    @app.errorhandler(ServiceError)
    def handle_service_error(error):
        if error.status_code >= 500:
            logger.error("Service error: %s", error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({
            'ok': False,
            'error': error.name.replace(' ', ''),
            'message': error.description,
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        logger.exception(
            "Unhandled error on %s %s", request.method, request.path)
        db.session.rollback()
        return jsonify({
            'ok': False,
            'error': 'InternalError',
            'message': 'Internal server error',
        }), 500
