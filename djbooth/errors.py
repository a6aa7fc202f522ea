import logging
import traceback
from functools import wraps
from flask import jsonify


logger = logging.getLogger(__name__)


class ApiError(Exception):
    """
    Expected failure of an API call, rendered as a JSON body ``{"error": message, **payload}``.
    """
    status_code = 500

    def __init__(self, message, status_code=None, **payload):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        return {"error": self.message, **self.payload}


class BadRequest(ApiError):
    status_code = 400


class Unauthorized(ApiError):
    status_code = 401


class NotFound(ApiError):
    status_code = 404


class Conflict(ApiError):
    status_code = 409


class TooManyRequests(ApiError):
    status_code = 429


class UpstreamError(ApiError):
    status_code = 502


def register_error_handlers(app):

    @app.errorhandler(ApiError)
    def handle_api_error(error):
        return jsonify(error.to_dict()), error.status_code


def json_errors(failure_message):
    """
    Wrap a view so expected ApiErrors pass through to the app error handler and
    anything else is logged with its traceback and answered with a generic 500.
    """
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            try:
                return view(*args, **kwargs)
            except ApiError:
                raise
            except Exception as e:
                logger.error(f"{failure_message}: {e}\n" + traceback.format_exc())
                return jsonify({"error": failure_message}), 500
        return wrapper
    return decorator
