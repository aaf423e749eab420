# Overview: Route decorators mapping service exceptions onto JSON error responses.

import asyncio
from functools import wraps

from flask import current_app, jsonify

from .errors import AllocationMismatch, NotFoundError
from .store import StaleWriteError
from .validation import ConflictError, ValidationError


def run(coro):
    """Drive an async service call from a synchronous Flask view."""
    return asyncio.run(coro)


def service_errors(f):
    """
    Translate service exceptions into HTTP responses.

    ValidationError 400, ConflictError 409, NotFoundError 404,
    AllocationMismatch 422, StaleWriteError 409. Anything else is logged
    and answered with a generic 500.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except ConflictError as e:
            return jsonify({"error": str(e)}), 409
        except ValidationError as e:
            return jsonify({"error": str(e)}), 400
        except NotFoundError as e:
            return jsonify({"error": str(e), "details": e.details}), 404
        except AllocationMismatch as e:
            return jsonify({"error": str(e), "details": e.details}), 422
        except StaleWriteError as e:
            return jsonify({"error": str(e)}), 409
        except Exception:
            current_app.logger.exception("Unhandled error in %s", f.__name__)
            return jsonify({"error": "Internal server error"}), 500

    return decorated_function
