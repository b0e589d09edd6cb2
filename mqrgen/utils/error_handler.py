from flask import current_app

from ..errors import EntitlementDenied, MqrgenError
from .response import api_response


def register_error_handlers(app):
    @app.errorhandler(MqrgenError)
    def domain_error(e):
        if isinstance(e, EntitlementDenied):
            current_app.logger.info(f"Entitlement denied ({e.code}): {e.message}")
        elif e.status >= 500:
            current_app.logger.error(f"{e.code}: {e.message}")
        return api_response(False, e.message, e.to_dict(), status=e.status)

    @app.errorhandler(400)
    def bad_request(e):
        return api_response(False, "Bad Request", None, status=400)

    @app.errorhandler(401)
    def unauthorized(e):
        return api_response(False, "Unauthorized", None, status=401)

    @app.errorhandler(404)
    def not_found(e):
        return api_response(False, "Not Found", None, status=404)

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_response(False, "Method Not Allowed", None, status=405)

    @app.errorhandler(500)
    def server_error(e):
        return api_response(False, "Server Error", None, status=500)
