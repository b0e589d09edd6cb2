from flask import jsonify


def api_response(success: bool, message: str, data: dict | list | None = None, status: int = 200):
    return jsonify({
        "success": success,
        "message": message,
        "data": data
    }), status
