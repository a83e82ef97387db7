from flask import jsonify, request


def error_response(error):
    return jsonify(error.to_dict()), error.status


def json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
