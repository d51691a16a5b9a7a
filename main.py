from flask import Flask, request, jsonify
from flask_cors import CORS
from commission_engine.config import Settings
from commission_engine.handlers import (
    handle_close_deal,
    handle_generate_invoices,
    handle_move_deal,
    handle_retainer_lifecycle,
    handle_validate_move,
)
import logging

settings = Settings.from_env()

# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = Flask(__name__)

# Enable CORS for all routes
CORS(app)


def get_actor_id():
    return request.headers.get("X-User-Id") or None


def get_input():
    """Request JSON as a dict, or None when missing or not an object."""
    input_data = request.get_json(force=True, silent=True)
    if not isinstance(input_data, dict) or not input_data:
        return None
    return input_data


def no_input():
    return jsonify({
        "error": "No input data provided",
        "status": "failed"
    }), 400


@app.route("/api", methods=["GET"])
def api_info():
    """API information endpoint"""
    return jsonify({
        "status": "ok",
        "message": "CRM Commission Engine API",
        "version": "1.0",
        "environment": settings.environment,
        "endpoints": {
            "validate_move": "/deals/validate_move [POST]",
            "move_deal": "/deals/move [POST]",
            "close_deal": "/deals/close [POST]",
            "generate_monthly_invoices": "/invoices/generate_monthly [POST]",
            "retainer_lifecycle": "/retainers/lifecycle [POST]",
            "health": "/health [GET]"
        }
    }), 200


@app.route("/health", methods=["GET"])
def health():
    """Health check for monitoring"""
    return jsonify({"status": "healthy"}), 200


@app.route("/deals/validate_move", methods=["POST"])
def validate_move():
    input_data = get_input()
    if input_data is None:
        return no_input()
    status, body = handle_validate_move(input_data)
    return jsonify(body), status


@app.route("/deals/move", methods=["POST"])
def move_deal():
    input_data = get_input()
    if input_data is None:
        return no_input()
    status, body = handle_move_deal(input_data, get_actor_id())
    return jsonify(body), status


@app.route("/deals/close", methods=["POST"])
def close_deal():
    """
    Close a deal as won: commissions, deal update, first retainer invoice
    """
    input_data = get_input()
    if input_data is None:
        return no_input()

    logger.info(f"Closing deal: {input_data.get('deal_id', 'Unknown')}")
    status, body = handle_close_deal(input_data, get_actor_id())
    return jsonify(body), status


@app.route("/invoices/generate_monthly", methods=["POST"])
def generate_monthly_invoices():
    status, body = handle_generate_invoices()
    return jsonify(body), status


@app.route("/retainers/lifecycle", methods=["POST"])
def retainer_lifecycle():
    status, body = handle_retainer_lifecycle()
    return jsonify(body), status


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=settings.port, debug=False)
