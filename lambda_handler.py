"""
AWS Lambda handler for the CRM Commission Engine API.

This is the production entry point for AWS Lambda deployments.
For local development, use main.py (Flask app) instead.
"""

import base64
import json
import logging
import os

from commission_engine.handlers import (
    handle_close_deal,
    handle_generate_invoices,
    handle_move_deal,
    handle_retainer_lifecycle,
    handle_validate_move,
)

# Configure logging
logger = logging.getLogger()
logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())

# Environment (dev, staging, prod)
ENVIRONMENT = os.environ.get("ENVIRONMENT", "dev")

# CORS headers for API Gateway
CORS_HEADERS = {
    "Content-Type": "application/json",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,Authorization,X-User-Id",
    "Access-Control-Allow-Methods": "GET,POST,OPTIONS",
}


def lambda_handler(event, context):
    """
    Main Lambda entry point.

    Handles API Gateway events for:
    - GET /health
    - GET /api
    - POST /deals/validate_move
    - POST /deals/move
    - POST /deals/close
    - POST /invoices/generate_monthly
    - POST /retainers/lifecycle
    - OPTIONS (CORS preflight)

    EventBridge schedules (source "aws.events") run the monthly invoice job.
    """
    if event.get("source") == "aws.events":
        logger.info("Scheduled invoice run triggered")
        return respond(*handle_generate_invoices())

    # Handle CORS preflight
    http_method = event.get("httpMethod") or event.get("requestContext", {}).get("http", {}).get("method", "")
    if http_method == "OPTIONS":
        return {"statusCode": 200, "headers": CORS_HEADERS, "body": ""}

    # Get path (supports both REST API and HTTP API formats)
    path = event.get("path") or event.get("rawPath", "")

    # Route to appropriate handler
    if path == "/health" and http_method == "GET":
        return handle_health()
    elif path == "/api" and http_method == "GET":
        return handle_api_info()
    elif path == "/deals/validate_move" and http_method == "POST":
        return with_body(event, handle_validate_move)
    elif path == "/deals/move" and http_method == "POST":
        return with_body(event, lambda data: handle_move_deal(data, get_actor_id(event)))
    elif path == "/deals/close" and http_method == "POST":
        return with_body(event, lambda data: handle_close_deal(data, get_actor_id(event)))
    elif path == "/invoices/generate_monthly" and http_method == "POST":
        return respond(*handle_generate_invoices())
    elif path == "/retainers/lifecycle" and http_method == "POST":
        return respond(*handle_retainer_lifecycle())
    else:
        return respond(404, {"error": "Not found", "path": path})


def respond(status_code: int, body: dict) -> dict:
    return {"statusCode": status_code, "headers": CORS_HEADERS, "body": json.dumps(body)}


def get_actor_id(event) -> str | None:
    """
    Caller identity from the API Gateway authorizer claims.

    The X-User-Id header is honoured only in the dev environment, where no
    authorizer sits in front of the function.
    """
    authorizer = (event.get("requestContext") or {}).get("authorizer") or {}
    claims = authorizer.get("claims") or (authorizer.get("jwt") or {}).get("claims") or {}
    if claims.get("sub"):
        return claims["sub"]

    if ENVIRONMENT != "dev":
        return None

    headers = {k.lower(): v for k, v in (event.get("headers") or {}).items()}
    return headers.get("x-user-id") or None


def parse_body(event) -> dict:
    """
    Decode the request body.

    Raises json.JSONDecodeError for malformed JSON and ValueError for an
    empty body.
    """
    body = event.get("body", "")
    if isinstance(body, dict):
        return body
    if not body:
        raise ValueError("No input data provided")
    # Handle base64 encoded body (API Gateway)
    if event.get("isBase64Encoded"):
        body = base64.b64decode(body).decode("utf-8")
    data = json.loads(body)
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return data


def with_body(event, handler):
    try:
        data = parse_body(event)
    except json.JSONDecodeError as e:
        logger.error(f"JSON parse error: {str(e)}")
        return respond(400, {"error": f"Invalid JSON: {str(e)}", "status": "failed"})
    except ValueError as e:
        return respond(400, {"error": str(e), "status": "failed"})

    return respond(*handler(data))


def handle_health():
    """Health check endpoint."""
    return respond(200, {"status": "healthy", "environment": ENVIRONMENT})


def handle_api_info():
    """API information endpoint."""
    return respond(
        200,
        {
            "status": "ok",
            "message": "CRM Commission Engine API",
            "version": "1.0",
            "environment": ENVIRONMENT,
            "runtime": "AWS Lambda",
            "endpoints": {
                "validate_move": "/deals/validate_move [POST]",
                "move_deal": "/deals/move [POST]",
                "close_deal": "/deals/close [POST]",
                "generate_monthly_invoices": "/invoices/generate_monthly [POST]",
                "retainer_lifecycle": "/retainers/lifecycle [POST]",
                "health": "/health [GET]",
            },
        },
    )
