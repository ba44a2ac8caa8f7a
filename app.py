# Power Control Server (Flask) — devices poll, operators authenticate

import datetime
import json
import logging
from typing import Optional

from flask import Flask, current_app, g, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from auth import check_credentials, issue_token, require_token
from device_store import DeviceStores, StoreError
from settings import Settings

logger = logging.getLogger("power_control")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO"):
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def _stores() -> DeviceStores:
    return current_app.extensions["power_control"]


def _now_iso() -> str:
    return datetime.datetime.now().isoformat()


def _json_body():
    """Return the request body as a dict, or None if it is not a JSON object."""
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return None
    return body


def _invalid_json():
    return jsonify({"error": "invalid json"}), 400


def create_app(settings: Optional[Settings] = None, stores: Optional[DeviceStores] = None) -> Flask:
    """Build the Flask app around one set of device stores."""
    settings = settings or Settings.from_env()
    stores = stores or DeviceStores()

    app = Flask(__name__)
    app.config["POWER_CONTROL_SETTINGS"] = settings
    app.extensions["power_control"] = stores
    CORS(app)  # Enable CORS for all routes

    if not settings.auth_enabled:
        logger.warning("[AUTH] Authentication disabled: operator routes are open")

    # Log all incoming requests
    @app.before_request
    def log_request_info():
        logger.debug("[REQUEST] %s %s from %s", request.method, request.path, request.remote_addr)

    # ---------------- Error handlers ----------------

    @app.errorhandler(StoreError)
    def handle_store_error(e):
        logger.info("[%s] %s %s -> %d %s", type(e).__name__, request.method, request.path, e.status_code, e)
        return jsonify({"error": str(e)}), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({"error": e.description or e.name}), e.code

    # ---------------- Basic routes ----------------

    @app.route("/", methods=["GET"])
    def index():
        return "Power Control Server is running"

    @app.route("/health", methods=["GET"])
    def health():
        s = _stores()
        return jsonify({
            "status": "ok",
            "devices": len(s.registry),
            "pendingCommands": len(s.commands),
            "configs": len(s.configs),
            "authEnabled": settings.auth_enabled,
        })

    @app.route("/login", methods=["POST"])
    def login():
        body = _json_body()
        if body is None:
            return _invalid_json()
        username = body.get("username")
        password = body.get("password")

        if check_credentials(username, password, settings):
            token = issue_token(username, settings.jwt_secret, settings.token_expires_seconds)
            logger.info("[LOGIN] %s logged in", username)
            return jsonify({"token": token})

        logger.info("[LOGIN] login failed (%s)", username)
        return jsonify({"error": "Invalid username or password"}), 401

    # ============ STATUS ENDPOINTS ============

    @app.route("/status", methods=["POST"])
    def report_status():
        """
        Device uploads its latest telemetry.
        Body: {deviceId, current, ...relayData}
        """
        body = _json_body()
        if body is None:
            return _invalid_json()
        relay_data = {k: v for k, v in body.items() if k not in ("deviceId", "current")}

        record = _stores().registry.report_status(body.get("deviceId"), body.get("current"), relay_data)

        logger.info("[STATUS] %s | %s -> current: %sA", _now_iso(), record.device_id, record.current)
        logger.debug("[STATUS] details: %s", json.dumps(relay_data))
        return jsonify({"result": "ok"})

    @app.route("/status/<device_id>", methods=["GET"])
    @require_token
    def get_status(device_id):
        record = _stores().registry.get_status(device_id)
        logger.info("[STATUS-GET] %s requested status of %s", _operator(), device_id)
        return jsonify(record.to_dict())

    # ============ COMMAND ENDPOINTS ============

    @app.route("/command", methods=["POST"])
    @require_token
    def enqueue_command():
        """
        Operator queues a relay command for a device.
        Body: {deviceId, command, relay, scheduleTime (optional)}
        """
        body = _json_body()
        if body is None:
            return _invalid_json()
        device_id = body.get("deviceId")
        cmd = _stores().commands.enqueue(device_id, body.get("command"), body.get("relay"),
                                         schedule_time=body.get("scheduleTime"))

        logger.info("[COMMAND] %s | %s -> %s | relay: %s | command: %s",
                    _now_iso(), _operator(), device_id, cmd.relay, cmd.command)
        return jsonify({"result": "queued"})

    @app.route("/command", methods=["GET"])
    def take_command():
        """
        Device polls for its pending command. The command is handed out once.
        """
        device_id = request.args.get("deviceId")
        if not device_id:
            return jsonify({"error": "deviceId required"}), 400

        cmd = _stores().commands.dequeue(device_id)
        if cmd is None:
            logger.debug("[COMMAND] %s | %s -> waiting (no command)", _now_iso(), device_id)
            return jsonify({})

        logger.info("[COMMAND] %s | %s picked up | relay: %s | command: %s",
                    _now_iso(), device_id, cmd.relay, cmd.command)
        return jsonify(cmd.to_dict())

    # ============ CONFIGURATION ENDPOINTS ============

    @app.route("/config", methods=["GET"])
    def get_config():
        device_id = request.args.get("deviceId")
        if not device_id:
            return jsonify({"error": "deviceId required"}), 400

        config = _stores().configs.get_config(device_id)
        if config is None:
            logger.debug("[CONFIG] %s | %s has no saved config", _now_iso(), device_id)
            return jsonify({})

        logger.info("[CONFIG] %s | sending config to %s: %s", _now_iso(), device_id, json.dumps(config))
        return jsonify(config)

    @app.route("/config", methods=["POST"])
    @require_token
    def save_config():
        """
        Operator saves a configuration blob for a device.
        Body: {deviceId, config: {...}}
        """
        body = _json_body()
        if body is None:
            return _invalid_json()
        device_id = body.get("deviceId")
        config = _stores().configs.save_config(device_id, body.get("config"))

        logger.info("[CONFIG] %s | %s saved config for %s: %s",
                    _now_iso(), _operator(), device_id, json.dumps(config))
        return jsonify({"result": "saved"})

    return app


def _operator() -> str:
    user = g.get("user")
    if user:
        return str(user.get("username", "operator"))
    return "anonymous"


def main():
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    app = create_app(settings)
    logger.info("Server is running on port %d", settings.port)
    app.run(host=settings.host, port=settings.port, threaded=True)


if __name__ == "__main__":
    main()
