"""REST API v1: renewal control, operation status, bundles and the event stream."""

import json
import logging
import secrets
from dataclasses import fields
from pathlib import Path

from flask import Blueprint, Response, current_app, g, jsonify, request, send_file

from renewal.audit import AuditAction
from renewal.broadcaster import ADMIN_TOPIC, EVENT_SNAPSHOT, connection_topic
from renewal.connection import Connection, validate_connection
from renewal.errors import ConflictError, ValidationError
from sslcert.bundle_store import BUNDLE_FILES, PRODUCTION, STAGING
from web.services import (
    get_audit_log,
    get_broadcaster,
    get_bundle_store,
    get_connection_store,
    get_operation_registry,
    get_orchestrator,
    get_scheduler,
    get_settings_store,
    reload_engine,
)
from web.scheduler import check_scheduler_settings
from web.settings_store import MASK, SECTIONS

logger = logging.getLogger(__name__)

bp = Blueprint("api", __name__)

KEEPALIVE_SECONDS = 15
SECRET_FIELDS = ("password", "general_private_key", "ise_private_key")
# Sections read once when the orchestrator and scheduler are built
ENGINE_SECTIONS = ("acme", "dns", "scheduler")


@bp.before_request
def api_auth():
    """Require a valid X-API-Key once any key is configured."""
    g.api_user = None
    if request.endpoint == "api.health":
        return
    stored_keys = get_settings_store().get_section("api_keys")
    if not stored_keys:
        return

    api_key = request.headers.get("X-API-Key") or request.args.get("api_key")
    if api_key:
        for key_name, key_value in stored_keys.items():
            if secrets.compare_digest(api_key, str(key_value)):
                g.api_user = f"api:{key_name}"
                return

    return jsonify({"error": "Authentication required. Provide X-API-Key header."}), 401


def _error(message, status=400, **extra):
    body = {"error": message}
    body.update(extra)
    return jsonify(body), status


def _requested_by() -> str:
    return g.get("api_user") or "user"


def _environment_arg(connection):
    env = request.args.get("env") or get_orchestrator().environment_for(connection)
    if env not in (STAGING, PRODUCTION):
        return None
    return env


@bp.route("/health")
def health():
    return jsonify({"status": "healthy", "version": "0.1.0"})


# ── Connections ──────────────────────────────────────────────────────

@bp.route("/connections")
def list_connections():
    return jsonify([c.to_public_dict() for c in get_connection_store().list_all()])


@bp.route("/connections", methods=["POST"])
def create_connection():
    payload = request.get_json(silent=True) or {}
    if not payload.get("name"):
        return _error("Missing required field: name")
    payload.pop("id", None)
    try:
        connection = Connection.from_dict(payload)
        validate_connection(connection)
    except ValidationError as e:
        return _error(str(e), 400, details=e.details)
    except ValueError as e:
        return _error(f"Invalid connection: {e}")
    get_connection_store().add(connection)
    return jsonify(connection.to_public_dict()), 201


@bp.route("/connections/<connection_id>")
def get_connection(connection_id):
    connection = get_connection_store().get(connection_id)
    if not connection:
        return _error("Connection not found", 404)
    data = connection.to_public_dict()
    data["days_until_expiry"] = connection.days_until_expiry
    active = get_operation_registry().active_for_connection(connection_id)
    data["active_operation_id"] = active.id if active else None
    return jsonify(data)


@bp.route("/connections/<connection_id>", methods=["PUT"])
def update_connection(connection_id):
    store = get_connection_store()
    connection = store.get(connection_id)
    if not connection:
        return _error("Connection not found", 404)

    payload = request.get_json(silent=True) or {}
    for key in SECRET_FIELDS:
        if payload.get(key) == MASK:
            payload.pop(key)
    merged = connection.to_dict()
    merged.update({k: v for k, v in payload.items() if k not in ("id", "created_at")})
    try:
        candidate = Connection.from_dict(merged)
        validate_connection(candidate)
    except ValidationError as e:
        return _error(str(e), 400, details=e.details)
    except ValueError as e:
        return _error(f"Invalid connection: {e}")

    changes = {f.name: getattr(candidate, f.name) for f in fields(Connection)
               if f.name not in ("id", "created_at", "updated_at")}
    updated = store.update(connection_id, **changes)
    return jsonify(updated.to_public_dict())


@bp.route("/connections/<connection_id>", methods=["DELETE"])
def delete_connection(connection_id):
    if get_operation_registry().active_for_connection(connection_id):
        return _error("Cannot delete a connection while a renewal is running", 409)
    if not get_connection_store().remove(connection_id):
        return _error("Connection not found", 404)
    return jsonify({"deleted": True})


@bp.route("/connections/<connection_id>/test", methods=["POST"])
def test_connection(connection_id):
    connection = get_connection_store().get(connection_id)
    if not connection:
        return _error("Connection not found", 404)
    orchestrator = get_orchestrator()
    try:
        adapter = orchestrator.adapter_factory(connection)
    except ValidationError as e:
        return _error(str(e))
    result = adapter.test_connection(connection)
    return jsonify(result.to_dict()), 200 if result.success else 502


@bp.route("/connections/<connection_id>/log")
def connection_log(connection_id):
    if not get_connection_store().get(connection_id):
        return _error("Connection not found", 404)
    tail = request.args.get("tail", 200, type=int)
    return jsonify({"lines": get_bundle_store().read_log(connection_id, tail=tail)})


# ── Renewals ─────────────────────────────────────────────────────────

@bp.route("/connections/<connection_id>/renew", methods=["POST"])
def start_renewal(connection_id):
    try:
        operation = get_orchestrator().start_renewal(connection_id, created_by=_requested_by())
    except LookupError:
        return _error("Connection not found", 404)
    except ValidationError as e:
        return _error(str(e), 400, details=e.details)
    except ConflictError as e:
        return _error(str(e), 409, operation_id=e.details.get("operation_id"))

    data = operation.to_dict()
    data["operation_id"] = operation.id
    return jsonify(data), 202


@bp.route("/connections/<connection_id>/operations")
def connection_operations(connection_id):
    registry = get_operation_registry()
    if request.args.get("all"):
        operations = registry.for_connection(connection_id)
    else:
        operations = [op for op in registry.for_connection(connection_id) if not op.is_terminal]
    return jsonify([op.to_dict() for op in operations])


@bp.route("/operations/<operation_id>")
def get_operation(operation_id):
    operation = get_operation_registry().get(operation_id)
    if not operation:
        return _error("Operation not found", 404)
    return jsonify(operation.to_dict())


def _cancel(operation_id):
    registry = get_operation_registry()
    operation = registry.get(operation_id)
    if not operation:
        return _error("Operation not found", 404)
    if not get_orchestrator().cancel(operation_id):
        return _error(f"Operation already {operation.status.value}", 409)
    logger.info("Operation %s cancel requested by %s", operation_id, _requested_by())
    return jsonify({"cancelled": True, "operation_id": operation_id}), 202


@bp.route("/operations/<operation_id>/cancel", methods=["POST"])
def cancel_operation(operation_id):
    return _cancel(operation_id)


@bp.route("/admin/operations")
def admin_operations():
    registry = get_operation_registry()
    operations = registry.list_all() if request.args.get("all") else registry.list_active()
    operations = sorted(operations, key=lambda op: op.started_at, reverse=True)
    return jsonify([op.to_dict() for op in operations])


@bp.route("/admin/operations/<operation_id>/cancel", methods=["POST"])
def admin_cancel_operation(operation_id):
    return _cancel(operation_id)


# ── Scheduler ────────────────────────────────────────────────────────

@bp.route("/scheduler/status")
def scheduler_status():
    return jsonify(get_scheduler().status())


@bp.route("/scheduler/run", methods=["POST"])
def scheduler_run():
    summary = get_scheduler().sweep()
    if summary.get("overlap"):
        return _error("A sweep is already in progress", 409)
    return jsonify(summary)


# ── Certificate bundles ──────────────────────────────────────────────

@bp.route("/connections/<connection_id>/certificate")
def certificate_metadata(connection_id):
    connection = get_connection_store().get(connection_id)
    if not connection:
        return _error("Connection not found", 404)
    env = _environment_arg(connection)
    if env is None:
        return _error("env must be 'staging' or 'production'")

    store = get_bundle_store()
    bundle = store.load_bundle(connection_id, env)
    if bundle is None:
        return _error(f"No {env} certificate for this connection", 404)
    return jsonify({
        "connection_id": connection_id,
        "environment": env,
        "fqdn": bundle.fqdn or connection.fqdn,
        "metadata": bundle.metadata,
        "files": store.list_files(connection_id, env),
    })


@bp.route("/connections/<connection_id>/certificate/<kind>")
def download_certificate(connection_id, kind):
    connection = get_connection_store().get(connection_id)
    if not connection:
        return _error("Connection not found", 404)
    if kind not in BUNDLE_FILES:
        return _error(f"Unknown file type: {kind}", 404)
    env = _environment_arg(connection)
    if env is None:
        return _error("env must be 'staging' or 'production'")

    path = get_bundle_store().file_path(connection_id, env, kind)
    if path is None:
        return _error(f"No {kind} file for this connection ({env})", 404)

    base = (connection.fqdn or connection_id).replace("*", "wildcard")
    download_name = f"{base}_{kind}{Path(BUNDLE_FILES[kind]).suffix}"
    try:
        get_audit_log().log(AuditAction.CERTIFICATE_DOWNLOAD, connection_id,
                            f"{kind} ({env})", user=_requested_by())
    except OSError:
        logger.exception("Failed to log certificate download to audit")
    return send_file(path, as_attachment=True, download_name=download_name,
                     mimetype="application/x-pem-file")


# ── Audit ────────────────────────────────────────────────────────────

@bp.route("/admin/audit")
def audit_entries():
    """Recent audit entries, newest first (``action``, ``target``, ``limit``)."""
    action = request.args.get("action") or None
    if action:
        try:
            action = AuditAction(action)
        except ValueError:
            return _error(f"Unknown audit action: {action}",
                          actions=[a.value for a in AuditAction])
    limit = request.args.get("limit", 100, type=int)
    entries = get_audit_log().filter(action=action, target=request.args.get("target"),
                                     limit=max(1, min(limit, 1000)))
    return jsonify([e.to_dict() for e in entries])


# ── Settings ─────────────────────────────────────────────────────────

@bp.route("/settings/<section>")
def get_settings(section):
    if section not in SECTIONS:
        return _error(f"Unknown settings section: {section}", 404)
    return jsonify(get_settings_store().masked_section(section))


@bp.route("/settings/<section>", methods=["PUT"])
def update_settings(section):
    if section not in SECTIONS:
        return _error(f"Unknown settings section: {section}", 404)
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return _error("Expected a JSON object")
    if section == "scheduler":
        try:
            check_scheduler_settings(payload)
        except (TypeError, ValueError) as e:
            return _error(f"Invalid scheduler settings: {e}")
    store = get_settings_store()
    store.set_section(section, payload)
    if section in ENGINE_SECTIONS:
        scheduler = reload_engine(start_scheduler=not current_app.config.get("TESTING"))
        if scheduler.running:
            current_app.extensions["netssl_scheduler"] = scheduler
    return jsonify(store.masked_section(section))


# ── Event stream ─────────────────────────────────────────────────────

def format_sse(name: str, data) -> str:
    return f"event: {name}\ndata: {json.dumps(data, default=str)}\n\n"


def event_stream(broadcaster, subscription, snapshot, keepalive=KEEPALIVE_SECONDS):
    """Yield the snapshot, then live events, until the client disconnects."""
    try:
        yield format_sse(EVENT_SNAPSHOT, snapshot)
        while True:
            event = subscription.get(timeout=keepalive)
            if event is None:
                yield ": keepalive\n\n"
                continue
            yield format_sse(event.name, event.data)
    finally:
        broadcaster.unsubscribe(subscription)


@bp.route("/events")
def events():
    connection_id = request.args.get("connection_id")
    admin = request.args.get("admin") in ("1", "true", "yes")
    if not connection_id and not admin:
        return _error("Provide connection_id or admin=1")

    topics = []
    if connection_id:
        topics.append(connection_topic(connection_id))
    if admin:
        topics.append(ADMIN_TOPIC)

    broadcaster = get_broadcaster()
    subscription = broadcaster.subscribe(topics)
    snapshot = broadcaster.snapshot(None if admin else connection_id)
    return Response(
        event_stream(broadcaster, subscription, snapshot),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
