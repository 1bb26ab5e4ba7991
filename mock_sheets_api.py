"""Reference spreadsheet backend.

Flask server speaking the same protocol as the deployed spreadsheet script:
- GET  /exec?action=test|ping|list
- POST /exec  (text/plain JSON body {action, ...})
    create, update, delete, clear (optional storeId), syncAll

Rows are kept in memory with the wire field names
{id, date, time, client, phone, store, storeId, notes, created}.

Run with: python mock_sheets_api.py
"""
import json
from datetime import datetime, UTC

from flask import Flask, jsonify, request
from flask_cors import CORS

from agenda import config
from agenda.logging_config import RequestIDMiddleware, get_logger, setup_structured_logging
from agenda.models import default_store_name, generate_appointment_id

logger = get_logger(__name__)

RECORD_FIELDS = ("date", "time", "client", "phone", "store", "storeId", "notes")


def _same_id(a, b) -> bool:
    try:
        return int(float(a)) == int(float(b))
    except (TypeError, ValueError):
        return False


def _row(body: dict, row_id, created=None) -> dict:
    store_id = body.get("storeId", config.GENERAL_STORE_ID)
    return {
        "id": row_id,
        "date": body.get("date"),
        "time": body.get("time"),
        "client": body.get("client", ""),
        "phone": body.get("phone", ""),
        "store": body.get("store") or default_store_name(store_id),
        "storeId": store_id,
        "notes": body.get("notes") or "",
        "created": created or body.get("created") or datetime.now(UTC).isoformat(),
    }


def create_app(rows=None) -> Flask:
    """
    Build the server.

    Args:
        rows: Initial rows (wire records); the list is used in place

    Returns:
        Flask app with its own in-memory sheet
    """
    app = Flask(__name__)
    CORS(app)
    app.wsgi_app = RequestIDMiddleware(app.wsgi_app)

    sheet = rows if rows is not None else []
    app.config["SHEET_ROWS"] = sheet

    def find(row_id):
        return next((r for r in sheet if _same_id(r["id"], row_id)), None)

    @app.route('/exec', methods=['GET'])
    def handle_get():
        """Connectivity check and listing."""
        action = request.args.get('action', 'test')

        if action in ('test', 'ping'):
            return jsonify({"ok": True, "message": "Connection OK"})

        if action == 'list':
            return jsonify({"ok": True, "data": list(sheet)})

        return jsonify({"ok": False, "err": f"unknown action: {action}"})

    @app.route('/exec', methods=['POST'])
    def handle_post():
        """Mutations. The body is JSON sent as text/plain."""
        try:
            body = json.loads(request.get_data(as_text=True) or "{}")
        except ValueError:
            return jsonify({"ok": False, "err": "malformed request"}), 400
        if not isinstance(body, dict):
            return jsonify({"ok": False, "err": "malformed request"}), 400

        action = body.get("action")
        logger.info("sheet_request", action=action)

        if action == 'create':
            row_id = body.get("id")
            if row_id not in (None, "", 0):
                existing = find(row_id)
                if existing is not None:
                    # Retried create: same id, nothing new written
                    return jsonify({"ok": True, "id": existing["id"]})
            else:
                row_id = generate_appointment_id()
            sheet.append(_row(body, row_id))
            return jsonify({"ok": True, "id": row_id})

        if action == 'update':
            row = find(body.get("id"))
            if row is None:
                return jsonify({"ok": False, "err": "not found"})
            for name in RECORD_FIELDS:
                if name in body:
                    row[name] = body[name]
            return jsonify({"ok": True})

        if action == 'delete':
            row = find(body.get("id"))
            if row is None:
                return jsonify({"ok": False, "err": "not found"})
            sheet.remove(row)
            return jsonify({"ok": True})

        if action == 'clear':
            store_id = body.get("storeId")
            before = len(sheet)
            if store_id is None:
                sheet.clear()
            else:
                sheet[:] = [r for r in sheet if not _same_id(r.get("storeId"), store_id)]
            return jsonify({"ok": True, "count": before - len(sheet)})

        if action == 'syncAll':
            appointments = body.get("appointments") or []
            sheet[:] = [
                _row(a, a.get("id") or generate_appointment_id(), a.get("created"))
                for a in appointments
                if isinstance(a, dict)
            ]
            return jsonify({"ok": True, "count": len(sheet)})

        return jsonify({"ok": False, "err": f"unknown action: {action}"})

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({"status": "healthy", "rows": len(sheet)})

    return app


if __name__ == '__main__':
    setup_structured_logging()
    print("=" * 70)
    print("Reference spreadsheet backend")
    print(f"URL: {config.MOCK_SHEETS_BASE_URL}")
    print("   GET  /exec?action=test|ping|list")
    print("   POST /exec  create | update | delete | clear | syncAll")
    print("=" * 70)
    create_app().run(
        debug=True,
        port=config.MOCK_SHEETS_PORT,
        host='0.0.0.0'
    )
