"""
battle_core/dashboard.py — Read-only web view of a running arena.

Serves JSON at http://localhost:5000 while an agent is running:

  /                       small HTML overview (battles table)
  /api/arena              fee settings, collected fees, battle count
  /api/battles            summary of every battle
  /api/battles/<id>       one battle plus its positions
  /api/events?limit=N     most recent notifications

Started by an agent's --dashboard flag via start_in_thread(arena).
"""

import logging
import os
import threading
import time
from html import escape

from flask import Flask, Response, abort, jsonify, request

from battle_core.config import ACCESS_LOG, DASHBOARD_EVENT_LIMIT, DASHBOARD_HOST, DASHBOARD_PORT, LOGS_DIR
from battle_core.engine import battle_ids, get_battle
from battle_core.errors import BattleNotFoundError
from battle_core.models import direction_name


def _redirect_werkzeug_to_file() -> None:
    """Send Werkzeug HTTP access logs to logs/dashboard_access.log."""
    os.makedirs(LOGS_DIR, exist_ok=True)
    handler = logging.FileHandler(ACCESS_LOG)
    handler.setLevel(logging.INFO)
    logger = logging.getLogger("werkzeug")
    logger.setLevel(logging.INFO)
    logger.handlers = [handler]


def _no_cache(resp):
    """Apply standard cache-busting headers to a Flask response."""
    resp.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
    resp.headers["Pragma"]        = "no-cache"
    resp.headers["Expires"]       = "0"
    return resp


def _battle_detail(battle) -> dict:
    with battle.lock:
        detail = battle.summary()
        detail["positions"] = [
            {
                "player":    player,
                "direction": direction_name(pos.direction),
                "stake":     pos.stake,
                "claimed":   pos.claimed,
            }
            for player, pos in sorted(battle.positions.items())
        ]
    return detail


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(arena) -> Flask:
    """Build a Flask app bound to one arena."""
    app = Flask(__name__)

    @app.route("/api/arena")
    def api_arena():
        return _no_cache(jsonify(arena.summary()))

    @app.route("/api/battles")
    def api_battles():
        summaries = []
        for battle_id in battle_ids(arena):
            battle = get_battle(arena, battle_id)
            with battle.lock:
                summaries.append(battle.summary())
        return _no_cache(jsonify(summaries))

    @app.route("/api/battles/<int:battle_id>")
    def api_battle(battle_id: int):
        try:
            battle = get_battle(arena, battle_id)
        except BattleNotFoundError:
            abort(404, f"No battle {battle_id}")
        return _no_cache(jsonify(_battle_detail(battle)))

    @app.route("/api/events")
    def api_events():
        limit = request.args.get("limit", DASHBOARD_EVENT_LIMIT, type=int)
        if limit is None or limit <= 0:
            abort(400, "limit must be a positive integer")
        return _no_cache(jsonify(arena.events.to_dicts(limit=limit)))

    @app.route("/")
    def index():
        rows = []
        for battle_id in battle_ids(arena):
            battle = get_battle(arena, battle_id)
            with battle.lock:
                s = battle.summary()
            rows.append(
                f"<tr><td>{s['battle_id']}</td><td>{escape(s['asset_id'][:16])}</td>"
                f"<td>{s['open_price']}</td><td>{s['close_price']}</td>"
                f"<td>{s['outcome'] or 'OPEN'}</td><td>{s['total_up']}</td>"
                f"<td>{s['total_down']}</td><td>{s['pool']}</td></tr>"
            )
        html = (
            "<html><head><title>PriceBattle</title></head><body>"
            f"<h2>PriceBattle — fees collected: {arena.fees.value}</h2>"
            "<table border=1 cellpadding=4><tr><th>id</th><th>asset</th><th>open</th>"
            "<th>close</th><th>outcome</th><th>up</th><th>down</th><th>pool</th></tr>"
            + "".join(rows)
            + "</table></body></html>"
        )
        return _no_cache(Response(html, mimetype="text/html"))

    return app


def start_in_thread(arena, host: str = DASHBOARD_HOST, port: int = DASHBOARD_PORT) -> None:
    """
    Launch the Flask dev server in a background daemon thread.

    Raises OSError if the port is already in use.
    """
    import socket
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            s.bind((host, port))
        except OSError:
            raise OSError(f"Port {port} is already in use")

    app = create_app(arena)

    def _run():
        _redirect_werkzeug_to_file()
        app.run(host=host, port=port, use_reloader=False, threaded=True)

    t = threading.Thread(target=_run, daemon=True)
    t.start()
    time.sleep(0.3)
    print(f"\nDashboard running at → http://{host}:{port}")
