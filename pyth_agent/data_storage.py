"""
data_storage.py — Save and load arena state snapshots as JSON.

Snapshots are for people and tools watching a run (status.py, the
dashboard, post-mortems). They are written atomically (temp file + rename)
so a reader never sees a half-written file.

File layout:
  data/state_{name}.json   — latest snapshot of one named run
"""

import json
import os
from datetime import datetime, timezone
from typing import Optional

from battle_core.engine import Arena
from battle_core.models import direction_name
from pyth_agent.config import DATA_DIR


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def state_path(name: str) -> str:
    """Return the JSON path for a named run's snapshot."""
    return os.path.join(DATA_DIR, f"state_{name}.json")


def build_snapshot(arena: Arena, name: str, event_limit: int = 50) -> dict:
    """Collect everything worth showing about `arena` into a plain dict."""
    battles = []
    with arena._lock:
        all_battles = [arena.battles[i] for i in sorted(arena.battles)]
    for battle in all_battles:
        with battle.lock:
            entry = battle.summary()
            entry["positions"] = {
                player: {
                    "direction": direction_name(pos.direction),
                    "stake":     pos.stake,
                    "claimed":   pos.claimed,
                }
                for player, pos in battle.positions.items()
            }
        battles.append(entry)

    return {
        "updated_at":    datetime.now(timezone.utc).isoformat(),
        "instance_name": name,
        "arena":         arena.summary(),
        "battles":       battles,
        "recent_events": arena.events.to_dicts(limit=event_limit),
    }


# ---------------------------------------------------------------------------
# Save / load
# ---------------------------------------------------------------------------

def save_state(arena: Arena, name: str) -> str:
    """
    Write the snapshot for `arena` to data/state_{name}.json.

    Returns the path written.
    """
    snapshot = build_snapshot(arena, name)

    os.makedirs(DATA_DIR, exist_ok=True)
    path = state_path(name)
    tmp_path = path + ".tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(snapshot, f, indent=2)
    os.replace(tmp_path, path)
    return path


def load_state(name: str) -> Optional[dict]:
    """
    Read a named snapshot. Returns None if it doesn't exist yet.
    """
    path = state_path(name)
    if not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def state_exists(name: str) -> bool:
    return os.path.exists(state_path(name))
