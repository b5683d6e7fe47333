#!/usr/bin/env python3
"""Distributor invariant checks: replay the event log against the snapshot.

Every field of the persisted distributor state must be derivable from the
event log alone. A mismatch means the snapshot was edited, or a mutation
reached the snapshot without its audit event.
"""

import json
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
DATA_DIR = ROOT / "data"
PARAMS_PATH = ROOT / "config" / "distributor_params.json"

ZERO_HASH_HEX = "0x" + "00" * 32


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def load_events(path: Path, errors: list[str]) -> list[dict]:
    """Read the log through EventLog so hash and replay checks apply."""
    from distributor.persistence.event_log import EventLog

    try:
        log = EventLog(storage_path=path)
    except (ValueError, KeyError) as e:
        errors.append(f"event log unreadable: {e}")
        return []
    return [
        {"kind": e.event_kind.value, "actor": e.actor_id, "payload": e.payload}
        for e in log.events()
    ]


def replay(events: list[dict], address: str, errors: list[str]) -> dict | None:
    """Rebuild one distributor's state from its events."""
    state = None
    for event in events:
        payload = event["payload"]
        if payload.get("distributor") != address:
            continue
        kind = event["kind"]
        if kind == "distributor_created":
            if state is not None:
                errors.append(f"{address} created twice")
            state = {
                "owner": payload["owner"],
                "timelock": payload["timelock"],
                "root": payload["root"],
                "ipfs_hash": payload["ipfs_hash"],
                "pending_root": None,
                "updaters": set(),
                "claimed": {},
            }
            continue
        if state is None:
            errors.append(f"{address} has a {kind} event before its creation")
            state = {
                "owner": None, "timelock": None, "root": ZERO_HASH_HEX,
                "ipfs_hash": ZERO_HASH_HEX, "pending_root": None,
                "updaters": set(), "claimed": {},
            }

        if kind == "root_set":
            state["root"] = payload["root"]
            state["ipfs_hash"] = payload["ipfs_hash"]
            state["pending_root"] = None
        elif kind == "pending_root_set":
            state["pending_root"] = {
                "root": payload["root"],
                "ipfs_hash": payload["ipfs_hash"],
                "submitted_at": payload["submitted_at"],
            }
        elif kind == "pending_root_revoked":
            if state["pending_root"] is None:
                errors.append(f"{address} revoked a pending root that was never proposed")
            state["pending_root"] = None
        elif kind == "timelock_set":
            state["timelock"] = payload["timelock"]
        elif kind == "root_updater_set":
            if payload["active"]:
                state["updaters"].add(payload["updater"])
            else:
                state["updaters"].discard(payload["updater"])
        elif kind == "owner_set":
            if payload["previous_owner"] != state["owner"]:
                errors.append(
                    f"{address} owner_set from {payload['previous_owner']} "
                    f"but owner was {state['owner']}"
                )
            state["owner"] = payload["new_owner"]
        elif kind == "claimed":
            key = (payload["account"], payload["asset"])
            amount = int(payload["amount"])
            if amount <= 0:
                errors.append(f"{address} claim of non-positive amount {amount} for {key}")
            state["claimed"][key] = state["claimed"].get(key, 0) + amount
    return state


def compare(snapshot: dict, replayed: dict, errors: list[str]) -> None:
    address = snapshot["address"]
    for name in ("owner", "timelock", "root", "ipfs_hash", "pending_root"):
        if snapshot.get(name) != replayed[name]:
            errors.append(
                f"{address} {name} is {snapshot.get(name)!r} in the snapshot "
                f"but {replayed[name]!r} in the event log"
            )
    if set(snapshot.get("updaters", [])) != replayed["updaters"]:
        errors.append(f"{address} updater set differs from the event log")

    claimed = {
        (row["account"], row["asset"]): int(row["cumulative"])
        for row in snapshot.get("claimed", [])
    }
    for key in sorted(set(claimed) | set(replayed["claimed"])):
        recorded = claimed.get(key, 0)
        paid = replayed["claimed"].get(key, 0)
        if recorded != paid:
            errors.append(
                f"{address} claimed total for {key[0]} / {key[1]} is {recorded} "
                f"but the event log pays out {paid}"
            )


def check(data_dir: Path = DATA_DIR, params_path: Path = PARAMS_PATH) -> int:
    params = load_json(params_path)
    storage = params.get("storage", {})
    state_path = data_dir / storage.get("state_file", "state.json")
    events_path = data_dir / storage.get("event_log_file", "events.jsonl")
    errors: list[str] = []

    # --- Parameter invariants ---
    if int(params["distributor"]["default_timelock_seconds"]) < 0:
        errors.append("default_timelock_seconds must be >= 0")

    # --- Snapshot vs. event log ---
    if not state_path.exists():
        print(f"No distributor state in {data_dir}; nothing to replay.")
    else:
        snapshot = load_json(state_path).get("distributor")
        events = load_events(events_path, errors)
        if snapshot is None:
            errors.append(f"{state_path} holds no distributor")
        else:
            replayed = replay(events, snapshot["address"], errors)
            if replayed is None:
                errors.append(f"{snapshot['address']} has no creation event")
            else:
                compare(snapshot, replayed, errors)

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    sys.path.insert(0, str(ROOT / "src"))
    raise SystemExit(check())
