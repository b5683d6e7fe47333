"""Tests for the distributor CLI — proves commands dispatch and persist correctly."""

import json
from pathlib import Path

import pytest
from eth_utils import to_checksum_address

from distributor.cli import build_parser, main


def _addr(n: int) -> str:
    return to_checksum_address(f"0x{n:040x}")


OWNER = _addr(0x0123)
ALICE = _addr(0xA11CE)
BOB = _addr(0xB0B)
TOKEN = _addr(0x7001)
NOW = "1700000000"


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


def _run(data_dir: Path, *argv: str) -> int:
    return main(["--data", str(data_dir), "--now", NOW, *argv])


@pytest.fixture
def tree_file(tmp_path: Path) -> Path:
    entitlements = tmp_path / "rewards.json"
    entitlements.write_text(json.dumps([
        {"account": ALICE, "asset": TOKEN, "amount": "1000"},
        {"account": BOB, "asset": TOKEN, "amount": 250},
    ]), encoding="utf-8")
    out = tmp_path / "tree.json"
    assert main(["build-tree", "--entitlements", str(entitlements), "--out", str(out)]) == 0
    return out


class TestCLIParsing:
    def test_status_command(self) -> None:
        args = build_parser().parse_args(["status"])
        assert args.command == "status"

    def test_claim_command(self) -> None:
        args = build_parser().parse_args([
            "claim", "--account", ALICE, "--asset", TOKEN,
            "--amount", "10", "--proof", "0x01,0x02",
        ])
        assert args.command == "claim"
        assert args.amount == 10
        assert args.tree is None

    def test_set_updater_revoke_flag(self) -> None:
        args = build_parser().parse_args([
            "set-updater", "--caller", OWNER, "--updater", BOB, "--revoke",
        ])
        assert args.revoke


class TestCLIExecution:
    def test_no_command_shows_help(self) -> None:
        assert main([]) == 0

    def test_check_config_runs(self) -> None:
        assert main(["check-config"]) == 0

    def test_status_without_init_fails(self, data_dir: Path) -> None:
        assert _run(data_dir, "status") == 1

    def test_init_twice_fails(self, data_dir: Path) -> None:
        assert _run(data_dir, "init", "--owner", OWNER) == 0
        assert _run(data_dir, "init", "--owner", OWNER) == 1

    def test_non_owner_force_fails(self, data_dir: Path, tree_file: Path) -> None:
        root = json.loads(tree_file.read_text(encoding="utf-8"))["root"]
        assert _run(data_dir, "init", "--owner", OWNER, "--timelock", "0") == 0
        assert _run(
            data_dir, "force-root", "--caller", ALICE, "--root", root, "--ipfs-hash", root,
        ) == 1

    def test_publish_fund_claim_e2e(self, data_dir: Path, tree_file: Path, capsys) -> None:
        root = json.loads(tree_file.read_text(encoding="utf-8"))["root"]
        assert _run(data_dir, "init", "--owner", OWNER, "--timelock", "0") == 0
        assert _run(
            data_dir, "propose-root", "--caller", OWNER, "--root", root, "--ipfs-hash", root,
        ) == 0
        assert _run(data_dir, "fund", "--asset", TOKEN, "--amount", "5000") == 0
        assert _run(
            data_dir, "claim", "--tree", str(tree_file), "--account", ALICE, "--asset", TOKEN,
        ) == 0
        assert _run(
            data_dir, "claim", "--tree", str(tree_file), "--account", ALICE, "--asset", TOKEN,
        ) == 1

        capsys.readouterr()
        assert _run(data_dir, "balance", "--asset", TOKEN, "--holder", ALICE) == 0
        assert json.loads(capsys.readouterr().out)["balance"] == "1000"

        assert _run(data_dir, "status") == 0
        status = json.loads(capsys.readouterr().out)
        assert status["root"] == root
        assert status["claimed_records"] == 1

        events = (data_dir / "events.jsonl").read_text(encoding="utf-8").splitlines()
        kinds = [json.loads(line)["event_kind"] for line in events]
        assert kinds == ["distributor_created", "root_set", "claimed"]

    def test_timelocked_accept_via_clock_override(self, data_dir: Path, tree_file: Path) -> None:
        root = json.loads(tree_file.read_text(encoding="utf-8"))["root"]
        assert _run(data_dir, "init", "--owner", OWNER, "--timelock", "3600") == 0
        assert _run(
            data_dir, "propose-root", "--caller", OWNER, "--root", root, "--ipfs-hash", root,
        ) == 0
        assert _run(data_dir, "accept-root", "--caller", BOB) == 1
        later = str(int(NOW) + 3600)
        assert main(["--data", str(data_dir), "--now", later, "accept-root", "--caller", BOB]) == 0


class TestCheckInvariants:
    def test_empty_data_dir_passes(self, data_dir: Path) -> None:
        assert _run(data_dir, "check-invariants") == 0

    def test_consistent_history_passes(self, data_dir: Path, tree_file: Path) -> None:
        root = json.loads(tree_file.read_text(encoding="utf-8"))["root"]
        assert _run(data_dir, "init", "--owner", OWNER, "--timelock", "3600") == 0
        assert _run(data_dir, "set-updater", "--caller", OWNER, "--updater", BOB) == 0
        assert _run(
            data_dir, "propose-root", "--caller", BOB, "--root", root, "--ipfs-hash", root,
        ) == 0
        assert _run(data_dir, "force-root", "--caller", OWNER, "--root", root, "--ipfs-hash", root) == 0
        assert _run(data_dir, "fund", "--asset", TOKEN, "--amount", "5000") == 0
        assert _run(data_dir, "claim", "--tree", str(tree_file), "--account", BOB, "--asset", TOKEN) == 0
        assert _run(data_dir, "check-invariants") == 0

    def test_edited_snapshot_fails(self, data_dir: Path, tree_file: Path, capsys) -> None:
        root = json.loads(tree_file.read_text(encoding="utf-8"))["root"]
        assert _run(data_dir, "init", "--owner", OWNER, "--timelock", "0") == 0
        assert _run(data_dir, "force-root", "--caller", OWNER, "--root", root, "--ipfs-hash", root) == 0
        assert _run(data_dir, "fund", "--asset", TOKEN, "--amount", "5000") == 0
        assert _run(data_dir, "claim", "--tree", str(tree_file), "--account", ALICE, "--asset", TOKEN) == 0

        state_path = data_dir / "state.json"
        state = json.loads(state_path.read_text(encoding="utf-8"))
        state["distributor"]["claimed"][0]["cumulative"] = "1"
        state_path.write_text(json.dumps(state), encoding="utf-8")

        capsys.readouterr()
        assert _run(data_dir, "check-invariants") == 1
        assert "claimed total" in capsys.readouterr().out
