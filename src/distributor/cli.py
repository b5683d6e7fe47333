"""Distributor CLI — command-line interface for an off-chain distributor.

Usage:
    python -m distributor.cli init --owner 0xA11CE... --timelock 86400
    python -m distributor.cli build-tree --entitlements rewards.json --out tree.json
    python -m distributor.cli propose-root --caller 0xA11CE... --root 0x... --ipfs-hash 0x...
    python -m distributor.cli accept-root --caller 0xB0B...
    python -m distributor.cli fund --asset 0x70CE... --amount 5000
    python -m distributor.cli claim --tree tree.json --account 0xB0B... --asset 0x70CE...
    python -m distributor.cli status
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from distributor.config import DEFAULT_CONFIG_DIR, PARAMS_FILE, DistributorConfig
from distributor.crypto.encoding import ZERO_HASH, hash_hex
from distributor.crypto.merkle import Distribution, build_distribution
from distributor.engine.clock import Clock, FixedClock, SystemClock
from distributor.engine.distributor import Distributor
from distributor.engine.factory import DistributorFactory
from distributor.persistence.event_log import EventLog
from distributor.persistence.state_store import StateStore
from distributor.service import DistributorService, ServiceResult
from distributor.transfer.erc20 import Erc20Transfer
from distributor.transfer.rail import AssetTransfer, TokenBank


DEFAULT_DATA = Path(__file__).resolve().parents[2] / "data"


def _clock(args: argparse.Namespace) -> Clock:
    if getattr(args, "now", None) is not None:
        return FixedClock(args.now)
    return SystemClock()


def _stores(config: DistributorConfig, data_dir: Path) -> tuple[StateStore, EventLog]:
    data_dir.mkdir(parents=True, exist_ok=True)
    return (
        StateStore(data_dir / config.state_file),
        EventLog(storage_path=data_dir / config.event_log_file),
    )


def _transfer_for(config: DistributorConfig, bank: TokenBank):
    """Payout backend factory: address -> AssetTransfer."""
    if config.transfer_backend == "erc20":
        rail = Erc20Transfer.from_rpc_url(
            config.rpc_url,
            config.private_key,
            chain_id=config.chain.chain_id,
            gas=config.chain.gas,
            gas_price_gwei=config.chain.gas_price_gwei,
        )

        def _erc20(_address: str) -> AssetTransfer:
            return rail

        return _erc20
    return bank.vault


def _load_config(args: argparse.Namespace) -> DistributorConfig:
    config = DistributorConfig.from_config_dir(args.config)
    errors = config.validate()
    if errors:
        raise ValueError("Invalid configuration: " + "; ".join(errors))
    return config


def _make_service(args: argparse.Namespace) -> DistributorService:
    """Load the persisted distributor and wrap it in a service."""
    config = _load_config(args)
    state_store, event_log = _stores(config, args.data)
    state = state_store.load_distributor()
    if state is None:
        raise ValueError(f"No distributor in {args.data}; run `init` first")
    bank = TokenBank.from_dict(state_store.load_balances())
    distributor = Distributor.from_state(
        state,
        transfer=_transfer_for(config, bank)(state["address"]),
        clock=_clock(args),
        event_log=event_log,
    )
    return DistributorService(distributor, bank=bank, state_store=state_store)


def _report(result: ServiceResult, success_message: Optional[str] = None) -> int:
    if result.success:
        if success_message:
            print(success_message)
        print(json.dumps(result.data, indent=2, default=str))
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_init(args: argparse.Namespace) -> int:
    config = _load_config(args)
    state_store, event_log = _stores(config, args.data)
    if state_store.has_distributor():
        print(f"Failed: distributor already initialised in {args.data}", file=sys.stderr)
        return 1
    bank = TokenBank()
    factory = DistributorFactory(
        config.factory_address,
        transfer_for=_transfer_for(config, bank),
        clock=_clock(args),
        event_log=event_log,
    )
    timelock = args.timelock if args.timelock is not None else config.default_timelock_seconds
    service = DistributorService.deploy(
        factory,
        caller=args.caller or args.owner,
        owner=args.owner,
        timelock=timelock,
        root=args.root,
        ipfs_hash=args.ipfs_hash,
        salt=args.salt,
        bank=bank,
        state_store=state_store,
    )
    print(f"Created distributor: {service.distributor.address}")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_propose_root(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.propose_root(args.caller, args.root, args.ipfs_hash))


def cmd_accept_root(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.accept_root(args.caller))


def cmd_force_root(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.force_root(args.caller, args.root, args.ipfs_hash))


def cmd_revoke_root(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.revoke_root(args.caller))


def cmd_set_timelock(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.set_timelock(args.caller, args.seconds))


def cmd_set_updater(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.set_updater(args.caller, args.updater, not args.revoke))


def cmd_set_owner(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.set_owner(args.caller, args.new_owner))


def cmd_build_tree(args: argparse.Namespace) -> int:
    """Build a root and proofs from an entitlement table.

    Input: JSON list of {"account", "asset", "amount"} objects.
    """
    rows = json.loads(args.entitlements.read_text(encoding="utf-8"))
    distribution = build_distribution(
        (row["account"], row["asset"], int(row["amount"])) for row in rows
    )
    args.out.write_text(json.dumps(distribution.to_dict(), indent=2) + "\n", encoding="utf-8")
    print(f"Root: {hash_hex(distribution.root)} ({len(distribution.entitlements)} leaves)")
    return 0


def cmd_claim(args: argparse.Namespace) -> int:
    service = _make_service(args)
    if args.tree is not None:
        distribution = Distribution.from_dict(
            json.loads(args.tree.read_text(encoding="utf-8"))
        )
        result = service.claim_from_distribution(
            distribution, args.account, args.asset, caller=args.caller,
        )
    else:
        if args.amount is None:
            print("Failed: --amount is required without --tree", file=sys.stderr)
            return 1
        proof = [p for p in (args.proof or "").split(",") if p]
        result = service.claim(args.account, args.asset, args.amount, proof, caller=args.caller)
    return _report(result)


def cmd_fund(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.fund(args.asset, args.amount))


def cmd_balance(args: argparse.Namespace) -> int:
    service = _make_service(args)
    return _report(service.balance(args.asset, args.holder))


def cmd_check_config(args: argparse.Namespace) -> int:
    config = DistributorConfig.from_config_dir(args.config)
    errors = config.validate()
    if errors:
        for e in errors:
            print(f"  FAIL: {e}", file=sys.stderr)
        return 1
    print("Configuration OK")
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Replay the event log against the persisted snapshot."""
    tools_dir = Path(__file__).resolve().parents[2] / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    return check(args.data, args.config / PARAMS_FILE)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="distributor",
        description="Timelocked Merkle-root reward distributor CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_DIR,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=DEFAULT_DATA,
        help="Path to data directory holding state and events (default: data/)",
    )
    parser.add_argument(
        "--now",
        type=int,
        help="Override the clock with a fixed UNIX timestamp",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    sub = parser.add_subparsers(dest="command")

    # init
    p_init = sub.add_parser("init", help="Create a distributor through the factory")
    p_init.add_argument("--owner", required=True, help="Owner address")
    p_init.add_argument("--caller", help="Deploying address (default: owner)")
    p_init.add_argument("--timelock", type=int, help="Timelock in seconds (default: from config)")
    p_init.add_argument("--root", default=hash_hex(ZERO_HASH), help="Initial root (default: none)")
    p_init.add_argument("--ipfs-hash", default=hash_hex(ZERO_HASH), help="Initial IPFS hash")
    p_init.add_argument("--salt", default=hash_hex(ZERO_HASH), help="CREATE2 salt (bytes32)")

    # status
    sub.add_parser("status", help="Show distributor status")

    # propose-root / force-root
    for name, help_text in (
        ("propose-root", "Propose a new root (owner or updater)"),
        ("force-root", "Set a root immediately, bypassing the timelock (owner)"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--caller", required=True, help="Caller address")
        p.add_argument("--root", required=True, help="New root (bytes32 hex)")
        p.add_argument("--ipfs-hash", required=True, help="New IPFS hash (bytes32 hex)")

    # accept-root / revoke-root
    p_accept = sub.add_parser("accept-root", help="Accept a matured pending root (anyone)")
    p_accept.add_argument("--caller", required=True, help="Caller address")
    p_revoke = sub.add_parser("revoke-root", help="Revoke the pending root (owner)")
    p_revoke.add_argument("--caller", required=True, help="Caller address")

    # set-timelock
    p_tl = sub.add_parser("set-timelock", help="Change the timelock (owner)")
    p_tl.add_argument("--caller", required=True, help="Caller address")
    p_tl.add_argument("--seconds", type=int, required=True, help="New timelock in seconds")

    # set-updater
    p_up = sub.add_parser("set-updater", help="Grant or revoke root updater rights (owner)")
    p_up.add_argument("--caller", required=True, help="Caller address")
    p_up.add_argument("--updater", required=True, help="Updater address")
    p_up.add_argument("--revoke", action="store_true", help="Revoke instead of grant")

    # set-owner
    p_own = sub.add_parser("set-owner", help="Transfer ownership (owner)")
    p_own.add_argument("--caller", required=True, help="Caller address")
    p_own.add_argument("--new-owner", required=True, help="New owner address")

    # build-tree
    p_tree = sub.add_parser("build-tree", help="Build a root and proofs from entitlements")
    p_tree.add_argument("--entitlements", type=Path, required=True, help="Input JSON")
    p_tree.add_argument("--out", type=Path, required=True, help="Output tree JSON")

    # claim
    p_claim = sub.add_parser("claim", help="Claim an account's outstanding rewards")
    p_claim.add_argument("--account", required=True, help="Account address")
    p_claim.add_argument("--asset", required=True, help="Reward asset address")
    p_claim.add_argument("--tree", type=Path, help="Tree JSON from build-tree")
    p_claim.add_argument("--amount", type=int, help="Cumulative amount (without --tree)")
    p_claim.add_argument("--proof", help="Comma-separated proof hashes (without --tree)")
    p_claim.add_argument("--caller", help="Submitting address (default: account)")

    # fund
    p_fund = sub.add_parser("fund", help="Credit the distributor's ledger holdings")
    p_fund.add_argument("--asset", required=True, help="Reward asset address")
    p_fund.add_argument("--amount", type=int, required=True, help="Units to credit")

    # balance
    p_bal = sub.add_parser("balance", help="Show a ledger balance")
    p_bal.add_argument("--asset", required=True, help="Reward asset address")
    p_bal.add_argument("--holder", help="Holder address (default: the distributor)")

    # check-config
    sub.add_parser("check-config", help="Validate configuration")

    # check-invariants
    sub.add_parser("check-invariants", help="Replay the event log against the snapshot")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "init": cmd_init,
        "status": cmd_status,
        "propose-root": cmd_propose_root,
        "accept-root": cmd_accept_root,
        "force-root": cmd_force_root,
        "revoke-root": cmd_revoke_root,
        "set-timelock": cmd_set_timelock,
        "set-updater": cmd_set_updater,
        "set-owner": cmd_set_owner,
        "build-tree": cmd_build_tree,
        "claim": cmd_claim,
        "fund": cmd_fund,
        "balance": cmd_balance,
        "check-config": cmd_check_config,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except (ValueError, OSError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
