"""V4COMPAT CLI — probe an EVM network for V4 architectural support.

Usage:
    v4compat run --local                Run the catalog against the in-process tester
    v4compat run --rpc-url <url> --tester <addr>
                                        Run against a deployed tester contract
    v4compat catalog                    List probes, tiers and thresholds
    v4compat config                     Show current configuration

Examples:
    v4compat run --local --no-transient-storage
    v4compat run --local --slots 0x1000 8        Dump raw tester storage after the run
    v4compat run --rpc-url http://127.0.0.1:8545 --tester 0x5FbDB... -f json -o results.json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from v4compat import __version__
from v4compat.core.errors import IncompatibleEnvironmentError
from v4compat.core.types import AssessmentReport, Tier, Verdict


# ── Coloured output helpers ──────────────────────────────────────────────────

_RESET = "\033[0m"
_BOLD = "\033[1m"
_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"

_VERDICT_COLOR = {
    Verdict.COMPATIBLE: _GREEN,
    Verdict.PARTIAL: _YELLOW,
    Verdict.INCOMPATIBLE: _RED,
}


def _c(text: str, code: str) -> str:
    return f"{code}{text}{_RESET}"


# ── CLI argument parser ─────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="v4compat",
        description="V4COMPAT — EVM network compatibility probes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument("--quiet", "-q", action="store_true", help="Minimal output")
    parser.add_argument("--log-level", default=None, help="Override V4COMPAT_LOG_LEVEL")

    sub = parser.add_subparsers(dest="command")

    # ── run ──────────────────────────────────────────────────────────────────
    run_p = sub.add_parser("run", help="Run the probe catalog and print a verdict")
    target = run_p.add_mutually_exclusive_group()
    target.add_argument("--local", action="store_true", help="Use the in-process tester")
    target.add_argument("--rpc-url", help="JSON-RPC endpoint of the target network")
    run_p.add_argument("--tester", help="Address of the deployed compatibility tester")
    run_p.add_argument(
        "--no-transient-storage",
        action="store_true",
        help="(--local) emulate a network without EIP-1153",
    )
    run_p.add_argument(
        "--max-call-depth",
        type=int,
        default=1024,
        help="(--local) emulated maximum call depth (default: 1024)",
    )
    run_p.add_argument(
        "--format",
        "-f",
        default="table",
        choices=["table", "json"],
        help="Output format (default: table)",
    )
    run_p.add_argument("--output", "-o", help="Write the JSON report to this file")
    run_p.add_argument("--save", action="store_true", help="Write the JSON report to V4COMPAT_RESULTS_PATH")
    run_p.add_argument(
        "--slots",
        nargs=2,
        type=lambda value: int(value, 0),
        metavar=("START", "COUNT"),
        help="After the run, dump COUNT raw storage slots of the tester from START",
    )

    # ── catalog / config ─────────────────────────────────────────────────────
    sub.add_parser("catalog", help="List probes and thresholds")
    sub.add_parser("config", help="Show current configuration")

    return parser


# ── Output ───────────────────────────────────────────────────────────────────


def _print_table(report: AssessmentReport, quiet: bool = False) -> None:
    """Pretty-print per-probe results and the verdict."""
    from v4compat.probes.catalog import default_catalog

    if not quiet:
        print(f"\n{_BOLD}Assessment complete{_RESET} — {report.network or 'unknown network'}\n")

    tiers = {probe.name: probe.tier for probe in default_catalog()}
    for name, result in report.per_probe.items():
        mark = _c("✓", _GREEN) if result.success else _c("✗", _RED)
        tier = tiers.get(name)
        tier_label = _c(f"[{tier.value.upper()}]" if tier else "[?]", _DIM)
        print(f"  {mark} {tier_label} {_c(name, _BOLD):<40} {result.cost:>10} gas")
        if result.detail and not quiet:
            detail = result.detail[:200]
            if len(result.detail) > 200:
                detail += "…"
            print(f"       {_DIM}{detail}{_RESET}")
        for warning in result.warnings:
            print(f"       {_c('⚠ ' + warning, _YELLOW)}")

    print()
    for tier in Tier:
        count = report.tier_counts.get(tier)
        if count:
            print(f"  {tier.value.capitalize()} tests: {count.passed}/{count.total} passed")
    color = _VERDICT_COLOR.get(report.verdict, "")
    print(f"\n  Overall status: {_c(report.verdict.value, color + _BOLD)}\n")


def _print_storage(storage: dict[int, bytes]) -> None:
    print(f"  {_BOLD}Raw storage{_RESET}")
    for slot, word in storage.items():
        print(f"    {_DIM}{slot:#x}{_RESET}  0x{word.hex()}")
    print()


# ── Run command ──────────────────────────────────────────────────────────────


def _build_environment(args: argparse.Namespace):
    from v4compat.core.config import get_settings

    settings = get_settings()
    # --tester alone targets the configured node.
    if args.local or not (args.rpc_url or args.tester or settings.tester_address):
        from v4compat.environments.memory import InMemoryEnvironment
        from v4compat.probes.tester import NetworkProfile

        profile = NetworkProfile(
            name="in-memory",
            transient_storage=not args.no_transient_storage,
            max_call_depth=args.max_call_depth,
        )
        return InMemoryEnvironment(profile=profile)

    from v4compat.environments.rpc import RpcEnvironment

    return RpcEnvironment(
        rpc_url=args.rpc_url or settings.rpc_url,
        tester_address=args.tester or settings.tester_address,
        sender_address=settings.sender_address,
        private_key=settings.private_key,
    )


async def _run_assessment(args: argparse.Namespace) -> int:
    """Execute the catalog and print results."""
    from v4compat.assessment.aggregator import ensure_compatible
    from v4compat.assessment.runner import CompatibilityAssessment, snapshot_slots, write_report
    from v4compat.core.config import get_settings
    from v4compat.executor.probe_executor import PhaseTimeouts
    from v4compat.probes.catalog import default_catalog

    if args.slots and args.slots[1] < 1:
        print(_c("Error: --slots COUNT must be positive.", _RED), file=sys.stderr)
        return 1

    settings = get_settings()
    if args.rpc_url and not (args.tester or settings.tester_address):
        print(_c("Error: --tester (or V4COMPAT_TESTER_ADDRESS) is required with --rpc-url.", _RED), file=sys.stderr)
        return 1

    try:
        environment = _build_environment(args)
    except ValueError as exc:
        print(_c(f"Error: {exc}", _RED), file=sys.stderr)
        return 1

    catalog = default_catalog(
        commit_timeout=settings.commit_timeout_seconds,
        extended_commit_timeout=settings.extended_commit_timeout_seconds,
    )
    assessment = CompatibilityAssessment(
        environment,
        catalog=catalog,
        timeouts=PhaseTimeouts.from_settings(settings),
    )
    storage: dict[int, bytes] = {}
    try:
        report = await assessment.run()
        if args.slots:
            storage = await snapshot_slots(environment, *args.slots)
    finally:
        close = getattr(environment, "close", None)
        if close is not None:
            await close()

    if args.format == "table":
        _print_table(report, quiet=args.quiet)
        if storage:
            _print_storage(storage)
    else:
        flat = report.to_flat_dict()
        if storage:
            flat["storage"] = {f"{slot:#x}": "0x" + word.hex() for slot, word in storage.items()}
        print(json.dumps(flat, indent=2))

    output = args.output or (settings.results_path if args.save else None)
    if output:
        write_report(report, output)
        if not args.quiet:
            print(f"  Written to {_c(output, _CYAN)}")

    try:
        ensure_compatible(report)
    except IncompatibleEnvironmentError as exc:
        print(_c(f"\n{exc}", _RED), file=sys.stderr)
        return 1
    return 0


# ── Catalog command ──────────────────────────────────────────────────────────


def _run_catalog() -> int:
    from v4compat.probes.catalog import (
        CRITICAL_PASS_THRESHOLD,
        IMPORTANT_PASS_THRESHOLD,
        default_catalog,
        probes_in_tier,
    )

    catalog = default_catalog()
    print(f"\n{_BOLD}Probe catalog{_RESET}\n")
    for i, probe in enumerate(catalog, 1):
        print(f"  {_DIM}{i:>2}.{_RESET} {_c(probe.tier.value.upper(), _CYAN):<22} {_c(probe.name, _BOLD)}")
        print(f"       {_DIM}{probe.description}{_RESET}")
    critical = len(probes_in_tier(catalog, Tier.CRITICAL))
    print(
        f"\n  Compatible requires {CRITICAL_PASS_THRESHOLD}/{critical} critical"
        f" and >= {IMPORTANT_PASS_THRESHOLD} important probes.\n"
    )
    return 0


# ── Config command ───────────────────────────────────────────────────────────


def _run_config() -> int:
    """Print current settings (redacted)."""
    from v4compat.core.config import get_settings

    s = get_settings()
    print(f"\n{_BOLD}V4COMPAT Configuration{_RESET}\n")
    for field_name in sorted(type(s).model_fields.keys()):
        val = getattr(s, field_name, "")
        if any(kw in field_name for kw in ("password", "secret", "key", "token")):
            val = "****" if val else "(not set)"
        print(f"  {_DIM}{field_name}:{_RESET}  {val}")
    print()
    return 0


# ── Entrypoint ───────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> int:
    from v4compat.core.config import get_settings
    from v4compat.core.logging import setup_logging

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"v4compat {__version__}")
        return 0

    settings = get_settings()
    setup_logging(settings.app_env, args.log_level or ("WARNING" if args.quiet else settings.log_level))

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "config":
        return _run_config()

    if args.command == "catalog":
        return _run_catalog()

    if args.command == "run":
        return asyncio.run(_run_assessment(args))

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
