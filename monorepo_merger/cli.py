"""
Command-line interface for the monorepo merger.
"""

import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path

from .apply import cleanup_staging
from .config import Settings
from .errors import MergeError
from .models import ConflictRecord, Hotspot
from .package_manager import PACKAGE_MANAGERS
from .pipeline import (
    ApplyRequest,
    PipelineContext,
    PlanRequest,
    VerifyRequest,
    run_analyze,
    run_apply,
    run_plan,
    run_verify,
)
from .planner import PlanOptions
from .reporting import export_conflicts_csv, export_hotspots_csv, export_verify_csv, print_summary, save_analysis_json
from .resolver import STRATEGIES
from .verify import TIERS

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="monorepo-merger",
        description="Merge independent repositories into one workspace monorepo",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="Analyze repositories without changing anything")
    analyze.add_argument("repos", nargs="+", help="Local paths, owner/repo, gitlab:owner/repo or git URLs")
    analyze.add_argument("--json", action="store_true", help="Print the result as JSON")
    analyze.add_argument("--output-dir", default=None, help="Also export JSON and CSV reports here")

    plan = subparsers.add_parser("plan", help="Write an apply plan")
    plan.add_argument("repos", nargs="+")
    plan.add_argument("-o", "--output", default="./monorepo", help="Target monorepo directory. Default: ./monorepo")
    plan.add_argument("--plan-file", default=None, help="Plan file path. Default: <output-name>.plan.json")
    plan.add_argument("-p", "--packages-dir", default=None, help="Packages subdirectory. Default: packages")
    plan.add_argument("--conflict-strategy", choices=STRATEGIES, default="highest")
    plan.add_argument("--package-manager", choices=PACKAGE_MANAGERS, default=None)
    plan.add_argument("--auto-detect-pm", action="store_true", help="Pick the package manager from source lockfiles")
    plan.add_argument("--no-install", dest="install", action="store_false", help="Skip the install step")
    plan.add_argument("--no-workspace-protocol", dest="workspace_protocol", action="store_false",
                      help="Keep internal dependency specifiers as written")
    plan.add_argument("--pin-versions", action="store_true", help="Strip ^ and ~ from package specifiers")

    apply = subparsers.add_parser("apply", help="Execute a plan")
    apply.add_argument("--plan", required=True, help="Plan file to apply")
    apply.add_argument("--out", required=True, help="Output directory")
    apply.add_argument("--resume", action="store_true", help="Continue an interrupted apply")
    apply.add_argument("--cleanup", action="store_true", help="Remove staging artifacts and exit")
    apply.add_argument("--dry-run", action="store_true", help="Show the steps without running them")
    apply.add_argument("--cleanup-on-failure", action="store_true",
                       help="Restore sources and remove staging if a step fails")

    verify = subparsers.add_parser("verify", help="Verify a plan or a merged directory")
    target = verify.add_mutually_exclusive_group(required=True)
    target.add_argument("--plan", help="Plan file (static checks only)")
    target.add_argument("--dir", help="Merged monorepo directory")
    verify.add_argument("--tier", choices=TIERS, default="static")
    verify.add_argument("--json", action="store_true", help="Print the result as JSON")
    verify.add_argument("--output-dir", default=None, help="Also export the checks as CSV here")
    return parser


def main(argv=None):
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = Settings.from_env(
            package_manager=getattr(args, "package_manager", None),
            packages_dir=getattr(args, "packages_dir", None),
        )
        ctx = PipelineContext(settings=settings)

        if args.command == "analyze":
            result = run_analyze(args.repos, ctx).to_dict()
            if args.json:
                print(json.dumps(result, indent=2))
            else:
                print_summary(result)
            if args.output_dir:
                _export_analysis(result, Path(args.output_dir))
            return 0

        if args.command == "plan":
            options = PlanOptions(
                packages_dir=settings.packages_dir,
                conflict_strategy=args.conflict_strategy,
                package_manager=settings.package_manager,
                auto_detect_pm=args.auto_detect_pm,
                install=args.install,
                workspace_protocol=args.workspace_protocol,
                pin_versions=args.pin_versions,
                node_engine=settings.node_engine,
            )
            request = PlanRequest(output_dir=args.output, plan_file=args.plan_file, options=options)
            result = run_plan(args.repos, request, ctx)
            logger.info("Plan generated: %s", result["planPath"])
            logger.info("Next: monorepo-merger apply --plan %s --out %s", result["planPath"], args.output)
            return 0

        if args.command == "apply":
            if args.cleanup:
                removed = cleanup_staging(args.out)
                logger.info("Cleaned up %d staging artifact(s)", len(removed))
                return 0
            cancel_event = threading.Event()
            previous = signal.signal(signal.SIGINT, lambda signum, frame: cancel_event.set())
            try:
                request = ApplyRequest(
                    plan_path=args.plan,
                    output_dir=args.out,
                    resume=args.resume,
                    dry_run=args.dry_run,
                    cleanup_on_failure=args.cleanup_on_failure,
                )
                result = run_apply(request, cancel_event, ctx)
            finally:
                signal.signal(signal.SIGINT, previous)
            logger.info("Location: %s (%d packages)", result["outputDir"], result["packageCount"])
            return 0

        if args.command == "verify":
            result = run_verify(VerifyRequest(plan_path=args.plan, directory=args.dir, tier=args.tier), ctx)
            if args.json:
                print(json.dumps(result.to_dict(), indent=2))
            else:
                for c in result.checks:
                    logger.info("[%s] %s: %s", c.status.upper(), c.id, c.message)
            if args.output_dir:
                export_verify_csv(result, Path(args.output_dir))
            return 0 if result.ok else 1
    except MergeError as e:
        logger.error("%s", e)
        if e.hint:
            logger.error("Hint: %s", e.hint)
        return 1

    parser.error(f"Unknown command: {args.command}")


def _export_analysis(result, output_dir: Path) -> None:
    save_analysis_json(result, output_dir)
    export_conflicts_csv([ConflictRecord.from_dict(c) for c in result["conflicts"]], output_dir)
    export_hotspots_csv(
        [
            Hotspot(h["name"], h["dependentCount"], h["hasConflict"], tuple(h["versionRanges"]))
            for h in result["hotspots"]
        ],
        output_dir,
    )
    logger.info("Reports written to %s", output_dir)


if __name__ == "__main__":
    sys.exit(main())
