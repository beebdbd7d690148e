#!/usr/bin/env python3
"""
Example script showing how to use monorepo-merger from Python.
"""

import threading
from functools import partial
from pathlib import Path

from monorepo_merger.pipeline import (
    ApplyRequest,
    PlanRequest,
    VerifyRequest,
    collect_events,
    run_analyze,
    run_apply,
    run_plan,
    run_verify,
)
from monorepo_merger.planner import PlanOptions

REPOS = ["./repos/web", "./repos/api"]


def example_analysis():
    """Example: Analyze repositories without changing anything."""
    print("="*60)
    print("Example 1: Analysis")
    print("="*60)

    result = run_analyze(REPOS).to_dict()

    print(f"\nPackages: {len(result['packages'])}")
    print(f"Conflicts: {len(result['conflicts'])}")
    for conflict in result["conflicts"]:
        versions = ", ".join(f"{v['version']} ({v['source']})" for v in conflict["versions"])
        print(f"  {conflict['name']}: {versions} [{conflict['severity']}]")
    print(f"Complexity score: {result['complexityScore']}/100")


def example_plan_and_apply():
    """Example: Write a plan, then apply it."""
    print("\n" + "="*60)
    print("Example 2: Plan and Apply")
    print("="*60)

    request = PlanRequest(
        output_dir="monorepo",
        options=PlanOptions(conflict_strategy="hoist-with-overrides", package_manager="pnpm", install=False),
    )
    planned = run_plan(REPOS, request)
    print(f"\nPlan written to {planned['planPath']}")

    cancel_event = threading.Event()
    applied = run_apply(ApplyRequest(plan_path=planned["planPath"], output_dir="monorepo"), cancel_event)
    print(f"Merged {applied['packageCount']} packages into {applied['outputDir']}")


def example_verify():
    """Example: Verify the merged directory."""
    print("\n" + "="*60)
    print("Example 3: Verify")
    print("="*60)

    result = run_verify(VerifyRequest(directory="monorepo", tier="static"))
    for check in result.checks:
        print(f"  [{check.status.upper()}] {check.id}: {check.message}")
    print(f"\nSummary: {result.summary}")


def example_event_stream():
    """Example: Consume an operation as a stream of events."""
    print("\n" + "="*60)
    print("Example 4: Event Stream")
    print("="*60)

    for event in collect_events(partial(run_analyze, REPOS)):
        if event["type"] == "log":
            print(f"  {event['level']}: {event['message']}")
        else:
            print(f"  {event['type']} ({event['opId']})")


if __name__ == "__main__":
    print("Monorepo Merger - Example Usage")
    print("="*60)
    print("\nNOTE: Point REPOS at real repositories before running.")
    print("Apply moves the acquired copies, the originals are left alone.")

    if not all(Path(repo).is_dir() for repo in REPOS):
        print(f"\nMissing example repositories: {REPOS}")
    else:
        example_analysis()
        example_plan_and_apply()
        example_verify()
        example_event_stream()
