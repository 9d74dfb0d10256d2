"""Command line entry point: ``toolpolicy``."""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from deepdiff import DeepDiff

from .audit import ProvenanceLogWriter
from .config import ResolverConfig
from .defaults import create_default_registry
from .loader import PolicyDocument, PolicyDocumentError, load_policy_document, load_profile
from .provenance import format_markdown
from .resolver import PolicyResolver, Resolution

LOGGER = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="toolpolicy")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARN", "ERROR"],
        default="WARN",
        help="Logging level",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    tools = subparsers.add_parser("tools", help="List the tool catalog.")
    tools.add_argument("--level", help="Only list tools supporting this context level.")
    tools.add_argument(
        "--document",
        type=Path,
        help="Policy document whose custom tools extend the built-in catalog.",
    )
    tools.set_defaults(func=_cmd_tools)

    resolve = subparsers.add_parser("resolve", help="Resolve the tools allowed by a policy document.")
    resolve.add_argument("document", type=Path, help="Policy document (YAML or JSON).")
    resolve.add_argument(
        "--format",
        choices=["json", "markdown"],
        default="json",
        help="Output format; markdown prints the provenance report.",
    )
    resolve.add_argument("--context-id", help="Identifier recorded in the provenance trail.")
    resolve.add_argument(
        "--no-provenance",
        dest="track_provenance",
        action="store_false",
        default=None,
        help="Disable provenance tracking.",
    )
    audit = resolve.add_mutually_exclusive_group()
    audit.add_argument("--audit-log", type=Path, help="Append audit events to this JSONL file.")
    audit.add_argument(
        "--audit-dir",
        type=Path,
        help="Write audit events to a new per-run JSONL file in this directory.",
    )
    resolve.add_argument(
        "--audit-retention",
        type=int,
        default=5,
        help="Number of per-run audit files kept in --audit-dir.",
    )
    resolve.set_defaults(func=_cmd_resolve)

    explain = subparsers.add_parser("explain", help="Explain the decision for one accommodation id.")
    explain.add_argument("document", type=Path, help="Policy document (YAML or JSON).")
    explain.add_argument("accommodation_id", help="Accommodation id to explain.")
    explain.set_defaults(func=_cmd_explain)

    simulate = subparsers.add_parser(
        "simulate",
        help="Re-resolve with a different accommodation profile and diff the outcome.",
    )
    simulate.add_argument("document", type=Path, help="Policy document (YAML or JSON).")
    simulate.add_argument("--profile", type=Path, required=True, help="Replacement profile file.")
    simulate.set_defaults(func=_cmd_simulate)

    return parser


def _config_from_args(args: argparse.Namespace) -> ResolverConfig:
    config = ResolverConfig.from_env()
    changes = {}
    if getattr(args, "track_provenance", None) is not None:
        changes["track_provenance"] = args.track_provenance
    if getattr(args, "context_id", None):
        changes["context_id"] = args.context_id
    return dataclasses.replace(config, **changes) if changes else config


def _build_resolver(document: PolicyDocument, config: ResolverConfig) -> PolicyResolver:
    registry = document.build_registry(min_readable_chars=config.min_readable_chars)
    return PolicyResolver(registry, document.build_mapper(), config)


def _resolution_payload(resolution: Resolution, resolver: PolicyResolver, document: PolicyDocument) -> dict:
    payload = resolution.to_payload(include_provenance=resolution.provenance.tracked)
    if document.context is not None:
        visible = resolver.catalog.filter_visible_in_context(resolution.allowed_tool_ids(), document.context)
        payload["context"] = {
            "level": document.context.level.value,
            "visible": [descriptor.tool_id for descriptor in visible],
        }
    return payload


def _cmd_tools(args: argparse.Namespace) -> int:
    if args.document is not None:
        registry = load_policy_document(args.document).build_registry()
    else:
        registry = create_default_registry()
    descriptors = registry.tools_by_level(args.level) if args.level else registry.tools()
    print(json.dumps({"tools": [descriptor.metadata() for descriptor in descriptors]}, indent=2))
    return 0


def _cmd_resolve(args: argparse.Namespace) -> int:
    config = _config_from_args(args)
    document = load_policy_document(args.document)
    resolver = _build_resolver(document, config)
    resolution = resolver.resolve(document.policy_input, document.context)

    writer = None
    if args.audit_log is not None:
        writer = ProvenanceLogWriter(args.audit_log)
    elif args.audit_dir is not None:
        writer = ProvenanceLogWriter.in_directory(args.audit_dir, retention=args.audit_retention)
    if writer is not None:
        with writer:
            written = writer.write_resolution(resolution)
        LOGGER.info("wrote %d audit events to %s", written, writer.path)

    if args.format == "markdown":
        print(format_markdown(resolution.provenance), end="")
    else:
        print(json.dumps(_resolution_payload(resolution, resolver, document), indent=2))
    return 0


def _cmd_explain(args: argparse.Namespace) -> int:
    config = dataclasses.replace(ResolverConfig.from_env(), track_provenance=True)
    document = load_policy_document(args.document)
    resolution = _build_resolver(document, config).resolve(document.policy_input, document.context)
    explanation = resolution.provenance.explain(args.accommodation_id)
    if explanation is None:
        print(
            f"Accommodation '{args.accommodation_id}' was not referenced by any configuration source.",
            file=sys.stderr,
        )
        return 1
    print(explanation)
    return 0


def _cmd_simulate(args: argparse.Namespace) -> int:
    config = ResolverConfig.from_env()
    document = load_policy_document(args.document)
    profile = load_profile(args.profile)
    resolver = _build_resolver(document, config)

    baseline = resolver.resolve(document.policy_input, document.context)
    simulated = resolver.resolve_with_override(document.policy_input, profile, document.context)
    diff = DeepDiff(
        baseline.to_payload(include_provenance=False),
        simulated.to_payload(include_provenance=False),
        ignore_order=True,
    )
    print(
        json.dumps(
            {
                "changed": bool(diff),
                "baseline": list(baseline.allowed_tool_ids()),
                "simulated": list(simulated.allowed_tool_ids()),
                "diff": json.loads(diff.to_json()) if diff else {},
            },
            indent=2,
        )
    )
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper()))
    try:
        return args.func(args)
    except (PolicyDocumentError, ValueError, OSError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
