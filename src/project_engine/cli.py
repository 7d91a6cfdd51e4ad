"""
Command-line interface for the project engine.

Offline inspection of engine state:
- detect: Batch-detect projects in an exported session history
- candidates: List stored project candidates
- projects: List stored projects
- config: Configuration management
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .config import (
    DEFAULT_CONFIG_FILE,
    EngineConfig,
    create_default_config,
    load_config_from_env,
    load_config_from_file,
    save_config_to_file,
)
from .engine import ProjectEngine
from .enums import LogLevel
from .exceptions import ProjectEngineError
from .models import Project, ProjectCandidate
from .serialization import candidate_to_dict, project_to_dict, session_from_dict


def resolve_config(config_path: Optional[str]) -> Optional[EngineConfig]:
    """
    Load the configuration file (or defaults) and apply environment overrides.

    Returns:
        The configuration, or None if an explicit file could not be loaded
    """
    try:
        if config_path:
            config = load_config_from_file(Path(config_path))
            if config is None:
                print(f"Error: Could not load config from {config_path}", file=sys.stderr)
                return None
        else:
            config = load_config_from_file(DEFAULT_CONFIG_FILE) or create_default_config()
    except ProjectEngineError as e:
        print(f"Error loading config: {e.message}", file=sys.stderr)
        return None

    config = load_config_from_env(config)
    try:
        LogLevel(config.logging.level)
    except ValueError:
        print(f"Error: Invalid log level: {config.logging.level}", file=sys.stderr)
        return None
    return config


def format_project(project: Project) -> str:
    lines = [
        f"{project.name} [{project.status.value}] score={project.score}",
        f"  id: {project.id}",
        f"  period: {project.start_date.date()} - {project.end_date.date()}",
        f"  sessions: {len(project.session_ids)}",
    ]
    if project.keywords:
        lines.append(f"  keywords: {', '.join(project.keywords)}")
    if project.top_domains:
        lines.append(f"  domains: {', '.join(project.top_domains)}")
    for site in project.sites:
        lines.append(f"  - {site.url} ({site.added_by.value}, {site.visit_count} visits)")
    return "\n".join(lines)


def format_candidate(candidate: ProjectCandidate) -> str:
    return (
        f"{candidate.primary_domain} [{candidate.status.value}] "
        f"score={candidate.score} visits={candidate.visit_count} "
        f"sessions={len(candidate.session_ids)} snoozed={candidate.snooze_count}\n"
        f"  id: {candidate.id}\n"
        f"  resources: {', '.join(candidate.specific_resources)}"
    )


async def run_detect(
    sessions_file: Path,
    config: EngineConfig,
    accept: bool,
    as_json: bool,
) -> int:
    try:
        with open(sessions_file, "r", encoding="utf-8") as f:
            raw = json.load(f)
        sessions = [session_from_dict(item) for item in raw]
    except FileNotFoundError:
        print(f"Error: File not found: {sessions_file}", file=sys.stderr)
        return 1
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        print(f"Error reading sessions: {e}", file=sys.stderr)
        return 1

    engine = ProjectEngine.from_config(config)
    drafts = engine.detect_projects(sessions)

    if as_json:
        print(json.dumps([project_to_dict(p) for p in drafts], indent=2, ensure_ascii=False))
    else:
        print(f"Detected {len(drafts)} project(s) in {len(sessions)} session(s)")
        for draft in drafts:
            print(format_project(draft))

    if accept:
        failures = 0
        for draft in drafts:
            result = await engine.lifecycle.accept_detected_project(draft)
            if not result.success:
                failures += 1
                print(f"Error: Could not save {draft.name}: {result.message}", file=sys.stderr)
        if failures:
            return 1
        if not as_json:
            print(f"Saved {len(drafts)} project(s)")

    return 0


async def run_list_candidates(config: EngineConfig, as_json: bool) -> int:
    engine = ProjectEngine.from_config(config)
    try:
        candidates = await engine.candidate_store.load_all()
    except ProjectEngineError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    if as_json:
        print(json.dumps([candidate_to_dict(c) for c in candidates], indent=2, ensure_ascii=False))
        return 0

    if not candidates:
        print("No project candidates.")
    for candidate in candidates:
        print(format_candidate(candidate))
    return 0


async def run_list_projects(config: EngineConfig, as_json: bool) -> int:
    engine = ProjectEngine.from_config(config)
    try:
        projects = await engine.project_store.load(engine.now())
    except ProjectEngineError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    if as_json:
        print(json.dumps([project_to_dict(p) for p in projects], indent=2, ensure_ascii=False))
        return 0

    if not projects:
        print("No projects.")
    for project in projects:
        print(format_project(project))
    return 0


def cmd_detect(args: argparse.Namespace) -> int:
    """Handle the 'detect' command."""
    config = resolve_config(args.config)
    if config is None:
        return 1
    return asyncio.run(run_detect(Path(args.sessions), config, args.accept, args.json))


def cmd_candidates(args: argparse.Namespace) -> int:
    """Handle the 'candidates' command."""
    config = resolve_config(args.config)
    if config is None:
        return 1
    return asyncio.run(run_list_candidates(config, args.json))


def cmd_projects(args: argparse.Namespace) -> int:
    """Handle the 'projects' command."""
    config = resolve_config(args.config)
    if config is None:
        return 1
    return asyncio.run(run_list_projects(config, args.json))


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else DEFAULT_CONFIG_FILE

    if args.action == "show":
        try:
            config = load_config_from_file(config_path)
        except ProjectEngineError as e:
            print(f"Error loading config: {e.message}", file=sys.stderr)
            return 1
        if config is None:
            print(f"No configuration found at: {config_path}")
            print("Use 'config init' to create a default configuration.")
            return 1

        print(f"Configuration from: {config_path}")
        print(f"  State file: {config.persistence.state_file_path}")
        print(f"  Serialized writes: {config.serialize_writes}")
        print(f"  Simulation mode: {config.simulation_mode}")
        print(f"  Candidate min score / visits: "
              f"{config.candidates.min_score} / {config.candidates.min_visits}")
        print(f"  Suggestion threshold: {config.suggestions.threshold}")
        print(f"  Webhook: {'configured' if config.notifications.webhook else 'none'}")
        print(f"  Log level: {config.logging.level}")
        print(f"  Audit mode: {config.logging.audit_mode}")
        return 0

    elif args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return 1

        try:
            save_config_to_file(create_default_config(), config_path)
        except ProjectEngineError as e:
            print(f"Error saving config: {e.message}", file=sys.stderr)
            return 1
        print(f"Configuration created at: {config_path}")
        return 0

    elif args.action == "validate":
        try:
            config = load_config_from_file(config_path)
        except ProjectEngineError as e:
            print(f"Error: {e.message}", file=sys.stderr)
            return 1
        if config is None:
            print(f"Error: Could not load config from {config_path}", file=sys.stderr)
            return 1

        print(f"Configuration at {config_path} is valid.")
        return 0

    return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="project-engine",
        description="Project detection and lifecycle engine for browsing history",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # 'detect' command
    detect_parser = subparsers.add_parser(
        "detect",
        help="Detect projects in an exported session history",
    )
    detect_parser.add_argument(
        "sessions",
        help="Path to a JSON file with a list of sessions",
    )
    detect_parser.add_argument(
        "--accept",
        action="store_true",
        help="Save the detected projects",
    )
    detect_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    detect_parser.add_argument(
        "--json",
        action="store_true",
        help="Print results as JSON",
    )
    detect_parser.set_defaults(func=cmd_detect)

    # 'candidates' and 'projects' commands
    for name, handler, help_text in (
        ("candidates", cmd_candidates, "List stored project candidates"),
        ("projects", cmd_projects, "List stored projects"),
    ):
        list_parser = subparsers.add_parser(name, help=help_text)
        list_parser.add_argument(
            "--config", "-c",
            help="Path to configuration file",
        )
        list_parser.add_argument(
            "--json",
            action="store_true",
            help="Print results as JSON",
        )
        list_parser.set_defaults(func=handler)

    # 'config' command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show", "init", "validate"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "--path", "-p",
        help="Path to configuration file",
    )
    config_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Force overwrite existing configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
