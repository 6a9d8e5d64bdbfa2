"""
storyverse CLI.

Commands:
  login             Set up the Anthropic API key
  logout            Remove the stored API key
  init-db           Initialize the SQLite schema
  create-job        Create a queued transformation job
  run               Create a job from a text file and run the pipeline
  retry             Resume a failed job (or rerun from a stage)
  show-job          Show a job's progress, artifacts and errors
  list-jobs         List jobs

Grounding Commands:
  set-bible         Attach a Project Bible / Design Guide file to a universe
  compose-prompt    Compose the image prompt for a card from the bible
  visual-prompt     Build a card's image prompt from the design guide
  check-continuity  Check a card against the bible and source guardrails
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from storyverse.bible.composer import compose
from storyverse.bible.continuity import check
from storyverse.bible.models import DesignGuide, ProjectBible, load_document
from storyverse.bible.visual import build_visual_prompt, get_quality_settings
from storyverse.config import (
    check_auth_or_prompt, clear_api_key, get_config_path,
    interactive_login, load_settings,
)
from storyverse.db.job_store import STAGE_COUNT, STORY_LENGTHS, JobStore, stage_key
from storyverse.grounding.guardrails import GuardrailSet
from storyverse.llm.gateway import ClaudeGateway
from storyverse.llm.prompt_registry import PromptRegistry
from storyverse.pipeline.errors import PipelineError, StageFailure
from storyverse.pipeline.runner import PipelineRunner, STAGES

logger = logging.getLogger(__name__)

SOURCE_SUFFIXES = (".txt", ".md", ".fountain")


def init_db(args):
    """Initialize the database schema."""
    store = JobStore(args.db)
    store.ensure_schema()
    print(f"Initialized database at {args.db}")


def login_cmd(args):
    """Interactive login to set up API key."""
    success = interactive_login()
    sys.exit(0 if success else 1)


def logout_cmd(args):
    """Remove stored API key."""
    clear_api_key()
    print(f"Logged out. API key removed from {get_config_path()}")


def _open_store(args) -> JobStore:
    store = JobStore(args.db)
    store.ensure_schema()
    return store


def _read_source(path_str: str) -> str:
    path = Path(path_str)
    if path.suffix.lower() not in SOURCE_SUFFIXES:
        print(f"Warning: {path.name} is not a {'/'.join(SOURCE_SUFFIXES)} file; reading as plain text")
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        print(f"Error: cannot read {path}: {e}")
        sys.exit(1)


def _make_runner(store: JobStore) -> PipelineRunner:
    """Build a runner backed by the Claude gateway."""
    api_key = check_auth_or_prompt()
    if not api_key:
        print("Cannot run the pipeline without an API key.")
        print("Run 'storyverse login' to set one up, or set ANTHROPIC_API_KEY.")
        sys.exit(1)

    settings = load_settings()
    gateway = ClaudeGateway(
        api_key=api_key, model=settings.model, max_retries=settings.max_retries
    )
    return PipelineRunner(
        store, gateway, PromptRegistry(), settings=settings,
        progress_fn=lambda msg: print(f"  {msg}"),
    )


def _run_job(runner: PipelineRunner, job_id: int, source_text: str, from_stage=None):
    try:
        universe_id = runner.run(job_id, source_text, from_stage=from_stage)
    except StageFailure as e:
        print(f"\nJob {job_id} failed at stage {e.stage} ({STAGES[e.stage][0]}).")
        print(f"  {e.user_message}")
        print(f"  Details: {e.dev_message}")
        print(f"  Resume with: storyverse retry {job_id} <source file>")
        sys.exit(1)

    total_ms = sum(runner.timings.values())
    print(f"\nJob {job_id} completed: universe {universe_id} ({total_ms / 1000:.1f}s)")


def create_job_cmd(args):
    """Create a queued job."""
    store = _open_store(args)
    job = store.create_job(
        story_length=args.length,
        source_file_name=args.source_file,
    )
    print(f"Created job {job['id']} ({job['story_length']})")


def run_cmd(args):
    """Create a job for a source file and run it to completion."""
    source_text = _read_source(args.source)
    store = _open_store(args)
    runner = _make_runner(store)
    job = store.create_job(
        story_length=args.length,
        source_file_name=Path(args.source).name,
    )
    print(f"Running job {job['id']} on {args.source}")
    _run_job(runner, job["id"], source_text)


def retry_cmd(args):
    """Resume a failed job from its first unfinished stage."""
    source_text = _read_source(args.source)
    store = _open_store(args)
    runner = _make_runner(store)
    try:
        _run_job(runner, args.job_id, source_text, from_stage=args.from_stage)
    except PipelineError as e:
        print(f"Error: {e}")
        sys.exit(1)


def _format_job(job: dict) -> str:
    lines = [
        f"Job {job['id']}  status={job['status']}  stage={job['current_stage']}  "
        f"length={job['story_length']}  source={job['source_type']}",
    ]
    for i in range(STAGE_COUNT):
        status = job["stage_statuses"].get(stage_key(i), "pending")
        artifact = job["artifacts"].get(stage_key(i))
        warnings = (artifact or {}).get("warnings") or []
        suffix = f"  ({len(warnings)} warning(s))" if warnings else ""
        lines.append(f"  [{status:^7}] {i} {STAGES[i][0]}{suffix}")
    if job["output_universe_id"]:
        lines.append(f"  Universe: {job['output_universe_id']}")
    if job["error_message_user"]:
        lines.append(f"  Error: {job['error_message_user']}")
        lines.append(f"  Details: {job['error_message_dev']}")
    return "\n".join(lines)


def show_job_cmd(args):
    """Show a stored job."""
    store = _open_store(args)
    job = store.get_job(args.job_id)
    if not job:
        print(f"Job {args.job_id} not found")
        sys.exit(1)
    if args.json:
        print(json.dumps(job, indent=2))
    else:
        print(_format_job(job))


def list_jobs_cmd(args):
    """List jobs, newest first."""
    store = _open_store(args)
    jobs = store.list_jobs(status=args.status)
    if not jobs:
        print("No jobs.")
        return
    for job in jobs:
        universe = f" -> universe {job['output_universe_id']}" if job["output_universe_id"] else ""
        print(f"  {job['id']:>4}  {job['status']:<9}  stage {job['current_stage']}  "
              f"{job['source_file_name'] or '-'}{universe}")


def set_bible_cmd(args):
    """Attach a Project Bible and/or Design Guide to a universe."""
    store = _open_store(args)
    if not store.get_universe(args.universe_id):
        print(f"Universe {args.universe_id} not found")
        sys.exit(1)
    bible = ProjectBible.from_dict(load_document(args.bible)).to_dict() if args.bible else None
    guide = DesignGuide.from_dict(load_document(args.design_guide)).to_dict() if args.design_guide else None
    if bible is None and guide is None:
        print("Nothing to attach: pass --bible and/or --design-guide")
        sys.exit(1)
    store.update_universe(args.universe_id, design_guide=guide, project_bible=bible)
    print(f"Updated universe {args.universe_id}")


def _load_card_context(args, store: JobStore):
    """Card, its universe and the bible to check against."""
    card = store.get_card(args.card_id)
    if not card:
        print(f"Card {args.card_id} not found")
        sys.exit(1)
    universe = store.get_universe(card["universe_id"])
    if getattr(args, "bible", None):
        bible = ProjectBible.from_dict(load_document(args.bible))
    elif universe and universe["project_bible"]:
        bible = ProjectBible.from_dict(universe["project_bible"])
    else:
        bible = None
    return card, universe, bible


def compose_prompt_cmd(args):
    """Compose the bible-grounded generation prompt for a card."""
    store = _open_store(args)
    card, _universe, bible = _load_card_context(args, store)
    characters = [c.strip() for c in args.characters.split(",")] if args.characters else None
    composed = compose(bible, card, characters)

    if args.json:
        print(json.dumps(vars(composed), indent=2))
        return
    print(composed.full_prompt)
    print(f"\nNegative: {composed.negative_prompt}")
    if composed.locked_constraints:
        print("Locked:")
        for constraint in composed.locked_constraints:
            print(f"  - {constraint}")
    print(f"Bible version: {composed.bible_version_id or '(none)'}")

    if args.record and bible is not None:
        store.set_card_bible_version(card["id"], bible.version_id)
        print(f"Recorded bible version on card {card['id']}")


def visual_prompt_cmd(args):
    """Build a card's image prompt from the universe design guide."""
    store = _open_store(args)
    card, universe, _bible = _load_card_context(args, store)
    if args.design_guide:
        guide = DesignGuide.from_dict(load_document(args.design_guide))
    elif universe and universe["design_guide"]:
        guide = DesignGuide.from_dict(universe["design_guide"])
    else:
        guide = None

    character = None
    if card["primary_character_ids"]:
        characters = store.get_characters_by_universe(card["universe_id"])
        by_id = {c["id"]: c for c in characters}
        character = by_id.get(card["primary_character_ids"][0])

    result = build_visual_prompt(guide, card=card, character=character)
    print(result.prompt)
    print(f"\nNegative: {result.negative_prompt}")
    print(f"Quality: {get_quality_settings(guide)}")


def check_continuity_cmd(args):
    """Check a card for continuity drift."""
    store = _open_store(args)
    card, universe, bible = _load_card_context(args, store)
    guardrails = GuardrailSet.from_dict(universe["source_guardrails"]) if universe else None
    report = check(bible, card, args.asset_version, guardrails=guardrails)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
        return
    print(f"Card {card['id']} ({card['title']}): {'valid' if report.is_valid else 'INVALID'}")
    for warning in report.warnings:
        print(f"  [{warning.severity}] {warning.type}: {warning.message}")
    for suggestion in report.suggestions:
        print(f"  -> {suggestion}")


def build_parser():
    parser = argparse.ArgumentParser(
        description="storyverse - turn scripts, articles and transcripts into story universes"
    )
    parser.add_argument(
        "--db",
        default="storyverse.db",
        help="SQLite database path (default: storyverse.db)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    sub = parser.add_subparsers(dest="command")

    # login
    login_parser = sub.add_parser("login", help="Set up API key")
    login_parser.set_defaults(func=login_cmd)

    # logout
    logout_parser = sub.add_parser("logout", help="Remove stored API key")
    logout_parser.set_defaults(func=logout_cmd)

    # init-db
    init_db_parser = sub.add_parser("init-db", help="Initialize the SQLite schema")
    init_db_parser.set_defaults(func=init_db)

    # create-job
    create_parser = sub.add_parser("create-job", help="Create a queued transformation job")
    create_parser.add_argument("--length", choices=STORY_LENGTHS, default="medium")
    create_parser.add_argument("--source-file", help="Name of the source file (informational)")
    create_parser.set_defaults(func=create_job_cmd)

    # run
    run_parser = sub.add_parser("run", help="Transform a source text file into a universe")
    run_parser.add_argument("source", help="Source text file (.txt, .md, .fountain)")
    run_parser.add_argument("--length", choices=STORY_LENGTHS, default="medium")
    run_parser.set_defaults(func=run_cmd)

    # retry
    retry_parser = sub.add_parser("retry", help="Resume a failed job")
    retry_parser.add_argument("job_id", type=int)
    retry_parser.add_argument("source", help="The job's source text file")
    retry_parser.add_argument(
        "--from-stage",
        type=int,
        choices=range(STAGE_COUNT),
        help="Rerun from this stage (required for completed jobs)",
    )
    retry_parser.set_defaults(func=retry_cmd)

    # show-job
    show_parser = sub.add_parser("show-job", help="Show a job's progress")
    show_parser.add_argument("job_id", type=int)
    show_parser.add_argument("--json", action="store_true", help="Output the raw record")
    show_parser.set_defaults(func=show_job_cmd)

    # list-jobs
    list_parser = sub.add_parser("list-jobs", help="List jobs")
    list_parser.add_argument("--status", choices=("queued", "running", "completed", "failed"))
    list_parser.set_defaults(func=list_jobs_cmd)

    # set-bible
    bible_parser = sub.add_parser("set-bible", help="Attach a bible or design guide to a universe")
    bible_parser.add_argument("universe_id", type=int)
    bible_parser.add_argument("--bible", help="Project Bible YAML/JSON file")
    bible_parser.add_argument("--design-guide", help="Design Guide YAML/JSON file")
    bible_parser.set_defaults(func=set_bible_cmd)

    # compose-prompt
    compose_parser = sub.add_parser("compose-prompt", help="Compose a card's generation prompt")
    compose_parser.add_argument("card_id", type=int)
    compose_parser.add_argument("--bible", help="Bible file (default: the universe's bible)")
    compose_parser.add_argument("--characters", help="Comma-separated names/ids in the scene")
    compose_parser.add_argument("--record", action="store_true",
                                help="Record the bible version on the card")
    compose_parser.add_argument("--json", action="store_true")
    compose_parser.set_defaults(func=compose_prompt_cmd)

    # visual-prompt
    visual_parser = sub.add_parser("visual-prompt", help="Build a card's prompt from the design guide")
    visual_parser.add_argument("card_id", type=int)
    visual_parser.add_argument("--design-guide", help="Design guide file (default: the universe's)")
    visual_parser.set_defaults(func=visual_prompt_cmd)

    # check-continuity
    continuity_parser = sub.add_parser("check-continuity", help="Check a card against the bible")
    continuity_parser.add_argument("card_id", type=int)
    continuity_parser.add_argument("--bible", help="Bible file (default: the universe's bible)")
    continuity_parser.add_argument("--asset-version",
                                   help="Bible version the card's media was generated with")
    continuity_parser.add_argument("--json", action="store_true")
    continuity_parser.set_defaults(func=check_continuity_cmd)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(1)
    args.func(args)


if __name__ == "__main__":
    main()
