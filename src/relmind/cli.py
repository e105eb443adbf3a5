"""Command-line interface for relmind.

Provides subcommands for managing people, logging notes, reading the facts
and relationships extracted from them, and inspecting contact activity.
"""

import argparse
import asyncio
import os
import sys
from datetime import date
from pathlib import Path
from typing import Callable

from groq import AsyncGroq

from .config import (
    DEFAULT_CONFIG_PATH,
    RelmindConfig,
    config_from_env,
    load_config,
    save_config,
)
from .errors import RelmindError
from .extraction import (
    ExtractionOrchestrator,
    ExtractionResult,
    NameMatcher,
    NoteExtractor,
)
from .knowledge import FactStore, KnowledgeStore, RelationshipGraph, compute_current_value
from .logging import configure_logger, get_logger
from .models import InteractionType, Person, Touchpoint


def _config_path(args: argparse.Namespace) -> Path:
    return Path(args.config).expanduser() if args.config else DEFAULT_CONFIG_PATH


def _load(args: argparse.Namespace) -> RelmindConfig:
    """Load config with env overrides and point the event log at it."""
    config = config_from_env(load_config(_config_path(args)))
    configure_logger(config.log_dir)
    return config


def _iso_date(value: str) -> date:
    """argparse type for YYYY-MM-DD dates."""
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date '{value}', expected YYYY-MM-DD")


def _open_store(config: RelmindConfig) -> KnowledgeStore:
    assert config.db_path is not None
    store = KnowledgeStore(config.db_path)
    store.init_db()
    return store


def _build_extractor(config: RelmindConfig) -> NoteExtractor:
    """Create the LLM extractor from GROQ_API_KEY."""
    api_key = os.getenv("GROQ_API_KEY")
    if not api_key:
        raise RelmindError("GROQ_API_KEY is not set")
    return NoteExtractor(
        AsyncGroq(api_key=api_key),
        model=config.model,
        temperature=config.temperature,
    )


def _find_person(store: KnowledgeStore, name: str) -> Person | None:
    """Resolve a command-line name to a single known person."""
    match = NameMatcher().best_match(name, store.list_persons())
    if match is None:
        print(f"No person matching '{name}'.", file=sys.stderr)
        return None
    return match.person


class TerminalReviewer:
    """Interactive review of a staged extraction result."""

    def __init__(
        self,
        input_fn: Callable[[str], str] = input,
        print_fn: Callable[..., None] = print,
    ) -> None:
        self.input = input_fn
        self.print = print_fn

    async def __call__(self, result: ExtractionResult) -> ExtractionResult | None:
        self.print(f"\nSummary: {result.summary or '(none)'}")

        for index, mention in enumerate(result.mentioned_people):
            if mention.is_primary:
                continue
            result = self._review_mention(result, index)

        if result.facts:
            self.print("\nFacts:")
        for index, fact in enumerate(result.facts):
            line = f"  [{fact.category.label}] {fact.person_name}: {fact.key} = {fact.value}"
            answer = self.input(f"{line}  keep? [Y/n] ").strip().lower()
            if answer in ("n", "no"):
                result = result.set_fact_confirmed(index, False)

        answer = self.input("\nSave? [Y/n] ").strip().lower()
        if answer in ("n", "no"):
            return None
        return result

    def _review_mention(self, result: ExtractionResult, index: int) -> ExtractionResult:
        mention = result.mentioned_people[index]
        relation = f" ({mention.relationship_to_primary})" if mention.relationship_to_primary else ""
        bound = mention.bound_person.display_name if mention.bound_person else "new person"
        self.print(f"\nMentioned: {mention.name}{relation} -> {bound}")
        for number, candidate in enumerate(mention.candidates, start=1):
            self.print(
                f"  {number}. {candidate.person.display_name} "
                f"({candidate.score:.2f}, {candidate.match_type.value})"
            )

        answer = self.input("  [Enter] accept, number to pick, n new, s skip: ").strip().lower()
        if answer == "s":
            return result.set_mention_confirmed(index, False)
        if answer == "n":
            return result.unbind(index)
        if answer.isdigit() and 1 <= int(answer) <= len(mention.candidates):
            return result.bind(index, mention.candidates[int(answer) - 1].person)
        return result


def cmd_people_list(args: argparse.Namespace) -> int:
    """List everyone in the registry."""
    store = _open_store(_load(args))
    try:
        people = store.list_persons()
        if not people:
            print("No people yet.")
            return 0
        for person in people:
            print(f"{person.display_name:<30} {person.source.value:<14} {person.id}")
        return 0
    finally:
        store.close()


def cmd_people_add(args: argparse.Namespace) -> int:
    """Add an app-local person."""
    store = _open_store(_load(args))
    try:
        person = store.add_person(Person(first_name=args.first, last_name=args.last or ""))
        print(f"Added {person.display_name} ({person.id})")
        return 0
    finally:
        store.close()


def cmd_log(args: argparse.Namespace) -> int:
    """Save a note, extract from it, review and commit."""
    config = _load(args)
    store = _open_store(config)
    try:
        person = _find_person(store, args.person)
        if person is None:
            return 1

        # The note is saved before extraction so it survives any failure
        touchpoint = store.save_touchpoint(
            Touchpoint(
                raw_note=args.note,
                primary_person_id=person.id,
                interaction_type=InteractionType(args.type),
            )
        )
        print(f"Saved note for {person.display_name}.")

        try:
            orchestrator = ExtractionOrchestrator(
                store,
                _build_extractor(config),
                matcher=NameMatcher(threshold=config.match_threshold),
                event_log=get_logger(),
                match_threshold=config.match_threshold,
                auto_bind_threshold=config.auto_bind_threshold,
            )
            reviewer = None if args.yes else TerminalReviewer()
            outcome = asyncio.run(orchestrator.extract_and_commit(touchpoint, reviewer))
        except RelmindError as e:
            print(f"Extraction not saved: {e}", file=sys.stderr)
            return 1

        if outcome is None:
            print("Extraction discarded.")
            return 0
        print(
            f"Recorded {len(outcome.facts_recorded)} facts, "
            f"{len(outcome.persons_created)} new people, "
            f"{len(outcome.relationships_created)} relationships."
        )
        return 0
    finally:
        store.close()


def cmd_facts(args: argparse.Namespace) -> int:
    """Show a person's current facts."""
    store = _open_store(_load(args))
    try:
        person = _find_person(store, args.person)
        if person is None:
            return 1
        facts = FactStore(store)
        active = facts.active_facts(person.id)
        if not active:
            print(f"No facts about {person.display_name}.")
            return 0

        print(f"\n{person.display_name}")
        for fact in active:
            current = compute_current_value(fact, args.as_of)
            print(f"  [{fact.category.label}] {fact.key}: {current}")
            if args.history:
                for old in facts.history(person.id, fact.category, fact.key):
                    if old.id == fact.id:
                        continue
                    print(f"      was: {old.value} ({old.extracted_at.date().isoformat()})")
        return 0
    finally:
        store.close()


def cmd_relations(args: argparse.Namespace) -> int:
    """Show a person's relationship edges."""
    store = _open_store(_load(args))
    try:
        person = _find_person(store, args.person)
        if person is None:
            return 1
        edges = RelationshipGraph(store).relationships_for(person.id)
        if not edges:
            print(f"No relationships for {person.display_name}.")
            return 0
        for edge in edges:
            related = store.get_person(edge.related_person_id)
            print(f"  {edge.relationship_type:<15} {related.display_name} ({edge.source.value})")
        return 0
    finally:
        store.close()


def cmd_timeline(args: argparse.Namespace) -> int:
    """Show a person's touchpoints, newest first."""
    store = _open_store(_load(args))
    try:
        person = _find_person(store, args.person)
        if person is None:
            return 1
        touchpoints = store.list_touchpoints(person.id)
        if not touchpoints:
            print(f"No interactions with {person.display_name}.")
            return 0

        print(f"\n{person.display_name}")
        for touchpoint in touchpoints:
            text = touchpoint.summary or touchpoint.raw_note
            count = len(touchpoint.extracted_fact_ids)
            print(
                f"  {touchpoint.occurred_at.date().isoformat()}  "
                f"{touchpoint.interaction_type.value:<10} {text} "
                f"({count} fact{'' if count == 1 else 's'})"
            )
        return 0
    finally:
        store.close()


def cmd_stats(args: argparse.Namespace) -> int:
    """Show activity counters and per-person contact history."""
    store = _open_store(_load(args))
    try:
        insights = store.insights()
        print(f"People:          {insights.people}")
        print(f"Interactions:    {insights.interactions}")
        print(f"Active contacts: {insights.active_contacts}")
        print(f"This week:       {insights.this_week}")

        stats = store.contact_stats()
        if stats:
            print()
        for entry in stats:
            last = (
                entry.last_contacted_at.date().isoformat()
                if entry.last_contacted_at
                else "never"
            )
            print(
                f"  {entry.person.display_name:<30} "
                f"{entry.touchpoint_count:>4} interactions  last: {last}"
            )
        return 0
    finally:
        store.close()


def cmd_config_show(args: argparse.Namespace) -> int:
    """Print the effective configuration."""
    config = _load(args)
    print(f"Config file:         {_config_path(args)}")
    print(f"Database:            {config.db_path}")
    print(f"Event log:           {get_logger().log_path}")
    print(f"Model:               {config.model}")
    print(f"Temperature:         {config.temperature}")
    print(f"Match threshold:     {config.match_threshold}")
    print(f"Auto-bind threshold: {config.auto_bind_threshold}")
    return 0


def cmd_config_init(args: argparse.Namespace) -> int:
    """Write the config file with defaults filled in."""
    path = _config_path(args)
    if path.exists() and not args.force:
        print(f"{path} already exists, use --force to overwrite.", file=sys.stderr)
        return 1
    save_config(load_config(path), path)
    print(f"Wrote {path}")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relmind",
        description="Keep track of what you learn about the people you know",
    )
    parser.add_argument("--config", help="Path to config.json")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    people = subparsers.add_parser("people", help="Manage people")
    people_sub = people.add_subparsers(dest="people_command")
    people_list = people_sub.add_parser("list", help="List people")
    people_list.set_defaults(func=cmd_people_list)
    people_add = people_sub.add_parser("add", help="Add a person")
    people_add.add_argument("first", help="First name")
    people_add.add_argument("last", nargs="?", help="Last name")
    people_add.set_defaults(func=cmd_people_add)

    log = subparsers.add_parser("log", help="Log a note about someone")
    log.add_argument("person", help="Who the note is about")
    log.add_argument("note", help="The note text")
    log.add_argument(
        "--type",
        default=InteractionType.OTHER.value,
        choices=[t.value for t in InteractionType],
        help="Interaction type",
    )
    log.add_argument("--yes", "-y", action="store_true", help="Save without review")
    log.set_defaults(func=cmd_log)

    facts = subparsers.add_parser("facts", help="Show facts about someone")
    facts.add_argument("person", help="Person name")
    facts.add_argument("--history", action="store_true", help="Include superseded values")
    facts.add_argument(
        "--as-of", dest="as_of", type=_iso_date, help="Compute values as of YYYY-MM-DD"
    )
    facts.set_defaults(func=cmd_facts)

    relations = subparsers.add_parser("relations", help="Show someone's relationships")
    relations.add_argument("person", help="Person name")
    relations.set_defaults(func=cmd_relations)

    timeline = subparsers.add_parser("timeline", help="Show interactions with someone")
    timeline.add_argument("person", help="Person name")
    timeline.set_defaults(func=cmd_timeline)

    stats = subparsers.add_parser("stats", help="Show contact activity")
    stats.set_defaults(func=cmd_stats)

    config = subparsers.add_parser("config", help="Show or create the config file")
    config_sub = config.add_subparsers(dest="config_command")
    config_show = config_sub.add_parser("show", help="Print the effective configuration")
    config_show.set_defaults(func=cmd_config_show)
    config_init = config_sub.add_parser("init", help="Write the config file")
    config_init.add_argument("--force", action="store_true", help="Overwrite an existing file")
    config_init.set_defaults(func=cmd_config_init)

    return parser


def run_cli(argv: list[str] | None = None) -> int:
    """Run the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:]).

    Returns:
        Exit code.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except RelmindError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
