"""Command line interface for scanning folders and managing face groups."""
import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional
from uuid import UUID

from facegroups.core.config import settings
from facegroups.core.container import ServiceContainer
from facegroups.core.exceptions import FaceGroupsError
from facegroups.core.logging import get_logger, setup_logging
from facegroups.core.utils.images import list_image_files
from facegroups.domain.value_objects.recognition import (
    KnownPeopleMode,
    RecognitionMode,
    ScanPhase,
    ScanProgress,
)
from facegroups.services.face_library import FaceLibrary

logger = get_logger(__name__)


def _print_progress(progress: ScanProgress) -> None:
    if progress.phase is ScanPhase.PROGRESS:
        print(f"\rScanning {progress.label}", end="", flush=True)
    elif progress.phase is ScanPhase.COMPLETED and progress.total:
        print()


def print_groups(library: FaceLibrary) -> None:
    """Print the folder's groups in display order."""
    groups = library.groups
    print(f"\n===== {library.folder_path} =====")
    print(f"Faces: {len(library.faces)}  Groups: {len(groups)}")
    for group in groups:
        label = group.name or "(unnamed)"
        match = library.verified_match(group.id)
        suffix = f"  [known: {match.confidence:.2f}]" if match else ""
        print(f"{group.id}  {len(group.face_ids):>4}  {label}{suffix}")
    if library.needs_rescan():
        print("Stored faces were built with another recognition mode; rescan with --force.")
    if library.persistence_warning:
        print(f"Warning: face data not saved: {library.persistence_warning}")


async def _library(container: ServiceContainer, args: argparse.Namespace, load_detector: bool) -> FaceLibrary:
    await container.initialize(load_detector=load_detector)
    overrides = {}
    if getattr(args, "mode", None):
        overrides["mode"] = RecognitionMode(args.mode)
    if getattr(args, "known_people", None):
        overrides["known_people_mode"] = KnownPeopleMode(args.known_people)
    library = container.library(str(Path(args.folder).resolve()), settings.recognition_config(**overrides))
    await library.load()
    return library


async def scan(container: ServiceContainer, args: argparse.Namespace) -> int:
    library = await _library(container, args, load_detector=True)
    images = list_image_files(library.folder_path)
    logger.info("Found images", folder=library.folder_path, count=len(images))
    if not await library.scan(images, force_full_scan=args.force, on_progress=_print_progress):
        print("A scan of this folder is already running.")
        return 1
    print_groups(library)
    return 0


async def groups(container: ServiceContainer, args: argparse.Namespace) -> int:
    library = await _library(container, args, load_detector=False)
    print_groups(library)
    return 0


async def suggest(container: ServiceContainer, args: argparse.Namespace) -> int:
    library = await _library(container, args, load_detector=False)
    if args.refine:
        suggestions = library.update_refinement_suggestions(args.threshold)
    else:
        suggestions = library.update_merge_suggestions(args.threshold)

    names = {group.id: group.name or "(unnamed)" for group in library.data.groups}
    for suggestion in suggestions:
        print(
            f"{suggestion.similarity:.3f}  {suggestion.group1_id} ({names[suggestion.group1_id]})"
            f"  <-  {suggestion.group2_id} ({names[suggestion.group2_id]})"
        )
    if args.apply:
        applied = await library.apply_merge_suggestions(suggestions)
        print(f"Applied {applied} of {len(suggestions)} suggestions")
    return 0


async def name(container: ServiceContainer, args: argparse.Namespace) -> int:
    library = await _library(container, args, load_detector=False)
    group_id = UUID(args.group_id)
    if not await library.name_group(group_id, args.name):
        print(f"Unknown group: {group_id}")
        return 1
    if args.write_metadata:
        written = await library.apply_name_to_metadata(group_id)
        print(f"Wrote name to {len(written)} photos")
    if args.remember:
        person = await library.add_group_to_known_people(group_id)
        if person:
            print(f"Known person {person.name} now has {person.embedding_count} embeddings")
    return 0


async def match(container: ServiceContainer, args: argparse.Namespace) -> int:
    library = await _library(container, args, load_detector=False)
    if not await library.match_known_people():
        print("Known people matching is off.")
        return 1
    print_groups(library)
    return 0


async def people(container: ServiceContainer, args: argparse.Namespace) -> int:
    await container.initialize(load_detector=False)
    registry = container.registry
    if args.action == "list":
        for person in await registry.list_people():
            role = f" ({person.role})" if person.role else ""
            print(f"{person.id}  {person.embedding_count:>4}  {person.name}{role}")
    elif args.action == "stats":
        stats = await registry.statistics()
        print(f"People: {stats['people']}  Embeddings: {stats['embeddings']}")
    elif args.action == "remove":
        await registry.remove_person(UUID(args.ids[0]))
    elif args.action == "merge":
        person = await registry.merge_people(UUID(args.ids[0]), UUID(args.ids[1]))
        print(f"Merged into {person.name} ({person.embedding_count} embeddings)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="facegroups", description="Group the faces of a photo folder")
    commands = parser.add_subparsers(dest="command", required=True)

    def folder_command(command: str, help_text: str) -> argparse.ArgumentParser:
        sub = commands.add_parser(command, help=help_text)
        sub.add_argument("folder", help="Photo folder")
        sub.add_argument("--mode", choices=[m.value for m in RecognitionMode], help="Recognition mode")
        return sub

    scan_parser = folder_command("scan", "Scan a folder and group its faces")
    scan_parser.add_argument("--force", action="store_true", help="Discard stored faces and rescan every image")
    scan_parser.add_argument(
        "--known-people", choices=[m.value for m in KnownPeopleMode], help="Known people matching mode"
    )
    scan_parser.set_defaults(handler=scan)

    folder_command("groups", "List the groups of a folder").set_defaults(handler=groups)

    suggest_parser = folder_command("suggest", "Suggest groups that may be the same person")
    suggest_parser.add_argument("--threshold", type=float, help="Minimum similarity")
    suggest_parser.add_argument("--refine", action="store_true", help="Only pair named with unnamed groups")
    suggest_parser.add_argument("--apply", action="store_true", help="Merge every suggested pair")
    suggest_parser.set_defaults(handler=suggest)

    name_parser = folder_command("name", "Name a group")
    name_parser.add_argument("group_id")
    name_parser.add_argument("name", help="Person name, empty to clear")
    name_parser.add_argument("--write-metadata", action="store_true", help="Write the name into the photos")
    name_parser.add_argument("--remember", action="store_true", help="Add the group to known people")
    name_parser.set_defaults(handler=name)

    match_parser = folder_command("match", "Match groups against known people")
    match_parser.add_argument(
        "--known-people", choices=[m.value for m in KnownPeopleMode], help="Known people matching mode"
    )
    match_parser.set_defaults(handler=match)

    people_parser = commands.add_parser("people", help="Manage known people")
    people_parser.add_argument("action", choices=["list", "stats", "remove", "merge"])
    people_parser.add_argument("ids", nargs="*", help="Person id, or source and target ids for merge")
    people_parser.set_defaults(handler=people)
    return parser


async def run(args: argparse.Namespace) -> int:
    container = ServiceContainer()
    try:
        return await args.handler(container, args)
    except FaceGroupsError as e:
        logger.error("Command failed", command=args.command, error=str(e), **e.details)
        return 1
    finally:
        await container.cleanup()


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    setup_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "people":
        needed = {"remove": 1, "merge": 2}.get(args.action, 0)
        if len(args.ids) != needed:
            parser.error(f"people {args.action} takes {needed} id(s)")
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
