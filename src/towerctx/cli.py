# src/towerctx/cli.py
import sys
import argparse
import asyncio
import json
import logging
import os
from pathlib import Path

import pyperclip

from towerctx.config import ProjectTreeMode, Settings
from towerctx.core.engine import ContextEngine
from towerctx.core.workspace import WorkspaceRegistry

TOP_FILES = 10


def create_arg_parser():
    parser = argparse.ArgumentParser(
        description="Select files from one or more project roots and assemble them into a single LLM-ready context."
    )
    parser.add_argument("roots", type=str, nargs="*", help="Project root directories (default: current directory)")
    parser.add_argument(
        "-s", "--select",
        action="append",
        default=[],
        metavar="PATH",
        help="File or directory to select (repeatable)",
    )
    parser.add_argument("--all", action="store_true", help="Select every non-ignored file")

    output = parser.add_mutually_exclusive_group()
    output.add_argument("-o", "--output", type=str, default=None, help="Write the context to this file")
    output.add_argument("--copy", action="store_true", help="Copy the context to the clipboard")

    parser.add_argument("--prefix", type=str, default=None, help="Text placed before the context")
    parser.add_argument("--suffix", type=str, default=None, help="Text placed after the context")
    parser.add_argument(
        "--tree",
        type=str,
        default=None,
        choices=[mode.value for mode in ProjectTreeMode],
        help="Project tree mode",
    )
    parser.add_argument("--show-sizes", action="store_true", help="Show file sizes in the project tree")
    parser.add_argument("--no-gitignore", action="store_true", help="Do not read .gitignore files")
    parser.add_argument(
        "-i", "--ignore",
        action="append",
        default=[],
        metavar="PATTERN",
        help="Extra gitignore-style pattern (repeatable)",
    )
    parser.add_argument("--config", type=str, default=None, help="JSON settings file")
    parser.add_argument("--state-file", type=str, default=None, help="Persist the selection in this JSON file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def get_default_output_name(root_dir: Path) -> str:
    """Generates a dynamic filename based on the directory name."""
    folder_name = root_dir.name or "project"
    safe_name = folder_name.replace(" ", "_")
    return f"{safe_name}_context.txt"


def load_settings(args, extra_ignore=()) -> Settings:
    """Reads the JSON settings file (if any), then lets flags override it."""
    data = {}
    if args.config:
        with open(args.config, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Settings file {args.config} must contain a JSON object")

    tree = dict(data.get("projectTree") or {})
    if args.tree:
        tree["type"] = args.tree
        tree["enabled"] = args.tree != ProjectTreeMode.OFF.value
    if args.show_sizes:
        tree["showFileSize"] = True
    if tree:
        data["projectTree"] = tree
    if args.no_gitignore:
        data["useIgnoreFile"] = False
    extra = list(args.ignore) + list(extra_ignore)
    if extra:
        data["manualIgnorePatterns"] = list(data.get("manualIgnorePatterns") or []) + extra
    if args.state_file:
        data["persistSelection"] = True
    return Settings.from_mapping(data)


def print_summary(engine: ContextEngine, file_count: int, stream) -> None:
    files = engine.checked_files()
    stats = [(engine.counter.count_files([node.absolute_path]), node) for node in files]
    stats.sort(key=lambda x: x[0], reverse=True)
    total_tokens = sum(tokens for tokens, _ in stats)

    print(f"\n--- Top {TOP_FILES} Largest Files (Est. Tokens) ---", file=stream)
    print(f"{'Rank':<5} | {'Tokens':<10} | {'File Path'}", file=stream)
    print("-" * 60, file=stream)
    for i, (tokens, node) in enumerate(stats[:TOP_FILES]):
        print(f"{i+1:<5} | {tokens:<10} | {node.workspace.name}/{node.relative_path}", file=stream)
    print("-" * 60, file=stream)
    print(f"Total files: {file_count}", file=stream)
    print(f"Total tokens: {total_tokens}", file=stream)
    print("-" * 60, file=stream)


def resolve_output(args, first_root: Path):
    """Returns the output path, "-" for stdout, or None for the clipboard."""
    if args.copy:
        return None
    if args.output == "-":
        return "-"
    if args.output:
        return Path(args.output).resolve()
    return first_root / get_default_output_name(first_root)


async def run(args, stream) -> int:
    roots = [Path(root).resolve() for root in (args.roots or [os.getcwd()])]
    output = resolve_output(args, roots[0])

    # Never scan the file we are about to write.
    extra_ignore = []
    if isinstance(output, Path) and output.parent == roots[0]:
        extra_ignore.append("/" + output.name)
    settings = load_settings(args, extra_ignore)

    registry = WorkspaceRegistry()
    for root in roots:
        registry.add(root)

    engine = ContextEngine(registry, settings, state_file=args.state_file)
    try:
        print("--- towerctx ---", file=stream)
        for workspace in registry.workspaces:
            print(f"Scanning: {workspace.root_path}", file=stream)
        await engine.refresh()

        # 1. Selection
        if args.all:
            engine.toggle_all(True)
        for path in args.select:
            engine.toggle_path(path, True)

        if not engine.checked_files():
            print("No files selected.", file=stream)
            return 0

        # 2. Review & Stats
        result = await engine.generate_context(prefix=args.prefix, suffix=args.suffix)
        print_summary(engine, result.file_count, stream)

        # 3. Output
        if output is None:
            await engine.copy_to_clipboard(result=result)
            print("\nSuccess! Context copied to the clipboard.", file=stream)
        elif output == "-":
            sys.stdout.write(result.context)
            sys.stdout.write("\n")
        else:
            try:
                with open(output, "w", encoding="utf-8") as f:
                    f.write(result.context)
                print(f"\nSuccess! Context written to: {output}", file=stream)
            except IOError as e:
                print(f"Error writing file: {e}", file=sys.stderr)
                return 1
        return 0
    finally:
        engine.close()


def main(argv=None):
    parser = create_arg_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )
    # The summary moves to stderr when the context itself goes to stdout.
    stream = sys.stderr if args.output == "-" else sys.stdout

    try:
        sys.exit(asyncio.run(run(args, stream)))

    except KeyboardInterrupt:
        print("\nCancelled.")
        sys.exit(1)

    except pyperclip.PyperclipException as e:
        print(f"Clipboard unavailable: {e}", file=sys.stderr)
        sys.exit(1)

    except Exception as e:
        print(f"An unexpected error occurred: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
