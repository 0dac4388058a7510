"""
Command line entry point for the optbox sandbox.

    optbox -e 'int("ABC") ?? -1' --trace
    optbox --lesson optionals
    optbox                      # interactive REPL

Exit status: 0 on success, 1 when evaluation fails (or a lesson step does
not match), 2 for parse and configuration errors.
"""

import argparse
import logging
import sys
from typing import Callable, List, Optional

from optbox import __version__
from optbox.config import OUTPUT_FORMATS, ConfigError, SandboxConfig, load_config
from optbox.evaluator import EvalResult
from optbox.examples import get_lesson, lesson_names, play_lesson, snippet_matches
from optbox.parser import ParseError
from optbox.serialization import result_to_json, result_to_yaml
from optbox.session import Session, SessionTerminated
from optbox.values import describe

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_EVAL_ERROR = 1
EXIT_USAGE_ERROR = 2

REPL_HELP = """Enter an expression, or `let name = expression`.
Optionals: x ?? default, x!, if let v = x { v } else { 0 }, m?[key]
Commands:
  :env            show bindings
  :history        show evaluated lines
  :trace on|off   toggle the evaluation trace
  :reset          forget bindings and history
  :help           show this help
  :quit           leave the sandbox"""


def format_result(result: EvalResult, output_format: str = "text", show_trace: bool = False) -> str:
    """Render a result for display in the chosen output format."""
    if output_format == "json":
        return result_to_json(result)
    if output_format == "yaml":
        return result_to_yaml(result).rstrip("\n")

    lines = []
    if show_trace and result.trace:
        lines.append(result.format_trace())
    if result.ok:
        lines.append(f"=> {describe(result.value)}")
    else:
        lines.append(f"error: {result.error}")
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="optbox",
        description="Evaluate expressions with optional values and see how they are computed",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("-e", "--expression", help="Evaluate one expression and exit")
    mode.add_argument("--lesson", help="Play a built-in lesson")
    mode.add_argument("--list-lessons", action="store_true", help="List built-in lessons")
    parser.add_argument("--trace", action="store_true", default=None, help="Show the evaluation trace")
    parser.add_argument("--format", dest="output_format", choices=OUTPUT_FORMATS, help="Output format")
    parser.add_argument("--halt-on-unwrap", action="store_true", default=None,
                        help="End the session when a force-unwrap finds nil")
    parser.add_argument("--config", help="Path to a YAML configuration file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config)
    except (ConfigError, FileNotFoundError) as e:
        print(f"config error: {e}", file=sys.stderr)
        return EXIT_USAGE_ERROR

    if args.trace is not None:
        config.trace = args.trace
    if args.output_format is not None:
        config.output_format = args.output_format
    if args.halt_on_unwrap is not None:
        config.halt_on_unwrap = args.halt_on_unwrap

    if args.list_lessons:
        for name in lesson_names():
            print(f"{name} ({len(get_lesson(name))} steps)")
        return EXIT_OK

    if args.lesson is not None:
        return run_lesson(args.lesson, config)

    session = Session(config)
    if args.expression is not None:
        return run_once(session, args.expression)

    return run_repl(session)


def run_once(session: Session, source: str) -> int:
    config = session.config
    try:
        result = session.run(source)
    except ParseError as e:
        print(f"parse error: {e}", file=sys.stderr)
        return EXIT_USAGE_ERROR
    except SessionTerminated as e:
        print(str(e), file=sys.stderr)
        return EXIT_EVAL_ERROR

    print(format_result(result, config.output_format, config.trace))
    return EXIT_OK if result.ok else EXIT_EVAL_ERROR


def run_lesson(name: str, config: SandboxConfig) -> int:
    try:
        get_lesson(name)
    except KeyError as e:
        print(e.args[0], file=sys.stderr)
        return EXIT_USAGE_ERROR

    # lessons contain deliberate unwrap failures
    config.halt_on_unwrap = False
    mismatches = 0
    for snippet, result in play_lesson(name, Session(config)):
        print(f"> {snippet.source}")
        print(f"  # {snippet.note}")
        for line in format_result(result, "text", config.trace).splitlines():
            print(f"  {line}")
        if not snippet_matches(snippet, result):
            mismatches += 1
            logger.warning("Lesson step %r did not produce the expected result", snippet.source)
    return EXIT_OK if mismatches == 0 else EXIT_EVAL_ERROR


def run_repl(
    session: Session,
    read: Callable[[str], str] = input,
    write: Callable[[str], None] = print,
) -> int:
    """
    Interactive loop. ``read``/``write`` default to the terminal.

    Returns the process exit status.
    """
    write("optbox sandbox. Type :help for commands, :quit to leave.")
    config = session.config

    while True:
        try:
            line = read(config.prompt).strip()
        except (EOFError, KeyboardInterrupt):
            write("")
            return EXIT_OK

        if not line:
            continue

        if line.startswith(":"):
            if _repl_command(session, line, write):
                return EXIT_OK
            continue

        try:
            result = session.run(line)
        except ParseError as e:
            write(f"parse error: {e}")
            continue
        except SessionTerminated as e:
            write(str(e))
            return EXIT_EVAL_ERROR

        write(format_result(result, config.output_format, config.trace))


def _repl_command(session: Session, line: str, write: Callable[[str], None]) -> bool:
    """Handle a ':' command. Returns True when the REPL should exit."""
    command, _, argument = line[1:].partition(" ")
    argument = argument.strip()

    if command in ("quit", "q", "exit"):
        return True
    if command == "help":
        write(REPL_HELP)
    elif command == "env":
        if not session.bindings:
            write("(no bindings)")
        for name, value in sorted(session.bindings.items()):
            write(f"{name} = {describe(value)}")
    elif command == "history":
        for i, entry in enumerate(session.history, 1):
            write(f"{i:>3}  {entry.source}  =>  {entry.result}")
    elif command == "trace":
        if argument not in ("on", "off"):
            write("usage: :trace on|off")
        else:
            session.config.trace = argument == "on"
            write(f"trace {argument}")
    elif command == "reset":
        session.reset()
        write("session reset")
    else:
        write(f"unknown command ':{command}' (try :help)")
    return False


if __name__ == "__main__":
    sys.exit(main())
