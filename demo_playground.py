#!/usr/bin/env python3
"""
Demo: Step through the built-in lessons with evaluation traces.

Shows every snippet, its result, and how the result was computed.
"""

from optbox.config import SandboxConfig
from optbox.examples import lesson_names, play_lesson, snippet_matches
from optbox.session import Session


def main():
    config = SandboxConfig(trace=True)

    for name in lesson_names():
        print("=" * 80)
        print(f"LESSON: {name.upper()}")
        print("=" * 80)

        for snippet, result in play_lesson(name, Session(config)):
            status = "ok" if snippet_matches(snippet, result) else "UNEXPECTED"
            print(f"\n> {snippet.source}    [{status}]")
            print(f"  # {snippet.note}")
            if result.trace:
                for line in result.format_trace().splitlines():
                    print(f"    {line}")
            print(f"  {result}")

    print("\n" + "=" * 80)
    print("Try your own expressions:")
    print("  optbox -e 'int(\"ABC\") ?? -1' --trace")
    print("  optbox")
    print("=" * 80)


if __name__ == "__main__":
    main()
