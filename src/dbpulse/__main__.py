"""Entry point for ``python -m dbpulse`` and the ``dbpulse`` console script."""

import sys

from dbpulse.cli import cli_main

# Conventional exit status for termination by SIGINT
EXIT_INTERRUPTED = 130


def main() -> int:
    """Run the CLI and return its exit code.

    Returns:
        0 after a clean shutdown or successful one-shot run, 1 on
        configuration or run failure, 130 if interrupted before the agent
        installed its own signal handlers
    """
    try:
        cli_main()
    except SystemExit as e:
        if e.code is None or isinstance(e.code, int):
            return e.code or 0
        return 1
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    return 0


if __name__ == "__main__":
    sys.exit(main())
