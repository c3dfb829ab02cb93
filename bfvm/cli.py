from __future__ import annotations

import argparse
import io
import logging
import sys
from pathlib import Path
from typing import BinaryIO, Optional

from .executor import ExecutionError, StepLimitExceeded, execute
from .instructions import disassemble
from .translator import BuildError, build


def _read_source(path: str) -> bytes:
    source_path = Path(path)
    if not source_path.exists():
        raise FileNotFoundError(f"Source file not found: {path}")
    return source_path.read_bytes()


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main(
    argv: Optional[list[str]] = None,
    *,
    stdin: Optional[BinaryIO] = None,
    stdout: Optional[BinaryIO] = None,
) -> int:
    parser = argparse.ArgumentParser(description="Brainfuck compiler and virtual machine")
    parser.add_argument("source", help="Path to Brainfuck source file")
    parser.add_argument(
        "--input",
        help="Input string supplied to the program (default: read from stdin)",
    )
    parser.add_argument(
        "-o",
        "--output",
        help="Destination file for program output (default: stdout)",
    )
    parser.add_argument(
        "--dump",
        action="store_true",
        help="Print the compiled instructions instead of running the program",
    )
    parser.add_argument(
        "--no-fold",
        action="store_true",
        help="Emit one instruction per move/add command",
    )
    parser.add_argument(
        "--max-steps",
        type=int,
        default=None,
        help="Abort after this many executed instructions",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging on stderr")
    args = parser.parse_args(argv)

    _configure_logging(args.debug)

    try:
        source = _read_source(args.source)
    except OSError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    try:
        instructions = build(source, fold=not args.no_fold)
    except BuildError as exc:
        print(f"Build error: {exc}", file=sys.stderr)
        return 1

    if args.dump:
        print(disassemble(instructions))
        return 0

    if args.input is not None:
        input_stream: BinaryIO = io.BytesIO(args.input.encode("utf-8"))
    else:
        input_stream = stdin if stdin is not None else sys.stdin.buffer

    if args.output:
        try:
            output_file = open(args.output, "wb")
        except OSError as exc:
            print(f"Cannot open output file: {exc}", file=sys.stderr)
            return 1
        with output_file:
            return _run(instructions, input_stream, output_file, args.max_steps)
    output_stream = stdout if stdout is not None else sys.stdout.buffer
    try:
        return _run(instructions, input_stream, output_stream, args.max_steps)
    finally:
        output_stream.flush()


def _run(instructions, input_stream: BinaryIO, output_stream: BinaryIO, max_steps: Optional[int]) -> int:
    try:
        execute(instructions, input_stream, output_stream, max_steps=max_steps)
    except ExecutionError as exc:
        print(f"Runtime error: {exc}", file=sys.stderr)
        return 1
    except StepLimitExceeded as exc:
        print(f"Runtime error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
