from pathlib import Path
import tempfile
from contextlib import redirect_stderr, redirect_stdout
import io
import unittest

from bfvm import (
    TAPE_SIZE,
    ExecutionError,
    ExecutionErrorKind,
    Executor,
    StepLimitExceeded,
    build,
    execute,
)
from bfvm.cli import main as cli_main


HELLO_WORLD = """
[ This program prints "Hello World!" and a newline to the screen, its
  length is 106 active command characters. [It is not the shortest.]

  This loop is an "initial comment loop", a simple way of adding a comment
  to a BF program such that you don't have to worry about any command
  characters. Any ".", ",", "+", "-", "<" and ">" characters are simply
  ignored, the "[" and "]" characters just have to be balanced. This
  loop and the commands it contains are ignored because the current cell
  defaults to a value of 0; the 0 value causes this loop to be skipped.
]
++++++++               Set Cell #0 to 8
[
    >++++               Add 4 to Cell #1; this will always set Cell #1 to 4
    [                   as the cell will be cleared by the loop
        >++             Add 2 to Cell #2
        >+++            Add 3 to Cell #3
        >+++            Add 3 to Cell #4
        >+              Add 1 to Cell #5
        <<<<-           Decrement the loop counter in Cell #1
    ]                   Loop until Cell #1 is zero; number of iterations is 4
    >+                  Add 1 to Cell #2
    >+                  Add 1 to Cell #3
    >-                  Subtract 1 from Cell #4
    >>+                 Add 1 to Cell #6
    [<]                 Move back to the first zero cell you find; this will
                        be Cell #1 which was cleared by the previous loop
    <-                  Decrement the loop Counter in Cell #0
]                       Loop until Cell #0 is zero; number of iterations is 8

The result of this is:
Cell no :   0   1   2   3   4   5   6
Contents:   0   0  72 104  88  32   8
Pointer :   ^

>>.                     Cell #2 has value 72 which is 'H'
>---.                   Subtract 3 from Cell #3 to get 101 which is 'e'
+++++++..+++.           Likewise for 'llo' from Cell #3
>>.                     Cell #5 is 32 for the space
<-.                     Subtract 1 from Cell #4 for 87 to give a 'W'
<.                      Cell #3 was set to 'o' from the end of 'Hello'
+++.------.--------.    Cell #3 for 'rl' and 'd'
>>+.                    Add 1 to Cell #5 gives us an exclamation point
>++.                    And finally a newline from Cell #6"""

SEVEN = """
++       Cell c0 = 2
> +++++  Cell c1 = 5

[        Start your loops with your cell pointer on the loop counter (c1 in our case)
< +      Add 1 to c0
> -      Subtract 1 from c1
]        End your loops with the cell pointer on the loop counter

At this point our program has added 5 to 2 leaving 7 in c0 and 0 in c1
but we cannot output this value to the terminal since it is not ASCII encoded

To display the ASCII character "7" we must add 48 to the value 7
We use a loop to compute 48 = 6 * 8

++++ ++++  c1 = 8 and this will be our loop counter again
[
< +++ +++  Add 6 to c0
> -        Subtract 1 from c1
]
< .        Print out c0 which has the value 55 which translates to "7"!
"""


class FailingStream:
    def __init__(self, message: str) -> None:
        self.message = message

    def read(self, size: int = -1) -> bytes:
        raise OSError(self.message)

    def write(self, data: bytes) -> int:
        raise OSError(self.message)


def run_program(source: str, data: bytes = b"", *, fold: bool = True) -> bytes:
    output = io.BytesIO()
    execute(build(source, fold=fold), io.BytesIO(data), output)
    return output.getvalue()


class ExecutorTests(unittest.TestCase):
    def test_input_output(self) -> None:
        self.assertEqual(run_program(",>,.<.", b"hi"), b"ih")

    def test_seven(self) -> None:
        self.assertEqual(run_program(SEVEN), bytes([55]))

    def test_hello_world(self) -> None:
        output = run_program(HELLO_WORLD)
        self.assertEqual(len(output), 13)
        self.assertEqual(output, b"Hello World!\n")

    def test_cell_wraps_upward(self) -> None:
        self.assertEqual(run_program("+" * 255 + ".+."), b"\xff\x00")

    def test_cell_wraps_downward(self) -> None:
        self.assertEqual(run_program("-."), b"\xff")

    def test_large_folded_add_wraps(self) -> None:
        self.assertEqual(run_program("+" * 257 + "."), b"\x01")

    def test_loop_skipped_when_cell_is_zero(self) -> None:
        self.assertEqual(run_program("[.+]."), b"\x00")

    def test_loop_terminates_when_counter_reaches_zero(self) -> None:
        self.assertEqual(run_program("+++[.-]."), b"\x03\x02\x01\x00")

    def test_folding_preserves_output(self) -> None:
        programs = [
            (HELLO_WORLD, b""),
            (SEVEN, b""),
            (",>,.<.", b"hi"),
            (",[.,]", b"echo"[::-1] + b"\x00"),
            ("++>+++[<+>-]<.><>+-.", b""),
        ]
        for source, data in programs:
            with self.subTest(source=source[:20]):
                self.assertEqual(
                    run_program(source, data, fold=True),
                    run_program(source, data, fold=False),
                )

    def test_step_limit(self) -> None:
        with self.assertRaises(StepLimitExceeded):
            execute(build("+[]"), io.BytesIO(), io.BytesIO(), max_steps=10)


class ExecutorTapeBoundTests(unittest.TestCase):
    def test_move_left_of_origin(self) -> None:
        with self.assertRaises(ExecutionError) as ctx:
            run_program("<")
        self.assertEqual(ctx.exception.kind, ExecutionErrorKind.DATA_OVERFLOW)
        self.assertEqual(ctx.exception.index, -1)
        self.assertEqual(str(ctx.exception), "data overflow, idx = -1")

    def test_move_past_end(self) -> None:
        for fold in (True, False):
            with self.subTest(fold=fold):
                with self.assertRaises(ExecutionError) as ctx:
                    run_program(">" * TAPE_SIZE, fold=fold)
                self.assertEqual(str(ctx.exception), "data overflow, idx = 30000")

    def test_edges_are_reachable(self) -> None:
        executor = Executor(build(">" * (TAPE_SIZE - 1) + "+"), io.BytesIO(), io.BytesIO())
        executor.run()
        self.assertEqual(executor.pointer, TAPE_SIZE - 1)
        self.assertEqual(executor.tape[TAPE_SIZE - 1], 1)

        executor = Executor(build(">+<+"), io.BytesIO(), io.BytesIO())
        executor.run()
        self.assertEqual(executor.pointer, 0)

    def test_folded_move_reports_net_index(self) -> None:
        executor = Executor(build(">>+<<<<<"), io.BytesIO(), io.BytesIO())
        with self.assertRaises(ExecutionError) as ctx:
            executor.run()
        self.assertEqual(ctx.exception.index, -3)
        self.assertEqual(executor.pointer, 2)
        self.assertEqual(executor.tape[2], 1)

    def test_unfolded_move_reports_first_out_of_range_step(self) -> None:
        with self.assertRaises(ExecutionError) as ctx:
            run_program(">>+<<<<<", fold=False)
        self.assertEqual(ctx.exception.index, -1)

    def test_faulted_executor_stays_faulted(self) -> None:
        executor = Executor(build("<+"), io.BytesIO(), io.BytesIO())
        with self.assertRaises(ExecutionError):
            executor.step()
        self.assertTrue(executor.halted)
        self.assertEqual(executor.cursor, 0)
        with self.assertRaises(ExecutionError):
            executor.step()
        self.assertEqual(executor.tape[0], 0)

    def test_run_after_fault_raises_stored_error(self) -> None:
        executor = Executor(build("+<"), io.BytesIO(), io.BytesIO())
        with self.assertRaises(ExecutionError) as first:
            executor.run()
        with self.assertRaises(ExecutionError) as second:
            executor.run()
        self.assertIs(second.exception, first.exception)
        self.assertEqual(executor.tape[0], 1)


class ExecutorIOTests(unittest.TestCase):
    def test_read_failure(self) -> None:
        instructions = build(",>,.<.")
        with self.assertRaises(ExecutionError) as ctx:
            execute(instructions, FailingStream("read"), FailingStream("write"))
        self.assertEqual(str(ctx.exception), "io err: read")

    def test_write_failure(self) -> None:
        instructions = build(",>,.<.")
        with self.assertRaises(ExecutionError) as ctx:
            execute(instructions, io.BytesIO(b"hi"), FailingStream("write"))
        self.assertEqual(ctx.exception.kind, ExecutionErrorKind.IO)
        self.assertEqual(str(ctx.exception), "io err: write")

    def test_end_of_input_is_an_error(self) -> None:
        with self.assertRaises(ExecutionError) as ctx:
            run_program(",", b"")
        self.assertEqual(ctx.exception, ExecutionError.io("unexpected end of input stream"))

    def test_short_input_is_an_error(self) -> None:
        with self.assertRaises(ExecutionError):
            run_program(",.,.", b"a")

    def test_closed_output_stream(self) -> None:
        output = io.BytesIO()
        output.close()
        with self.assertRaises(ExecutionError) as ctx:
            execute(build("."), io.BytesIO(), output)
        self.assertEqual(ctx.exception.kind, ExecutionErrorKind.IO)

    def test_output_written_before_fault_is_kept(self) -> None:
        output = io.BytesIO()
        with self.assertRaises(ExecutionError):
            execute(build("+.<"), io.BytesIO(), output)
        self.assertEqual(output.getvalue(), b"\x01")


class CLITests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp_path = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _write_source(self, content: str, name: str = "program.bf") -> Path:
        path = self.tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path

    def test_cli_runs_with_input_string(self) -> None:
        source_path = self._write_source(",>,.<.")
        stdout = io.BytesIO()
        exit_code = cli_main([str(source_path), "--input", "hi"], stdout=stdout)
        self.assertEqual(exit_code, 0)
        self.assertEqual(stdout.getvalue(), b"ih")

    def test_cli_reads_stdin(self) -> None:
        source_path = self._write_source(",.")
        stdout = io.BytesIO()
        exit_code = cli_main([str(source_path)], stdin=io.BytesIO(b"x"), stdout=stdout)
        self.assertEqual(exit_code, 0)
        self.assertEqual(stdout.getvalue(), b"x")

    def test_cli_writes_output_file(self) -> None:
        source_path = self._write_source(HELLO_WORLD)
        output_path = self.tmp_path / "out.bin"
        exit_code = cli_main([str(source_path), "--output", str(output_path)])
        self.assertEqual(exit_code, 0)
        self.assertEqual(output_path.read_bytes(), b"Hello World!\n")

    def test_cli_dump(self) -> None:
        source_path = self._write_source("+[-]")
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            exit_code = cli_main([str(source_path), "--dump"])
        self.assertEqual(exit_code, 0)
        self.assertIn("0001  jz 4", buffer.getvalue())

    def test_cli_build_error(self) -> None:
        source_path = self._write_source("+\n+]")
        buffer = io.StringIO()
        with redirect_stderr(buffer):
            exit_code = cli_main([str(source_path)], stdout=io.BytesIO())
        self.assertEqual(exit_code, 1)
        self.assertIn("Build error: unmatched ']' at line 2, column 2", buffer.getvalue())

    def test_cli_runtime_error(self) -> None:
        source_path = self._write_source("<")
        buffer = io.StringIO()
        with redirect_stderr(buffer):
            exit_code = cli_main([str(source_path)], stdout=io.BytesIO())
        self.assertEqual(exit_code, 1)
        self.assertIn("Runtime error: data overflow, idx = -1", buffer.getvalue())

    def test_cli_step_limit(self) -> None:
        source_path = self._write_source("+[]")
        buffer = io.StringIO()
        with redirect_stderr(buffer):
            exit_code = cli_main([str(source_path), "--max-steps", "50"], stdout=io.BytesIO())
        self.assertEqual(exit_code, 1)
        self.assertIn("exceeded allowed step count", buffer.getvalue())

    def test_cli_missing_file_errors(self) -> None:
        buffer = io.StringIO()
        with redirect_stderr(buffer):
            exit_code = cli_main(["does_not_exist.bf"])
        self.assertEqual(exit_code, 1)
        self.assertIn("Source file not found", buffer.getvalue())

    def test_cli_directory_source_errors(self) -> None:
        buffer = io.StringIO()
        with redirect_stderr(buffer):
            exit_code = cli_main([str(self.tmp_path)], stdout=io.BytesIO())
        self.assertEqual(exit_code, 1)
        self.assertTrue(buffer.getvalue())

    def test_cli_unwritable_output_errors(self) -> None:
        source_path = self._write_source("+.")
        output_path = self.tmp_path / "missing" / "out.bin"
        buffer = io.StringIO()
        with redirect_stderr(buffer):
            exit_code = cli_main([str(source_path), "--output", str(output_path)])
        self.assertEqual(exit_code, 1)
        self.assertIn("Cannot open output file", buffer.getvalue())
        self.assertFalse(output_path.exists())


if __name__ == "__main__":
    unittest.main()
