from __future__ import annotations

import argparse
import io
import shlex
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, TextIO, Union

from .executor import TAPE_SIZE, ExecutionError, Executor, StepLimitExceeded
from .instructions import Instruction
from .translator import BuildError, build


def _to_input_bytes(data: str) -> bytes:
    return data.encode("utf-8")


@dataclass
class ExecutionState:
    step: int
    pc: int
    instruction: Optional[str]
    pointer: int
    tape_start: int
    tape: List[int]
    output: str
    program_length: int
    error: Optional[str] = None


@dataclass
class VisualizerSession:
    code: Union[str, bytes]
    input_template: bytes
    tape_window: int = 10
    max_steps: Optional[int] = None
    history_limit: int = 200
    fold: bool = True

    def __post_init__(self) -> None:
        self.instructions: Sequence[Instruction] = build(self.code, fold=self.fold)
        self.breakpoints: set[int] = set()
        self.history: List[ExecutionState] = []
        self.hit_breakpoint: Optional[int] = None
        self._init_executor()

    def _init_executor(self) -> None:
        self.output_buffer = io.BytesIO()
        self.executor = Executor(
            self.instructions,
            io.BytesIO(bytes(self.input_template)),
            self.output_buffer,
        )
        self.finished = False
        self.error: Optional[ExecutionError] = None
        self.last_state: ExecutionState = self._snapshot(None)
        self._record_state(self.last_state)

    def restart(self) -> None:
        self._init_executor()

    def _snapshot(self, instruction: Optional[Instruction], error: Optional[ExecutionError] = None) -> ExecutionState:
        executor = self.executor
        start = max(0, executor.pointer - self.tape_window)
        end = min(TAPE_SIZE, executor.pointer + self.tape_window + 1)
        return ExecutionState(
            step=executor.steps,
            pc=executor.cursor,
            instruction=None if instruction is None else str(instruction),
            pointer=executor.pointer,
            tape_start=start,
            tape=list(executor.tape[start:end]),
            output=self.output_buffer.getvalue().decode("latin-1"),
            program_length=len(self.instructions),
            error=None if error is None else str(error),
        )

    def _record_state(self, state: ExecutionState) -> None:
        self.history.append(state)
        if len(self.history) > self.history_limit:
            self.history.pop(0)
        self.last_state = state

    def _advance(self) -> ExecutionState:
        executor = self.executor
        if executor.cursor >= len(self.instructions):
            self.finished = True
            return self._snapshot(None)
        if self.max_steps is not None and executor.steps >= self.max_steps:
            self.finished = True
            raise StepLimitExceeded("Brainfuck program exceeded allowed step count")
        instruction = self.instructions[executor.cursor]
        try:
            executor.step()
        except ExecutionError as exc:
            self.error = exc
            self.finished = True
            return self._snapshot(instruction, exc)
        return self._snapshot(instruction)

    def step_forward(self, count: int = 1) -> Sequence[ExecutionState]:
        states: List[ExecutionState] = []
        if count <= 0:
            return states
        self.hit_breakpoint = None
        for _ in range(count):
            if self.finished:
                break
            state = self._advance()
            self._record_state(state)
            states.append(state)
            if self.finished:
                break
            if state.pc in self.breakpoints:
                self.hit_breakpoint = state.pc
                break
        return states

    def run_until_break(self, limit: Optional[int] = None) -> Sequence[ExecutionState]:
        states: List[ExecutionState] = []
        executed = 0
        while limit is None or executed < limit:
            step_states = self.step_forward(1)
            if not step_states:
                break
            states.extend(step_states)
            executed += 1
            if self.hit_breakpoint is not None:
                break
        return states

    def current_state(self) -> ExecutionState:
        return self.last_state

    def add_breakpoint(self, pc: int) -> None:
        self.breakpoints.add(pc)

    def remove_breakpoint(self, pc: int) -> bool:
        if pc in self.breakpoints:
            self.breakpoints.remove(pc)
            return True
        return False

    def clear_breakpoints(self) -> None:
        self.breakpoints.clear()

    def list_breakpoints(self) -> List[int]:
        return sorted(self.breakpoints)

    def is_finished(self) -> bool:
        return self.finished


def format_state(state: ExecutionState, instructions: Sequence[Instruction]) -> str:
    lines: List[str] = []
    shown = state.instruction if state.instruction is not None else "(init)"
    lines.append(
        f"step={state.step} pc={state.pc}/{state.program_length} instruction={shown!r} pointer={state.pointer}"
        f" cell={_cell_under_pointer(state)}"
    )
    if state.output:
        lines.append(f"output={state.output!r}")
    if state.error:
        lines.append(f"error={state.error}")
    tape_parts: List[str] = []
    for idx, value in enumerate(state.tape):
        absolute = state.tape_start + idx
        cell_repr = f"{absolute}:{value:03}"
        if absolute == state.pointer:
            tape_parts.append(f"[{cell_repr}]")
        else:
            tape_parts.append(f" {cell_repr} ")
    lines.append("tape=" + " ".join(tape_parts))
    lines.append(f"code={_format_code_window(instructions, state.pc)}")
    return "\n".join(lines)


def _cell_under_pointer(state: ExecutionState) -> int:
    offset = state.pointer - state.tape_start
    if 0 <= offset < len(state.tape):
        return state.tape[offset]
    return 0


def _format_code_window(instructions: Sequence[Instruction], pc: int, window: int = 4) -> str:
    if not instructions:
        return "(empty)"
    # A halted cursor sits one past the end; keep the trailing instructions in view.
    start = max(0, min(pc, len(instructions)) - window)
    end = min(len(instructions), pc + window + 1)
    pieces: List[str] = []
    for index in range(start, end):
        if index == pc:
            pieces.append(f"[{instructions[index]}]")
        else:
            pieces.append(str(instructions[index]))
    if pc >= len(instructions):
        pieces.append("[END]")
    return " ".join(pieces)


_HELP = """\
Commands:
  step [N]          execute N instructions (default 1)
  continue [N]      run until a breakpoint, a fault, the end, or N instructions
  break ADDR        stop before the instruction at ADDR
  delete [ADDR]     remove one breakpoint, or all of them
  breaks            list breakpoints
  tape [START [N]]  dump N cells from START (default: around the pointer)
  list              show the instructions around the cursor
  out               show everything written so far
  state             show the current state
  history [N]       show the last N recorded states
  restart           rewind to the first instruction
  quit              leave the debugger"""


class DebuggerRepl:
    """Line-oriented front end for a VisualizerSession."""

    prompt = "(bfvm) "

    def __init__(self, session: VisualizerSession, out: Optional[TextIO] = None) -> None:
        self.session = session
        self.out = out if out is not None else sys.stdout
        self._commands: Dict[str, Callable[[List[str]], bool]] = {
            "step": self._cmd_step,
            "s": self._cmd_step,
            "continue": self._cmd_continue,
            "c": self._cmd_continue,
            "break": self._cmd_break,
            "b": self._cmd_break,
            "delete": self._cmd_delete,
            "breaks": self._cmd_breaks,
            "tape": self._cmd_tape,
            "list": self._cmd_list,
            "out": self._cmd_out,
            "state": self._cmd_state,
            "history": self._cmd_history,
            "restart": self._cmd_restart,
            "help": self._cmd_help,
            "quit": self._cmd_quit,
            "q": self._cmd_quit,
        }

    def _write(self, text: str = "") -> None:
        print(text, file=self.out)

    def run(self) -> None:
        self._write(f"bfvm debugger: {len(self.session.instructions)} instructions, 'help' lists commands")
        self._show(self.session.current_state())
        while True:
            try:
                line = input(self.prompt)
            except EOFError:
                self._write()
                return
            if not self.dispatch(line):
                return

    def dispatch(self, line: str) -> bool:
        """Run one command line; returns False when the debugger should exit."""
        try:
            parts = shlex.split(line)
        except ValueError as exc:
            self._write(f"error: {exc}")
            return True
        if not parts:
            return True
        handler = self._commands.get(parts[0].lower())
        if handler is None:
            self._write(f"unknown command {parts[0]!r}; try 'help'")
            return True
        try:
            return handler(parts[1:])
        except ValueError:
            self._write("error: expected an integer argument")
            return True

    def _show(self, state: ExecutionState) -> None:
        self._write("-" * 40)
        self._write(format_state(state, self.session.instructions))

    def _report_stop(self) -> None:
        session = self.session
        if session.error is not None:
            fault = session.error
            detail = f"index={fault.index}" if fault.index is not None else f"message={fault.message!r}"
            self._write(f"faulted: {fault.kind.value} {detail}")
        elif session.hit_breakpoint is not None:
            self._write(f"stopped at breakpoint {session.hit_breakpoint}")
        elif session.is_finished():
            self._write("program halted")

    def _advance(self, states: Sequence[ExecutionState]) -> None:
        if states:
            self._show(states[-1])
        self._report_stop()

    def _cmd_step(self, args: List[str]) -> bool:
        count = max(1, int(args[0])) if args else 1
        try:
            states = self.session.step_forward(count)
        except StepLimitExceeded as exc:
            self._write(f"stopped: {exc}")
            return True
        self._advance(states)
        return True

    def _cmd_continue(self, args: List[str]) -> bool:
        limit = int(args[0]) if args else None
        try:
            states = self.session.run_until_break(limit)
        except StepLimitExceeded as exc:
            self._write(f"stopped: {exc}")
            return True
        self._advance(states)
        return True

    def _cmd_break(self, args: List[str]) -> bool:
        if not args:
            self._write("usage: break ADDR")
            return True
        address = int(args[0])
        if not 0 <= address < len(self.session.instructions):
            self._write(f"no instruction at {address}")
            return True
        self.session.add_breakpoint(address)
        self._write(f"breakpoint at {address}: {self.session.instructions[address]}")
        return True

    def _cmd_delete(self, args: List[str]) -> bool:
        if not args:
            self.session.clear_breakpoints()
            self._write("all breakpoints deleted")
        elif self.session.remove_breakpoint(int(args[0])):
            self._write(f"breakpoint {args[0]} deleted")
        else:
            self._write(f"no breakpoint at {args[0]}")
        return True

    def _cmd_breaks(self, args: List[str]) -> bool:
        points = self.session.list_breakpoints()
        self._write("breakpoints: " + (", ".join(map(str, points)) if points else "none"))
        return True

    def _cmd_tape(self, args: List[str]) -> bool:
        executor = self.session.executor
        if args:
            start = int(args[0])
            count = int(args[1]) if len(args) > 1 else 16
        else:
            start = executor.pointer - 8
            count = 16
        start = max(0, start)
        end = min(TAPE_SIZE, start + max(1, count))
        cells = []
        for address in range(start, end):
            marker = "*" if address == executor.pointer else ""
            cells.append(f"{marker}{address}={executor.tape[address]}")
        self._write(" ".join(cells))
        return True

    def _cmd_list(self, args: List[str]) -> bool:
        cursor = self.session.executor.cursor
        instructions = self.session.instructions
        low = max(0, cursor - 5)
        for address in range(low, min(len(instructions), cursor + 6)):
            marker = "=>" if address == cursor else "  "
            flag = "b" if address in self.session.breakpoints else " "
            self._write(f"{marker}{flag}{address:04d}  {instructions[address]}")
        if cursor >= len(instructions):
            self._write(f"=> {cursor:04d}  (end)")
        return True

    def _cmd_out(self, args: List[str]) -> bool:
        self._write(repr(self.session.output_buffer.getvalue()))
        return True

    def _cmd_state(self, args: List[str]) -> bool:
        self._show(self.session.current_state())
        return True

    def _cmd_history(self, args: List[str]) -> bool:
        count = int(args[0]) if args else 10
        for state in self.session.history[-count:]:
            self._show(state)
        return True

    def _cmd_restart(self, args: List[str]) -> bool:
        self.session.restart()
        self._write("restarted")
        self._show(self.session.current_state())
        return True

    def _cmd_help(self, args: List[str]) -> bool:
        self._write(_HELP)
        return True

    def _cmd_quit(self, args: List[str]) -> bool:
        return False


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Step debugger for Brainfuck programs")
    parser.add_argument("source", help="Path to Brainfuck source file")
    parser.add_argument("--input", default="", help="Input string supplied to the program")
    parser.add_argument(
        "--max-steps",
        type=int,
        default=5_000_000,
        help="Stop after this many executed instructions (default: 5,000,000)",
    )
    parser.add_argument("--tape-window", type=int, default=10, help="Cells shown on each side of the pointer")
    parser.add_argument("--history-limit", type=int, default=200, help="Number of states kept in history")
    parser.add_argument("--no-fold", action="store_true", help="Emit one instruction per move/add command")
    args = parser.parse_args(argv)

    try:
        source = Path(args.source).read_bytes()
    except OSError as exc:
        print(f"Cannot read source file: {exc}", file=sys.stderr)
        return 1

    try:
        session = VisualizerSession(
            source,
            input_template=_to_input_bytes(args.input),
            tape_window=args.tape_window,
            max_steps=args.max_steps,
            history_limit=args.history_limit,
            fold=not args.no_fold,
        )
    except BuildError as exc:
        print(f"Build error: {exc}", file=sys.stderr)
        return 1

    DebuggerRepl(session).run()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
