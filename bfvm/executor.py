from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO, Optional, Sequence

from .instructions import Add, Input, Instruction, JumpIfNotZero, JumpIfZero, Move, Output

logger = logging.getLogger(__name__)

TAPE_SIZE = 30000


class StepLimitExceeded(RuntimeError):
    """Raised when execution exceeds the configured step budget."""


class ExecutionErrorKind(str, Enum):
    DATA_OVERFLOW = "data_overflow"
    IO = "io"


class ExecutionError(RuntimeError):
    """A fault raised while running a program.

    DATA_OVERFLOW carries the attempted pointer ``index`` (never clamped), IO
    carries the ``message`` of the underlying stream failure.
    """

    def __init__(
        self,
        kind: ExecutionErrorKind,
        *,
        index: Optional[int] = None,
        message: Optional[str] = None,
    ) -> None:
        super().__init__(kind, index, message)
        self.kind = kind
        self.index = index
        self.message = message

    @classmethod
    def data_overflow(cls, index: int) -> "ExecutionError":
        return cls(ExecutionErrorKind.DATA_OVERFLOW, index=index)

    @classmethod
    def io(cls, message: str) -> "ExecutionError":
        return cls(ExecutionErrorKind.IO, message=message)

    def __str__(self) -> str:
        if self.kind is ExecutionErrorKind.DATA_OVERFLOW:
            return f"data overflow, idx = {self.index}"
        return f"io err: {self.message}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ExecutionError):
            return NotImplemented
        return (self.kind, self.index, self.message) == (other.kind, other.index, other.message)

    def __hash__(self) -> int:
        return hash((self.kind, self.index, self.message))


@dataclass
class Executor:
    """Runs an instruction sequence against a private 30,000 cell tape.

    The tape, data pointer and instruction cursor live only as long as the
    executor. A fault leaves the tape as it was before the failing
    instruction and stops the machine for good.
    """

    instructions: Sequence[Instruction]
    input_stream: BinaryIO
    output_stream: BinaryIO

    tape: bytearray = field(init=False, repr=False)
    pointer: int = field(init=False)
    cursor: int = field(init=False)
    steps: int = field(init=False)
    error: Optional[ExecutionError] = field(init=False, default=None)

    def __post_init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.tape = bytearray(TAPE_SIZE)
        self.pointer = 0
        self.cursor = 0
        self.steps = 0
        self.error = None

    @property
    def halted(self) -> bool:
        return self.error is not None or self.cursor >= len(self.instructions)

    def run(self, max_steps: Optional[int] = None) -> None:
        if self.error is not None:
            raise self.error
        while not self.halted:
            if max_steps is not None and self.steps >= max_steps:
                raise StepLimitExceeded("Brainfuck program exceeded allowed step count")
            self.step()

    def step(self) -> Optional[Instruction]:
        """Execute the instruction under the cursor and return it.

        Returns None once the program has run past its last instruction.
        """
        if self.error is not None:
            raise self.error
        if self.cursor >= len(self.instructions):
            return None
        instruction = self.instructions[self.cursor]
        try:
            self._execute_instruction(instruction)
        except ExecutionError as exc:
            self.error = exc
            logger.debug("fault at instruction %d (%s): %s", self.cursor, instruction, exc)
            raise
        self.cursor += 1
        self.steps += 1
        return instruction

    def _execute_instruction(self, instruction: Instruction) -> None:
        if isinstance(instruction, Move):
            target = self.pointer + instruction.delta
            if target < 0 or target >= TAPE_SIZE:
                raise ExecutionError.data_overflow(target)
            self.pointer = target
        elif isinstance(instruction, Add):
            self.tape[self.pointer] = (self.tape[self.pointer] + instruction.delta) % 256
        elif isinstance(instruction, Output):
            self._write_cell()
        elif isinstance(instruction, Input):
            self._read_cell()
        elif isinstance(instruction, JumpIfZero):
            if self.tape[self.pointer] == 0:
                self.cursor = instruction.target - 1
        elif isinstance(instruction, JumpIfNotZero):
            if self.tape[self.pointer] != 0:
                self.cursor = instruction.target - 1
        else:
            raise TypeError(f"Unknown instruction: {instruction!r}")

    def _write_cell(self) -> None:
        try:
            self.output_stream.write(bytes((self.tape[self.pointer],)))
        except (OSError, ValueError) as exc:
            raise ExecutionError.io(str(exc)) from exc

    def _read_cell(self) -> None:
        try:
            data = self.input_stream.read(1)
        except (OSError, ValueError) as exc:
            raise ExecutionError.io(str(exc)) from exc
        if not data:
            raise ExecutionError.io("unexpected end of input stream")
        self.tape[self.pointer] = data[0]


def execute(
    instructions: Sequence[Instruction],
    input_stream: BinaryIO,
    output_stream: BinaryIO,
    *,
    max_steps: Optional[int] = None,
) -> None:
    """Run ``instructions`` to completion, raising the first fault."""
    Executor(instructions, input_stream, output_stream).run(max_steps)


__all__ = [
    "TAPE_SIZE",
    "ExecutionError",
    "ExecutionErrorKind",
    "Executor",
    "StepLimitExceeded",
    "execute",
]
