from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple, Union

from .instructions import Add, Input, Instruction, JumpIfNotZero, JumpIfZero, Move, Output

logger = logging.getLogger(__name__)

_MOVE_DELTAS: Dict[int, int] = {ord("<"): -1, ord(">"): 1}
_ADD_DELTAS: Dict[int, int] = {ord("-"): -1, ord("+"): 1}
_OUTPUT = ord(".")
_INPUT = ord(",")
_OPEN = ord("[")
_CLOSE = ord("]")
_NEWLINE = ord("\n")


class BuildErrorKind(str, Enum):
    BRACKET_NOT_MATCH = "bracket_not_match"
    BRACKET_NOT_CLOSED = "bracket_not_closed"


class BuildError(Exception):
    """Raised when the source has unbalanced brackets.

    ``line`` and ``col`` are 1-based and point at the offending bracket: the
    stray ``]`` for BRACKET_NOT_MATCH, the outermost unclosed ``[`` for
    BRACKET_NOT_CLOSED.
    """

    def __init__(self, line: int, col: int, kind: BuildErrorKind) -> None:
        super().__init__(line, col, kind)
        self.line = line
        self.col = col
        self.kind = kind

    def __str__(self) -> str:
        if self.kind is BuildErrorKind.BRACKET_NOT_MATCH:
            what = "unmatched ']'"
        else:
            what = "unclosed '['"
        return f"{what} at line {self.line}, column {self.col}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BuildError):
            return NotImplemented
        return (self.line, self.col, self.kind) == (other.line, other.col, other.kind)

    def __hash__(self) -> int:
        return hash((self.line, self.col, self.kind))


@dataclass
class _OpenBracket:
    line: int
    col: int
    # Address just after the placeholder JumpIfZero.
    addr: int


def build(source: Union[str, bytes], *, fold: bool = True) -> Tuple[Instruction, ...]:
    """Translate source text into a tuple of instructions.

    ``str`` sources are scanned as their UTF-8 bytes, so a multi-byte
    character advances the column once per byte. Every byte other than the
    eight commands is a comment. With ``fold`` runs of ``<>`` and ``+-`` are
    collapsed into a single Move/Add holding the net delta, and a run that
    nets to zero emits nothing.
    """
    data = source.encode("utf-8") if isinstance(source, str) else bytes(source)
    instructions: List[Instruction] = []
    open_brackets: List[_OpenBracket] = []
    line = 1
    col = 1
    index = 0
    length = len(data)

    while index < length:
        byte = data[index]
        if byte in _MOVE_DELTAS or byte in _ADD_DELTAS:
            deltas = _MOVE_DELTAS if byte in _MOVE_DELTAS else _ADD_DELTAS
            delta, consumed = _fold_run(data, index, deltas, fold)
            if delta != 0:
                instructions.append(Move(delta) if deltas is _MOVE_DELTAS else Add(delta))
            index += consumed
            col += consumed
            continue
        if byte == _OUTPUT:
            instructions.append(Output())
        elif byte == _INPUT:
            instructions.append(Input())
        elif byte == _OPEN:
            instructions.append(JumpIfZero(0))
            open_brackets.append(_OpenBracket(line=line, col=col, addr=len(instructions)))
        elif byte == _CLOSE:
            if not open_brackets:
                raise BuildError(line, col, BuildErrorKind.BRACKET_NOT_MATCH)
            bracket = open_brackets.pop()
            instructions.append(JumpIfNotZero(bracket.addr))
            instructions[bracket.addr - 1] = JumpIfZero(len(instructions))
        elif byte == _NEWLINE:
            line += 1
            col = 0
        col += 1
        index += 1

    if open_brackets:
        outermost = open_brackets[0]
        raise BuildError(outermost.line, outermost.col, BuildErrorKind.BRACKET_NOT_CLOSED)

    logger.debug("built %d instructions from %d source bytes", len(instructions), length)
    return tuple(instructions)


def _fold_run(data: bytes, start: int, deltas: Dict[int, int], fold: bool) -> Tuple[int, int]:
    if not fold:
        return deltas[data[start]], 1
    delta = 0
    index = start
    while index < len(data) and data[index] in deltas:
        delta += deltas[data[index]]
        index += 1
    return delta, index - start


__all__ = [
    "BuildError",
    "BuildErrorKind",
    "build",
]
