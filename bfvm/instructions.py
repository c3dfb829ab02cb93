from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable


# === Instructions ===


class Instruction:
    pass


@dataclass(frozen=True)
class Move(Instruction):
    delta: int

    def __str__(self) -> str:
        return f"move {self.delta:+d}"


@dataclass(frozen=True)
class Add(Instruction):
    delta: int

    def __str__(self) -> str:
        return f"add {self.delta:+d}"


@dataclass(frozen=True)
class Output(Instruction):
    def __str__(self) -> str:
        return "out"


@dataclass(frozen=True)
class Input(Instruction):
    def __str__(self) -> str:
        return "in"


@dataclass(frozen=True)
class JumpIfZero(Instruction):
    target: int

    def __str__(self) -> str:
        return f"jz {self.target}"


@dataclass(frozen=True)
class JumpIfNotZero(Instruction):
    target: int

    def __str__(self) -> str:
        return f"jnz {self.target}"


def disassemble(instructions: Iterable[Instruction]) -> str:
    return "\n".join(f"{address:04d}  {instruction}" for address, instruction in enumerate(instructions))


__all__ = [
    "Instruction",
    "Move",
    "Add",
    "Output",
    "Input",
    "JumpIfZero",
    "JumpIfNotZero",
    "disassemble",
]
