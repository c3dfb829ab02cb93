from .executor import ExecutionError, ExecutionErrorKind, Executor, StepLimitExceeded, TAPE_SIZE, execute
from .instructions import Add, Input, Instruction, JumpIfNotZero, JumpIfZero, Move, Output, disassemble
from .translator import BuildError, BuildErrorKind, build
from .visualizer import ExecutionState, VisualizerSession

__all__ = [
    "Add",
    "BuildError",
    "BuildErrorKind",
    "ExecutionError",
    "ExecutionErrorKind",
    "ExecutionState",
    "Executor",
    "Input",
    "Instruction",
    "JumpIfNotZero",
    "JumpIfZero",
    "Move",
    "Output",
    "StepLimitExceeded",
    "TAPE_SIZE",
    "VisualizerSession",
    "build",
    "disassemble",
    "execute",
]
