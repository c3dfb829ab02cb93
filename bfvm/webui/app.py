from __future__ import annotations

import dataclasses
import io
import logging
from typing import List, NoReturn, Optional, Sequence

from fastapi import FastAPI, HTTPException, Response, status
from pydantic import BaseModel, Field

from bfvm.executor import ExecutionError, Executor, StepLimitExceeded
from bfvm.instructions import Instruction, disassemble
from bfvm.translator import BuildError, build
from bfvm.visualizer import ExecutionState, VisualizerSession

from .session import SessionRecord, SessionStore

logger = logging.getLogger(__name__)

TOTAL_STEPS_CAP = 10000


def _count_steps(instructions: Sequence[Instruction], data: bytes, cap: int = TOTAL_STEPS_CAP) -> tuple[int, bool]:
    """Dry-run a program to learn how many instructions it executes."""
    executor = Executor(instructions, io.BytesIO(data), io.BytesIO())
    try:
        executor.run(max_steps=cap)
    except StepLimitExceeded:
        return cap, True
    except ExecutionError:
        pass
    return executor.steps, False


def _compile(code: str, fold: bool) -> Sequence[Instruction]:
    try:
        return build(code, fold=fold)
    except BuildError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "kind": exc.kind.value,
                "line": exc.line,
                "column": exc.col,
                "message": str(exc),
            },
        ) from exc


def _step_limit(exc: StepLimitExceeded) -> NoReturn:
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc


# === Request / response models ===


class ExecuteRequest(BaseModel):
    code: str
    input: str = ""
    fold: bool = True
    max_steps: int = Field(default=1_000_000, ge=1)


class ExecutionFault(BaseModel):
    kind: str
    index: Optional[int] = None
    message: Optional[str] = None
    detail: str

    @classmethod
    def from_error(cls, exc: ExecutionError) -> "ExecutionFault":
        return cls(kind=exc.kind.value, index=exc.index, message=exc.message, detail=str(exc))


class ExecuteResponse(BaseModel):
    output: str
    error: Optional[ExecutionFault]
    instruction_count: int
    steps: int


class CompileRequest(BaseModel):
    code: str
    fold: bool = True


class CompileResponse(BaseModel):
    instructions: List[str]
    listing: str


class SessionConfiguration(BaseModel):
    code: str = ""
    input: str = ""
    tape_window: int = Field(default=10, ge=0)
    max_steps: Optional[int] = Field(default=None, ge=1)
    history_limit: int = Field(default=200, ge=1)
    fold: bool = True


class Snapshot(BaseModel):
    step: int
    pc: int
    instruction: Optional[str]
    pointer: int
    tape_start: int
    tape: List[int]
    output: str
    program_length: int
    error: Optional[str]

    @classmethod
    def of(cls, state: ExecutionState) -> "Snapshot":
        return cls(**dataclasses.asdict(state))


class SessionView(BaseModel):
    session_id: str
    code: str
    instructions: List[str]
    state: Snapshot
    states: List[Snapshot] = []
    history: List[Snapshot]
    history_size: int
    finished: bool
    error: Optional[ExecutionFault]
    breakpoints: List[int]
    hit_breakpoint: Optional[int]
    total_steps: int
    total_steps_capped: bool


class StepRequest(BaseModel):
    count: int = Field(default=1, ge=1)


class ContinueRequest(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1)
    ignore_breakpoints: bool = False


class BreakpointRequest(BaseModel):
    pc: int = Field(ge=0)


def _view(record: SessionRecord, states: Sequence[ExecutionState] = ()) -> SessionView:
    session = record.session
    code = session.code if isinstance(session.code, str) else session.code.decode("latin-1")
    return SessionView(
        session_id=record.session_id,
        code=code,
        instructions=[str(instruction) for instruction in session.instructions],
        state=Snapshot.of(session.current_state()),
        states=[Snapshot.of(state) for state in states],
        history=[Snapshot.of(state) for state in session.history],
        history_size=len(session.history),
        finished=session.is_finished(),
        error=None if session.error is None else ExecutionFault.from_error(session.error),
        breakpoints=session.list_breakpoints(),
        hit_breakpoint=session.hit_breakpoint,
        total_steps=record.total_steps,
        total_steps_capped=record.total_steps_capped,
    )


def create_app(store: Optional[SessionStore] = None) -> FastAPI:
    sessions = store if store is not None else SessionStore()
    app = FastAPI(title="BFVM API", version="0.1.0")

    def record_or_404(session_id: str) -> SessionRecord:
        record = sessions.lookup(session_id)
        if record is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown session id: {session_id}")
        return record

    @app.post("/api/run", response_model=ExecuteResponse)
    def run_program(payload: ExecuteRequest) -> ExecuteResponse:
        instructions = _compile(payload.code, payload.fold)
        output = io.BytesIO()
        executor = Executor(instructions, io.BytesIO(payload.input.encode("utf-8")), output)
        fault: Optional[ExecutionFault] = None
        try:
            executor.run(max_steps=payload.max_steps)
        except StepLimitExceeded as exc:
            _step_limit(exc)
        except ExecutionError as exc:
            logger.info("program faulted after %d steps: %s", executor.steps, exc)
            fault = ExecutionFault.from_error(exc)
        return ExecuteResponse(
            output=output.getvalue().decode("latin-1"),
            error=fault,
            instruction_count=len(instructions),
            steps=executor.steps,
        )

    @app.post("/api/compile", response_model=CompileResponse)
    def compile_program(payload: CompileRequest) -> CompileResponse:
        instructions = _compile(payload.code, payload.fold)
        return CompileResponse(
            instructions=[str(instruction) for instruction in instructions],
            listing=disassemble(instructions),
        )

    @app.post("/api/session", response_model=SessionView, status_code=status.HTTP_201_CREATED)
    def open_session(payload: SessionConfiguration) -> SessionView:
        instructions = _compile(payload.code, payload.fold)
        data = payload.input.encode("utf-8")
        total, capped = _count_steps(instructions, data)
        session = VisualizerSession(
            payload.code,
            input_template=data,
            tape_window=payload.tape_window,
            max_steps=payload.max_steps,
            history_limit=payload.history_limit,
            fold=payload.fold,
        )
        record = sessions.add(session, total_steps=total, total_steps_capped=capped)
        logger.debug("opened session %s (%d instructions)", record.session_id, len(instructions))
        return _view(record)

    @app.get("/api/session/{session_id}", response_model=SessionView)
    def show_session(session_id: str) -> SessionView:
        return _view(record_or_404(session_id))

    @app.post("/api/session/{session_id}/reset", response_model=SessionView)
    def rewind_session(session_id: str) -> SessionView:
        record_or_404(session_id)
        return _view(sessions.rewind(session_id))

    @app.post("/api/session/{session_id}/step", response_model=SessionView)
    def step_session(session_id: str, payload: StepRequest) -> SessionView:
        record = record_or_404(session_id)
        with record.lock:
            try:
                states = record.session.step_forward(payload.count)
            except StepLimitExceeded as exc:
                _step_limit(exc)
            return _view(record, states)

    @app.post("/api/session/{session_id}/run", response_model=SessionView)
    def continue_session(session_id: str, payload: ContinueRequest) -> SessionView:
        record = record_or_404(session_id)
        session = record.session
        with record.lock:
            saved = set(session.breakpoints) if payload.ignore_breakpoints else None
            if saved is not None:
                session.clear_breakpoints()
            try:
                states = session.run_until_break(payload.limit)
            except StepLimitExceeded as exc:
                _step_limit(exc)
            finally:
                if saved is not None:
                    session.breakpoints.update(saved)
            return _view(record, states)

    @app.post("/api/session/{session_id}/breakpoints", response_model=SessionView)
    def set_breakpoint(session_id: str, payload: BreakpointRequest) -> SessionView:
        record = record_or_404(session_id)
        with record.lock:
            record.session.add_breakpoint(payload.pc)
            return _view(record)

    @app.delete("/api/session/{session_id}/breakpoints/{pc}", response_model=SessionView)
    def clear_breakpoint(session_id: str, pc: int) -> SessionView:
        record = record_or_404(session_id)
        with record.lock:
            if not record.session.remove_breakpoint(pc):
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No breakpoint at pc={pc}")
            return _view(record)

    @app.delete("/api/session/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
    def close_session(session_id: str) -> Response:
        if not sessions.discard(session_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown session id: {session_id}")
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return app


__all__ = ["create_app"]
