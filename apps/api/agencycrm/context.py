from __future__ import annotations

import uuid
from contextvars import ContextVar, Token

run_id_var: ContextVar[str | None] = ContextVar("run_id", default=None)
actor_var: ContextVar[str | None] = ContextVar("actor", default=None)


def new_run_id() -> str:
    return uuid.uuid4().hex


def set_run_id(value: str | None) -> Token[str | None]:
    return run_id_var.set(value)


def reset_run_id(token: Token[str | None]) -> None:
    run_id_var.reset(token)


def get_run_id() -> str | None:
    return run_id_var.get()


def set_actor(value: str | None) -> Token[str | None]:
    return actor_var.set(value)


def reset_actor(token: Token[str | None]) -> None:
    actor_var.reset(token)


def get_actor() -> str:
    return actor_var.get() or "system"


def get_log_context() -> dict[str, str | None]:
    return {"run_id": get_run_id(), "actor": get_actor()}
