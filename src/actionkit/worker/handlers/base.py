from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from ...api.errors import ErrorKind, PermanentError, RetryableError, ValidationError
from ...protocol.actions import ActionType, Outcome
from ..context import ActionContext


class NoParams(BaseModel):
    """Parameter schema for actions that carry no payload."""

    model_config = ConfigDict(extra="allow")


class ActionHandler:
    """
    Base class for action executors.

    Subclasses set `action_type` and `Params` and implement `run`. `execute` is
    the dispatcher entry point: it validates the stored parameters into
    `Params`, runs the handler and folds any exception into an `Outcome`.
    """

    action_type: ClassVar[ActionType]
    Params: ClassVar[type[BaseModel]] = NoParams

    async def execute(self, parameters: dict[str, Any], ctx: ActionContext) -> Outcome:
        try:
            params = self.Params.model_validate(parameters)
        except PydanticValidationError as e:
            first = e.errors()[0]
            loc = ".".join(str(p) for p in first.get("loc", ())) or "<root>"
            return Outcome.fatal(f"invalid parameters at {loc}: {first['msg']}", error_kind=ErrorKind.VALIDATION)
        try:
            return await self.run(params, ctx)
        except Exception as e:
            reason, permanent = self.classify_error(e)
            ctx.log.warning(
                "handler raised",
                event="handler.error",
                reason=reason,
                permanent=permanent,
                error=str(e),
                exc_info=permanent,
            )
            detail = f"{reason}: {e}"
            if permanent:
                kind = ErrorKind.VALIDATION if reason == "validation" else ErrorKind.FATAL
                return Outcome.fatal(detail, error_kind=kind)
            return Outcome.transient(detail)

    async def run(self, params: Any, ctx: ActionContext) -> Outcome:
        raise NotImplementedError

    def classify_error(self, exc: BaseException) -> tuple[str, bool]:
        """Map an exception to ``(reason, permanent)``."""
        if isinstance(exc, (ValidationError, PydanticValidationError)):
            return ("validation", True)
        if isinstance(exc, PermanentError):
            return (type(exc).__name__, True)
        if isinstance(exc, RetryableError):
            return (type(exc).__name__, False)
        if isinstance(exc, (TypeError, ValueError, KeyError)):
            return ("bad_input", True)
        return ("unexpected_error", False)
