"""Action handler base class and the name → handler registry."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, ClassVar

from mail_assistant.ai.actions.types import ActionParameter, ActionRequest, ActionResult
from mail_assistant.ai.providers.base import ActionDeclaration

logger = logging.getLogger(__name__)


class ActionHandler(ABC):
    """One action the model may ask the assistant to perform.

    Subclasses set ``name``, ``description`` and ``parameters`` and implement
    ``handle``. Arguments reaching ``handle`` have already been validated
    against ``parameters``.
    """

    name: ClassVar[str]
    description: ClassVar[str]
    parameters: ClassVar[tuple[ActionParameter, ...]] = ()

    def declaration(self) -> ActionDeclaration:
        return ActionDeclaration(
            name=self.name,
            description=self.description,
            parameters={
                "type": "object",
                "properties": {p.name: p.schema() for p in self.parameters},
                "required": [p.name for p in self.parameters if p.required],
            },
        )

    def validate(self, arguments: dict[str, Any]) -> str | None:
        """Return the first argument problem, or None if the arguments are acceptable.

        Unknown keys are ignored; models sometimes add extras.
        """
        for param in self.parameters:
            if param.name not in arguments or arguments[param.name] is None:
                if param.required:
                    return f"missing required parameter: {param.name}"
                continue
            problem = param.check(arguments[param.name])
            if problem:
                return problem
        return None

    @abstractmethod
    async def handle(self, request: ActionRequest) -> ActionResult: ...


class ActionRegistry:
    """Maps action names to handlers and dispatches calls safely.

    ``dispatch`` never raises: unknown names, invalid arguments and handler
    exceptions all come back as failed ActionResults.

    Usage::

        registry = ActionRegistry()
        registry.register(GetUserConfigHandler(directory))
        result = await registry.dispatch("get_user_config", {}, user_id=user.id)
    """

    def __init__(self) -> None:
        self._handlers: dict[str, ActionHandler] = {}

    def register(self, handler: ActionHandler) -> None:
        if handler.name in self._handlers:
            logger.warning("Replacing action handler %s", handler.name)
        self._handlers[handler.name] = handler
        logger.debug("Action handler registered: %s", handler.name)

    def unregister(self, name: str) -> bool:
        removed = self._handlers.pop(name, None) is not None
        if removed:
            logger.debug("Action handler unregistered: %s", name)
        return removed

    def names(self) -> list[str]:
        return list(self._handlers)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def declarations(self) -> list[ActionDeclaration]:
        return [h.declaration() for h in self._handlers.values()]

    async def dispatch(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        user_id: str | None = None,
    ) -> ActionResult:
        handler = self._handlers.get(name)
        if handler is None:
            logger.warning("Unknown action requested: %s", name)
            return ActionResult.fail(f"Unknown action: {name}")

        args = dict(arguments or {})
        problem = handler.validate(args)
        if problem:
            logger.warning("Invalid arguments for %s: %s", name, problem)
            return ActionResult.fail(f"Invalid arguments for {name}: {problem}")

        try:
            result = await handler.handle(ActionRequest(name=name, arguments=args, user_id=user_id))
        except Exception as exc:  # noqa: BLE001
            logger.error("Action %s failed: %s", name, exc, exc_info=True)
            return ActionResult.fail(f"Action {name} failed; please try again later.")

        logger.info("action=%s user=%s success=%s", name, user_id, result.success)
        return result
