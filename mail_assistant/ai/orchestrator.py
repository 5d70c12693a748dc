"""Single "answer or act" entry point over provider, actions and scheduler."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from mail_assistant.ai.actions.registry import ActionRegistry
from mail_assistant.ai.actions.types import ActionRequest, ActionResult
from mail_assistant.ai.providers.base import GenerationOptions, ProviderGateway
from mail_assistant.ai.scheduler import CallClass, RequestScheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutedAction:
    request: ActionRequest
    result: ActionResult


@dataclass(frozen=True)
class Answer:
    """Final text plus the actions that ran to produce it."""

    text: str
    actions: list[ExecutedAction] = field(default_factory=list)

    @property
    def action_names(self) -> list[str]:
        return [a.request.name for a in self.actions if a.result.success]


class AIOrchestrator:
    """Asks the model with every registered action available, runs what it asks for.

    Action dispatch happens after the scheduled call returns, so a retry of
    the provider call can never run an action twice. If the action-augmented
    call fails or yields nothing, a plain ``generate`` is tried instead.

    Usage::

        orchestrator = AIOrchestrator(provider, registry, scheduler)
        reply = await orchestrator.answer(system_prompt, user_prompt, user_id=user.id)
    """

    def __init__(
        self,
        provider: ProviderGateway,
        registry: ActionRegistry,
        scheduler: RequestScheduler,
    ) -> None:
        self._provider = provider
        self._registry = registry
        self._scheduler = scheduler

    @property
    def provider(self) -> ProviderGateway:
        return self._provider

    async def answer(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions | None = None,
        user_id: str | None = None,
    ) -> str:
        return (await self.answer_detailed(system_prompt, user_prompt, options, user_id)).text

    async def answer_detailed(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions | None = None,
        user_id: str | None = None,
    ) -> Answer:
        """Answer with actions; fall back to plain generation on failure or empty output.

        Raises whatever the fallback ``generate`` raises if both paths fail.
        """
        declarations = self._registry.declarations()
        try:
            response = await self._scheduler.run(
                lambda: self._provider.generate_with_actions(
                    system_prompt, user_prompt, options, declarations
                ),
                CallClass.ACTIONS,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Action-augmented call to %s failed (%s); falling back to plain generation",
                self._provider.name,
                exc,
            )
            return Answer(await self.generate(system_prompt, user_prompt, options))

        if response.action_calls:
            executed: list[ExecutedAction] = []
            for call in response.action_calls:
                request = ActionRequest(name=call.name, arguments=call.arguments, user_id=user_id)
                result = await self._registry.dispatch(call.name, call.arguments, user_id)
                executed.append(ExecutedAction(request, result))
            text = "\n".join(a.result.message for a in executed if a.result.message).strip()
            if text:
                return Answer(text, executed)
            logger.warning("Actions produced no message; falling back to plain generation")
            return Answer(await self.generate(system_prompt, user_prompt, options), executed)

        if response.text.strip():
            return Answer(response.text.strip())

        logger.warning("Empty response from %s; falling back to plain generation", self._provider.name)
        return Answer(await self.generate(system_prompt, user_prompt, options))

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        options: GenerationOptions | None = None,
    ) -> str:
        return await self._scheduler.run(
            lambda: self._provider.generate(system_prompt, user_prompt, options),
            CallClass.GENERATE,
        )

    async def health_check(self) -> bool:
        return await self._provider.health_check()
