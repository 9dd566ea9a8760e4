"""
Judge call boundary.

Every judge-backed operation goes through ``call_judge`` so that network
errors, timeouts and cancellation all surface as the same ``JudgeError``.
Callers decide the fallback value; this module never picks one.
"""

import asyncio
from typing import Optional, Protocol, runtime_checkable

from core import get_logger, JudgeError

logger = get_logger(__name__)


@runtime_checkable
class JudgeClient(Protocol):
    """Anything that can answer a system + user prompt with text."""

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> str: ...


async def call_judge(
    judge: JudgeClient,
    *,
    operation: str,
    system_prompt: str,
    user_prompt: str,
    model: str,
    temperature: float,
    max_tokens: int,
    cancel_event: Optional[asyncio.Event] = None,
) -> str:
    """
    Run one judge request, racing it against an optional cancellation event.

    Raises:
        JudgeError: the call failed, timed out, returned nothing, or was cancelled
    """
    if cancel_event is not None and cancel_event.is_set():
        raise JudgeError(operation, "cancelled before request")

    request = asyncio.ensure_future(
        judge.generate(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )
    )

    if cancel_event is None:
        try:
            content = await request
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise JudgeError(operation, str(e)) from e
    else:
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {request, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (request, waiter):
                if not task.done():
                    task.cancel()

        if request not in done:
            logger.info("Judge call cancelled", operation=operation)
            raise JudgeError(operation, "cancelled")

        error = request.exception()
        if error is not None:
            raise JudgeError(operation, str(error)) from error
        content = request.result()

    if not isinstance(content, str) or not content.strip():
        raise JudgeError(operation, "empty response")

    logger.debug("Judge call complete", operation=operation, response_length=len(content))
    return content
