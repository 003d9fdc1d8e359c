"""Language-model client contract.

The desktop shell owns the real Gemini SDK call; the core only needs
something that turns a prompt, an optional image and the conversation
history into reply text.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


class ApiError(Exception):
    """The language-model call failed."""


@runtime_checkable
class TextGenerator(Protocol):
    """Anything that can produce a reply for a prompt."""

    async def generate(
        self,
        prompt: str,
        image: str | None,
        history: list[dict[str, Any]],
    ) -> str:
        """Return the model's reply.  Raise ``ApiError`` on failure.

        *image* is base64-encoded PNG data.  *history* is in the provider's
        alternating-turn shape (see ``ChatStore.get_api_history``).
        """
        ...
