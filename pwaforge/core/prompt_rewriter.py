"""Optional prompt rewrite through a cheaper model before generation."""

from __future__ import annotations

import logging

from pwaforge.bridge.completion_client import CompletionClient
from pwaforge.core.prompt_builder import build_rewrite_prompt, extract_rewritten_prompt
from pwaforge.models.completion import ChatMessage, CompletionRequest

logger = logging.getLogger(__name__)


class PromptRewriter:
    """Elaborates a short user prompt; any failure returns the original.

    Parameters
    ----------
    client:
        Completion client to call.
    model:
        Model id used for rewriting.
    """

    def __init__(self, client: CompletionClient, model: str) -> None:
        self._client = client
        self._model = model

    def rewrite(self, prompt: str, api_key: str) -> str:
        request = CompletionRequest(
            model=self._model,
            messages=[ChatMessage(role="user", content=build_rewrite_prompt(prompt))],
        )
        try:
            response = self._client.complete(request, api_key)
        except Exception:
            logger.warning("Prompt rewrite failed; using the original prompt", exc_info=True)
            return prompt

        content = response.first_content
        if not content:
            logger.info("Prompt rewrite returned nothing; using the original prompt")
            return prompt
        rewritten = extract_rewritten_prompt(content)
        if rewritten is None:
            logger.info("Prompt rewrite had no recognizable prompt; using the original")
            return prompt
        logger.debug("Prompt rewritten (%d -> %d chars)", len(prompt), len(rewritten))
        return rewritten
