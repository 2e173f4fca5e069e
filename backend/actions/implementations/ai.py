"""AI actions: free-form generation, categorization and summarization.

Each action requires a configured AI provider; provider errors fail the
step. Categorize and summarize soft-skip when the source field is empty.
"""

import json
from typing import Any, Dict

import structlog

from actions.base import ActionServices, BaseAction, skipped, text_at
from actions.schemas import AICategorizeConfig, AIGenerateConfig, AISummarizeConfig
from core.constants import ActionType
from core.exceptions import ActionError
from workflow.templating import interpolate_template

logger = structlog.get_logger(__name__)


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


class _AIAction(BaseAction):
    def _require_provider(self, services: ActionServices) -> None:
        if not services.ai.is_configured:
            logger.error("AI provider API key not configured", action_type=self.action_type.value)
            raise ActionError("AI provider API key not configured", action_type=self.action_type.value)


class AIGenerateAction(_AIAction):
    """Render ``prompt_template`` and store the completion under ``output_field``.

    With ``structured`` the completion is parsed as JSON and stored as JSON
    text.
    """

    action_type = ActionType.AI_GENERATE
    display_name = "AI Generate"
    config_model = AIGenerateConfig

    async def execute(self, config: AIGenerateConfig, ctx: Dict[str, Any], services: ActionServices):
        prompt = interpolate_template(config.prompt_template, ctx)
        self._require_provider(services)

        logger.info(
            "Generating content",
            output_field=config.output_field,
            prompt_length=len(prompt),
            structured=config.structured,
        )
        if config.structured:
            result = json.dumps(await services.ai.generate_structured(prompt))
        else:
            result = await services.ai.generate(prompt)

        return {
            "success": True,
            config.output_field: result,
            "prompt_used": _truncate(prompt, 200),
            "generated_at": services.now_iso(),
        }


class AICategorizeAction(_AIAction):
    action_type = ActionType.AI_CATEGORIZE
    display_name = "AI Categorize"
    config_model = AICategorizeConfig

    async def execute(self, config: AICategorizeConfig, ctx: Dict[str, Any], services: ActionServices):
        text = text_at(ctx, config.field_to_analyze)
        if not text:
            logger.warning("No text found to analyze", field=config.field_to_analyze)
            return skipped(
                f"No text found at {config.field_to_analyze}", **{config.output_field: None}
            )

        prompt = (
            "Analyze the following text and categorize it into one of these categories: "
            f"{', '.join(config.categories)}.\n\n"
            f'Text: "{text[:2000]}"\n\n'
            "Respond with ONLY the category name, nothing else. "
            "The category must be exactly one of the options listed above."
        )
        self._require_provider(services)

        category = (await services.ai.generate(prompt)).strip()
        matched = next((c for c in config.categories if c.lower() == category.lower()), None)
        if matched is None:
            logger.warning("AI returned unknown category", returned=category, valid=config.categories)

        return {
            "success": True,
            config.output_field: matched or category,
            "analyzed_text": _truncate(text, 100),
            "categorized_at": services.now_iso(),
        }


class AISummarizeAction(_AIAction):
    action_type = ActionType.AI_SUMMARIZE
    display_name = "AI Summarize"
    config_model = AISummarizeConfig

    async def execute(self, config: AISummarizeConfig, ctx: Dict[str, Any], services: ActionServices):
        text = text_at(ctx, config.field_to_summarize)
        if not text:
            logger.warning("No text found to summarize", field=config.field_to_summarize)
            return skipped(
                f"No text found at {config.field_to_summarize}", **{config.output_field: None}
            )

        prompt = (
            f"Summarize the following text in {config.max_length} characters or less. "
            "Be concise and capture the key points.\n\n"
            f'Text: "{text[:5000]}"\n\n'
            "Summary:"
        )
        self._require_provider(services)

        summary = (await services.ai.generate(prompt)).strip()
        return {
            "success": True,
            config.output_field: summary,
            "original_length": len(text),
            "summary_length": len(summary),
            "summarized_at": services.now_iso(),
        }


AI_ACTION_TYPES = {
    ActionType.AI_GENERATE: AIGenerateAction,
    ActionType.AI_CATEGORIZE: AICategorizeAction,
    ActionType.AI_SUMMARIZE: AISummarizeAction,
}
