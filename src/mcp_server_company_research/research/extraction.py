"""Signal extraction: one generative call over the gathered evidence."""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..exceptions import MalformedGenerativeOutput
from .models import PipelineResult, Subject
from .normalize import ExtractedResearch, normalize_research_output, parse_generative_json
from .pipeline import format_pipeline_for_prompt
from .prompts import EXTRACTION_SYSTEM_PROMPT, get_extraction_prompt

if TYPE_CHECKING:
    from browser_use.llm.base import BaseChatModel

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    """Normalized research plus the token usage the provider reported."""

    research: ExtractedResearch
    prompt_tokens: int = 0
    completion_tokens: int = 0
    malformed: bool = False


class SignalExtractor:
    """Turns pipeline evidence into a typed ``ExtractedResearch``."""

    def __init__(self, llm: "BaseChatModel"):
        self.llm = llm

    async def extract(self, subject: Subject, pipeline_result: PipelineResult) -> ExtractionResult:
        """Call the model and normalize its answer.

        Malformed output is logged and replaced with defaults. Provider errors
        (network, auth) propagate to the caller.
        """
        from browser_use.llm.messages import SystemMessage, UserMessage

        messages = [
            SystemMessage(content=EXTRACTION_SYSTEM_PROMPT),
            UserMessage(content=get_extraction_prompt(subject, format_pipeline_for_prompt(pipeline_result))),
        ]

        response = await self.llm.ainvoke(messages)
        usage = getattr(response, "usage", None)
        prompt_tokens = getattr(usage, "prompt_tokens", 0) or 0
        completion_tokens = getattr(usage, "completion_tokens", 0) or 0

        try:
            data = parse_generative_json(response.completion)
        except MalformedGenerativeOutput as e:
            logger.warning(f"Malformed extraction output for '{subject.name}': {e}")
            return ExtractionResult(
                research=normalize_research_output({}, fallback_name=subject.name),
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                malformed=True,
            )

        research = normalize_research_output(data, fallback_name=subject.name)
        logger.info(f"Extracted {len(research.recent_signals)} signals for '{subject.name}'")
        return ExtractionResult(research=research, prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
