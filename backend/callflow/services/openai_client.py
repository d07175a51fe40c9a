import logging
from typing import Optional

from openai import AsyncOpenAI
from tenacity import retry, wait_exponential, stop_after_attempt

from ..config import Settings

logger = logging.getLogger(__name__)


CALL_ANALYSIS_SYSTEM_PROMPT = (
    "You are analyzing a trucking/logistics phone call transcript between a freight broker's voice agent and a caller. Extract:\n"
    "1. sentiment: \"positive\", \"neutral\", or \"negative\" based on the caller's tone and engagement\n"
    "2. intent: brief description of what the caller wanted (e.g. \"rate quote\", \"book load\", \"speak to dispatch\", \"general inquiry\")\n"
    "3. outcome: \"booked\", \"callback_requested\", \"declined\", \"no_action\", or \"unknown\"\n"
    "4. summary: 1-2 sentence summary of the call\n"
    "5. carrier_usdot: if a DOT number is mentioned (e.g. \"DOT 123456\", \"my DOT is 1234567\"), just the number, otherwise null\n"
    "6. carrier_mc: if an MC number is mentioned (e.g. \"MC 987654\"), just the number, otherwise null\n"
    "7. carrier_name: the caller's company/carrier name if mentioned, otherwise null\n"
    "8. shipper: the shipper or freight source named by the caller, otherwise null\n"
    "9. equipment_type: \"flatbed\" if a flatbed is discussed, \"not_flatbed\" if a hot shot, sprinter, van or box truck is discussed, otherwise null\n\n"
    "Respond ONLY with valid JSON: {\"sentiment\":\"...\", \"intent\":\"...\", \"outcome\":\"...\", \"summary\":\"...\", "
    "\"carrier_usdot\":null|\"string\", \"carrier_mc\":null|\"string\", \"carrier_name\":null|\"string\", "
    "\"shipper\":null|\"string\", \"equipment_type\":null|\"string\"}"
)


class OpenAIClient:
    """Chat-completions client for any OpenAI-compatible endpoint (OpenAI, Groq, a gateway)."""

    def __init__(self, settings: Settings) -> None:
        self.model = settings.ai_model
        if settings.ai_enabled:
            self.client: Optional[AsyncOpenAI] = AsyncOpenAI(
                api_key=settings.ai_api_key,
                base_url=settings.ai_base_url,
                timeout=settings.ai_timeout_seconds,
                max_retries=0,
            )
            logger.info(f"AI enrichment enabled (model={self.model}, base_url={settings.ai_base_url or 'default'})")
        else:
            self.client = None
            logger.info("AI enrichment disabled (no API key configured)")

    @property
    def enabled(self) -> bool:
        return self.client is not None

    @retry(wait=wait_exponential(min=1, max=10), stop=stop_after_attempt(3), reraise=True)
    async def complete(self, system_prompt: str, user_content: str) -> str:
        """Return the raw text of the first completion choice."""
        if self.client is None:
            raise RuntimeError("AI client is not configured")
        chat = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            temperature=0.2,
        )
        return chat.choices[0].message.content or ""

    async def analyze_call(self, transcript_text: str) -> str:
        return await self.complete(
            CALL_ANALYSIS_SYSTEM_PROMPT,
            f"Analyze this call transcript:\n\n{transcript_text}",
        )
