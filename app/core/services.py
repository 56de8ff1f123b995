import sys
import json
import asyncio
import logging
from typing import List

from openai import APIError, AsyncOpenAI, RateLimitError
from pydantic import BaseModel, ValidationError

# Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    stream=sys.stdout,
    force=True,
)
logger = logging.getLogger(__name__)

MAX_ANALYSIS_ATTEMPTS = 3

ANALYSIS_PROMPT = (
    "Analyze this item image for a sharing/lending app where people share items "
    "within their communities. Extract:\n"
    "- name: a clear, concise name (2-5 words)\n"
    "- description: a helpful description mentioning condition and key features (2-3 sentences)\n"
    "- categories: 2-4 broad categories (e.g. \"Tools\", \"Outdoor\", \"Kitchen\", \"Sports\")\n"
    "- tags: 5-10 specific searchable tags that would help others find this item\n"
    "\nReturn the response in JSON format with 'name', 'description', 'categories' and 'tags' keys."
)


class ItemAnalysis(BaseModel):
    name: str
    description: str
    categories: List[str]
    tags: List[str]


class AnalysisError(Exception):
    pass


class AnalysisRateLimited(AnalysisError):
    pass


def parse_analysis(raw_content: str) -> ItemAnalysis:
    """Parse the model output, tolerating a fenced ```json block."""
    raw_content = raw_content.strip()
    if raw_content.startswith("```"):
        raw_content = raw_content[
            raw_content.find("{") : raw_content.rfind("}") + 1
        ]  # grab only inner JSON
    try:
        return ItemAnalysis.model_validate(json.loads(raw_content))
    except (json.JSONDecodeError, ValidationError) as e:
        raise AnalysisError(f"Model returned an unusable analysis: {e}") from e


async def analyze_item_image(client: AsyncOpenAI, image_url: str, model: str) -> ItemAnalysis:
    """
    Suggest name, description, categories and tags for an item photo.
    Handles rate limits with retries.
    """
    for attempt in range(MAX_ANALYSIS_ATTEMPTS):
        try:
            response = await client.responses.create(
                model=model,
                input=[
                    {
                        "role": "system",
                        "content": "You describe items people want to lend, briefly and practically.",
                    },
                    {
                        "role": "user",
                        "content": [
                            {"type": "input_text", "text": ANALYSIS_PROMPT},
                            {"type": "input_image", "image_url": image_url},
                        ],
                    },
                ],
            )
            return parse_analysis(response.output_text)

        except RateLimitError:
            wait_time = 2**attempt  # exponential backoff: 1s, 2s, 4s
            logger.warning(f"Rate limit for image analysis, retrying in {wait_time}s...")
            await asyncio.sleep(wait_time)
        except APIError as e:
            raise AnalysisError(f"Image analysis request failed: {e}") from e

    raise AnalysisRateLimited("Exceeded retry attempts for analyze_item_image")
