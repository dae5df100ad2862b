# insight_service.py
import json
import logging
import os

import httpx
from dotenv import load_dotenv

from errors import InsightError
from records import AIInsight

# Load local .env (on Render, env vars are injected automatically)
load_dotenv()

logger = logging.getLogger(__name__)

# --- OpenRouter config ---
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
# Default to a reliable free model unless overridden in env
OPENROUTER_MODEL = os.getenv(
    "OPENROUTER_MODEL",
    "meta-llama/llama-3.1-8b-instruct:free",
)
API_URL = "https://openrouter.ai/api/v1/chat/completions"

# Optional: helps OpenRouter attribute traffic (recommended)
PUBLIC_APP_URL = os.getenv("PUBLIC_APP_URL", "")

SYSTEM_PROMPT = (
    "당신은 안산동산교회의 따뜻하고 지혜로운 목회자입니다. "
    "사용자의 묵상 내용을 분석하여 격려와 통찰이 담긴 묵상 피드백, "
    "진심 어린 짧은 기도문, 그리고 관련된 성경 구절을 추천하세요. "
    "반드시 한국어로 답변하고 JSON 형식을 유지하세요."
)

INSIGHT_KEYS = ("meditation", "prayer", "verseSuggestion")


def _build_user_prompt(scripture: str) -> str:
    return (
        f'사용자의 묵상/기도 내용: "{scripture}"\n'
        "이 내용을 바탕으로 성숙한 신앙적 통찰을 제공해주세요.\n\n"
        "Respond with one JSON object and nothing else:\n"
        '{"meditation": "<성숙하고 따뜻한 어조의 묵상 피드백>", '
        '"prayer": "<묵상 내용을 갈무리하는 짧은 기도문>", '
        '"verseSuggestion": "<관련된 성경 구절, 예: 시편 23:1>"}'
    )


def _strip_fences(content: str) -> str:
    """Models sometimes wrap JSON in ```json ... ``` despite being asked not to."""
    text = content.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def parse_insight(content) -> AIInsight:
    """All three fields or nothing: no partial insight is ever returned."""
    if not content or not str(content).strip():
        raise InsightError("AI response text is empty")

    try:
        data = json.loads(_strip_fences(str(content)))
    except ValueError:
        logger.error("Failed to parse AI response JSON: %s", str(content)[:800])
        raise InsightError("Invalid AI response format")

    if not isinstance(data, dict):
        raise InsightError("Invalid AI response format")

    missing = [k for k in INSIGHT_KEYS
               if not isinstance(data.get(k), str) or not data[k].strip()]
    if missing:
        raise InsightError(f"AI response missing fields: {missing}")

    return AIInsight(
        meditation=data["meditation"].strip(),
        prayer=data["prayer"].strip(),
        verse_suggestion=data["verseSuggestion"].strip(),
    )


def generate_insight(scripture: str, timeout: float = 30.0, transport=None) -> AIInsight:
    """
    Ask the LLM for a pastoral reading of one reflection:
      - meditation: encouraging feedback
      - prayer: a short closing prayer
      - verseSuggestion: one related verse reference
    Raises InsightError on any failure.
    """
    headers = {
        "Authorization": f"Bearer {OPENROUTER_API_KEY}",
        "Content-Type": "application/json",
        # Recommended by OpenRouter (optional but nice to have):
        "HTTP-Referer": PUBLIC_APP_URL,
        "X-Title": "QTians League",
    }

    body = {
        "model": OPENROUTER_MODEL,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": _build_user_prompt(scripture)},
        ],
        "response_format": {"type": "json_object"},
        "max_tokens": 600,
        "temperature": 0.7,
    }

    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            resp = client.post(API_URL, headers=headers, json=body)
            logger.debug("LLM status: %s", resp.status_code)
            resp.raise_for_status()
            data = resp.json()
    except httpx.HTTPStatusError as e:
        logger.error("LLM HTTP error: %s", e.response.text[:800])
        raise InsightError(f"AI service returned {e.response.status_code}") from e
    except (httpx.HTTPError, ValueError) as e:
        logger.error("LLM request failed: %s", e)
        raise InsightError("AI service unavailable") from e

    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        raise InsightError("AI response text is empty") from e

    return parse_insight(content)
