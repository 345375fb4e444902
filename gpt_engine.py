# gpt_engine.py
import logging
import re
import time
from typing import Iterable, List, NamedTuple, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from openai import APIError, APITimeoutError, OpenAI, OpenAIError, RateLimitError

from backend.errors import ContentBlockedError, UpstreamError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """
You are an expert product assistant. Your goal is to gather detailed information about a product to build comprehensive transparency data.
Always ask a single, concise, clarifying question relevant to the previous statements and the overall product description.
Each interaction should aim to gather more information about the product's origin, components, manufacturing, environmental impact, and ethical practices.

Consider the following aspects for transparency:
- Origin & Sourcing: where do raw materials come from? (country, specific region)
- Ingredients & Components: full disclosure of materials used, key components.
- Manufacturing Process: how and where is it made? Conditions, energy usage.
- Environmental Impact: recyclability, carbon footprint, sustainability initiatives.
- Ethical Practices: labor standards, fair trade.
- Certifications: any relevant industry or ethical certifications.

For each user input, you will:
1. Evaluate the previous description/answer for its level of transparency based on the above aspects.
2. Ask a single, concise follow-up question that directly seeks to improve the transparency score.
3. Provide very brief feedback (1-2 sentences) on the transparency of the previous user input.

Format your output as: 'Question: [Your question]? Feedback: [Transparency score from 1-10] - [brief text]'
Example: 'Question: Where are the raw materials for this product sourced from? Feedback: 5 - Needs more detail on origin.'
Do not use asterisks or any other markdown formatting.
"""

DEFAULT_QUESTION = "Could you please provide more details?"
DEFAULT_FEEDBACK = "No specific feedback."
MIN_SCORE = 1
MAX_SCORE = 10

_QUESTION_RE = re.compile(r"Question:\s*(.*?)\?")
_SCORE_RE = re.compile(r"Feedback:\s*(\d{1,3})(?!\d)")
_FEEDBACK_TEXT_RE = re.compile(r"Feedback:\s*\d+(?:\s*/\s*10)?\s*-\s*(.*)")


class ParsedReply(NamedTuple):
    question: str
    transparency_score: int
    feedback: str


def _search_after(pattern, text: str, start: int):
    # prefer the clause after the question; fall back to the whole reply
    return pattern.search(text, start) or pattern.search(text)


def parse_reply(text: Optional[str]) -> ParsedReply:
    """
    Pull the question, score and feedback out of a model reply shaped like
    'Question: <q>? Feedback: <n> - <text>'.

    Never raises: anything that doesn't match falls back to DEFAULT_QUESTION,
    a score of 0 and DEFAULT_FEEDBACK. Scores outside 1-10 also become 0.
    """
    t = (text or "").strip()

    question = DEFAULT_QUESTION
    tail_start = 0
    m = _QUESTION_RE.search(t)
    if m and m.group(1).strip():
        question = m.group(1).strip() + "?"
        tail_start = m.end()

    score = 0
    m = _search_after(_SCORE_RE, t, tail_start)
    if m:
        value = int(m.group(1))
        if MIN_SCORE <= value <= MAX_SCORE:
            score = value

    feedback = DEFAULT_FEEDBACK
    m = _search_after(_FEEDBACK_TEXT_RE, t, tail_start)
    if m and m.group(1).strip():
        feedback = m.group(1).strip()

    return ParsedReply(question, score, feedback)


def format_model_turn(question: str, score: int, text: str) -> str:
    """Inverse of parse_reply, used when replaying stored details as model turns."""
    return f"Question: {question} Feedback: {score} - {text}"


def to_openai_messages(history: Iterable[BaseMessage]) -> List[dict]:
    messages = []
    for msg in history:
        if isinstance(msg, AIMessage):
            messages.append({"role": "assistant", "content": msg.content})
        elif isinstance(msg, HumanMessage):
            messages.append({"role": "user", "content": msg.content})
    return messages


class GptEngine:
    """
    Stateless wrapper around the chat completions API. The provider keeps no
    conversation state, so the full history goes out on every call.
    """

    def __init__(
        self,
        client: OpenAI,
        model: str = "gpt-4o-mini",
        temperature: float = 0.2,
        max_tokens: int = 300,
        retries: int = 0,
        retry_base_delay: float = 0.6,
        moderation_model: Optional[str] = "omni-moderation-latest",
    ):
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.retries = retries
        self.retry_base_delay = retry_base_delay
        self.moderation_model = moderation_model

    @classmethod
    def from_settings(cls, settings) -> "GptEngine":
        client = OpenAI(api_key=settings.openai_api_key, timeout=settings.openai_timeout)
        return cls(
            client,
            model=settings.openai_model,
            temperature=settings.model_temperature,
            max_tokens=settings.max_tokens_reply,
            retries=settings.openai_retries,
            retry_base_delay=settings.openai_retry_base_delay,
            moderation_model=settings.moderation_model if settings.enable_moderation else None,
        )

    def moderate_text(self, text: str) -> bool:
        if not self.moderation_model:
            return True
        try:
            r = self.client.moderations.create(model=self.moderation_model, input=text)
            return not getattr(r.results[0], "flagged", False)
        except OpenAIError as e:
            logger.warning("Moderation check failed, allowing input: %s", e)
            return True  # fail-open

    def _chat_with_retries(self, messages):
        for i in range(self.retries + 1):
            try:
                return self.client.chat.completions.create(
                    model=self.model,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    messages=messages,
                )
            except (APITimeoutError, RateLimitError, APIError) as e:
                if i < self.retries:
                    delay = self.retry_base_delay * (2 ** i)
                    logger.info("Model call attempt %d failed (%s), retrying in %.1fs", i + 1, e, delay)
                    time.sleep(delay)
                else:
                    raise

    def generate_reply(self, history: Iterable[BaseMessage], user_message: str) -> str:
        """
        Send the system prompt, the prior turns and the new user message; return
        the model's raw reply text.
        """
        if not self.moderate_text(user_message):
            raise ContentBlockedError("Model API content blocked due to safety reasons: input was flagged by moderation.")

        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        messages.extend(to_openai_messages(history))
        messages.append({"role": "user", "content": user_message})

        try:
            response = self._chat_with_retries(messages)
        except APITimeoutError as e:
            logger.error("Model call timed out: %s", e)
            raise UpstreamTimeoutError(f"Model API timeout: {e}") from e
        except OpenAIError as e:
            logger.error("Error calling model API: %s", e, exc_info=True)
            raise UpstreamError(f"Model API error: {e}") from e

        choice = response.choices[0]
        if choice.finish_reason == "content_filter":
            raise ContentBlockedError("Model API content blocked due to safety reasons: reply was filtered.")

        text = (choice.message.content or "").strip()
        if not text:
            raise UpstreamError("Model API error: empty response from model.")
        return text
