# dbpowerai/core/agent/semantic_validator.py

import logging
import re
from dataclasses import dataclass
from typing import Any

from .llm_tracker import LLMCallError
from .prompts import build_validator_prompt

logger = logging.getLogger(__name__)

_VALID_YES = re.compile(r"\bVALID:\s*YES\b", re.IGNORECASE)
_EXPLANATION = re.compile(r"Explanation:\s*(.*)", re.IGNORECASE | re.DOTALL)


@dataclass
class ValidatorVerdict:
    valid: bool
    explanation: str
    raw_response: str = ""


def parse_validator_response(response_content: str) -> ValidatorVerdict:
    """
    Read a free-form validator reply.

    The rewrite is valid only when the reply says ``VALID: YES``; anything
    else, including an unparseable reply, counts as a rejection. The
    explanation is the text after ``Explanation:`` or the whole reply.
    """
    content = (response_content or "").strip()
    is_valid = _VALID_YES.search(content) is not None

    explanation_match = _EXPLANATION.search(content)
    explanation = explanation_match.group(1).strip() if explanation_match else ""

    return ValidatorVerdict(valid=is_valid, explanation=explanation or content, raw_response=content)


class SemanticValidator:
    """
    Second-pass check that asks an independent LLM call whether a rewritten
    query is semantically identical to the original.
    """

    def __init__(self, llm: Any):
        self.llm = llm

    def validate_rewrite(self, original_query: str, rewritten_query: str) -> ValidatorVerdict:
        """Return the validator's verdict; a failed validator call is a rejection."""
        prompt = build_validator_prompt(original_query, rewritten_query)

        try:
            response = self.llm.invoke(prompt, call_type="validator")
        except LLMCallError as e:
            logger.error(f"Validator call failed: {e}")
            return ValidatorVerdict(valid=False, explanation=f"Validator call failed: {e}")

        verdict = parse_validator_response(response.content)
        logger.info(f"Validator verdict: {'VALID' if verdict.valid else 'INVALID'}")
        return verdict
