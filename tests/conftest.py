"""
Shared fixtures: scripted stand-ins for the analyzer and validator LLMs
"""

import json

import pytest
from unittest.mock import Mock


class ScriptedLLM:
    """Replays canned replies in order; an Exception instance in the script is raised instead."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.prompts = []
        self.call_types = []

    @property
    def calls(self):
        return len(self.prompts)

    def invoke(self, prompt, call_type="general"):
        self.prompts.append(prompt)
        self.call_types.append(call_type)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return Mock(content=reply)


def generation_reply(rewritten_query="SELECT id, status FROM orders WHERE status = 'PAID'",
                     issues=("Full table scan on orders",),
                     suggested_indexes="CREATE INDEX idx_orders_status ON orders(status);"):
    return json.dumps({
        "analysis": "Sequential scan on orders.\nSEMANTIC CHECK: PASSED",
        "issues": list(issues),
        "rewrittenQuery": rewritten_query,
        "suggestedIndexes": suggested_indexes,
    })


VALID_REPLY = "VALID: YES\nExplanation: All predicates and joins are preserved."
INVALID_REPLY = "VALID: NO\nExplanation: The rewrite drops the status filter."


@pytest.fixture
def scripted_llm():
    """Factory for ScriptedLLM instances"""
    return ScriptedLLM


@pytest.fixture
def make_generation():
    """Builds analyzer JSON replies"""
    return generation_reply


@pytest.fixture
def valid_reply():
    return VALID_REPLY


@pytest.fixture
def invalid_reply():
    return INVALID_REPLY
