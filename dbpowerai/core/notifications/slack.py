# dbpowerai/core/notifications/slack.py

import logging
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0

SEVERITY_COLORS = {
    "low": "#10b981",
    "medium": "#f59e0b",
    "high": "#ef4444",
    "critical": "#dc2626",
}

HEADER_TEXT = "🔍 SQL Query Analyzed via Webhook API"
FALLBACK_TEXT = "🔍 New SQL Analysis from Webhook API"


def _first_present(mapping: Dict[str, Any], *keys: str) -> Optional[Any]:
    for key in keys:
        value = mapping.get(key)
        if value:
            return value
    return None


def _section(text: str) -> Dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def build_slack_message(request_body: Dict[str, Any], analysis: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build the Block Kit payload for an analyzed webhook query.

    Args:
        request_body: the webhook request (``sql``, optional ``schema``/``database_schema``
            and ``explain``/``explain_plan``)
        analysis: an analysis in its wire form (AnalysisResult.to_dict)
    """
    severity = str(analysis.get("severity") or "low").lower()
    score = analysis.get("score")
    score = "N/A" if score is None else score

    issues = analysis.get("issues") or []
    issues_text = "\n".join(f"• {issue}" for issue in issues) if issues else "None detected"

    suggested_indexes = _first_present(analysis, "suggestedIndex", "suggestedIndexes")
    notes = _first_present(analysis, "semantic_warning", "notes", "note") or "No notes provided"
    optimized = _first_present(analysis, "rewrittenQuery", "optimized_query")
    speedup_pct = round((analysis.get("speedupEstimate") or 0) * 100)

    sql = str(request_body.get("sql") or "")
    table_schema = _first_present(request_body, "database_schema", "schema")
    execution_plan = _first_present(request_body, "explain_plan", "explain")

    blocks: List[Dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": HEADER_TEXT}},
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Severity:* {severity.upper()}"},
                {"type": "mrkdwn", "text": f"*Score:* {score}/100"},
            ],
        },
        _section(f"*Original Query:*\n```{sql}```"),
        _section(f"*Optimized Query:*\n```{optimized or 'No rewrite available'}```"),
        _section(f"*Suggested Indexes:*\n{f'```{suggested_indexes}```' if suggested_indexes else 'None suggested'}"),
        _section(f"*Bottleneck Analysis:*\n{issues_text}"),
        _section(f"*Notes:*\n{notes}"),
    ]

    if table_schema:
        blocks.append(_section(f"*Table Schema:*\n```{table_schema}```"))
    if execution_plan:
        blocks.append(_section(f"*Execution Plan:*\n```{execution_plan}```"))

    validation_status = (
        ":white_check_mark: Valid" if analysis.get("validator_status") == "valid" else "⚠️ Needs Review"
    )

    return {
        "text": FALLBACK_TEXT,
        "blocks": blocks,
        "attachments": [
            {
                "color": SEVERITY_COLORS.get(severity, SEVERITY_COLORS["low"]),
                "fields": [
                    {"title": "Speedup Estimate", "value": f"{speedup_pct}%", "short": True},
                    {"title": "Validation Status", "value": validation_status, "short": True},
                ],
            }
        ],
    }


def send_slack_message(webhook_url: str,
                       request_body: Dict[str, Any],
                       analysis: Dict[str, Any],
                       timeout: float = DEFAULT_TIMEOUT_SECONDS) -> bool:
    """Post the analysis to a Slack incoming webhook. Returns False if delivery failed."""
    message = build_slack_message(request_body, analysis)

    try:
        response = requests.post(webhook_url, json=message, timeout=timeout)
    except requests.exceptions.Timeout:
        logger.error(f"Slack notification timed out after {timeout}s")
        return False
    except requests.exceptions.RequestException as e:
        logger.error(f"Error sending Slack notification: {e}")
        return False

    if response.status_code != 200:
        logger.error(f"Slack notification failed: {response.status_code} - {response.text}")
        return False

    logger.info("Slack notification sent")
    return True
