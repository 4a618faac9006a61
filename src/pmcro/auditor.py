# auditor.py
# Outcome auditor (Phase C): asks the oracle whether the execution log
# satisfies the original intent.
#
# The verdict is advisory. Oracle and parse failures become a failed
# ValidationOutcome carrying the error text; nothing is retried.

import json
import logging
import threading
from typing import Any, Sequence

from pmcro import schema
from pmcro.errors import ErrorKind, OperationCancelled, OracleUnavailable
from pmcro.models import ExecutionRecord, ValidationOutcome
from pmcro.planner import strip_code_fences

logger = logging.getLogger(__name__)

AUDITOR_PROMPT = """\
You are an auditor specialised in compliance and verification.

You receive a user's original intent and the execution log of the tool calls
made on its behalf. Decide whether the execution satisfied the intent.

Judge strictly from the log: a step marked "Failed" did not happen. Partial
completion is not success.

Respond with ONLY this JSON object, no prose and no code fences:
{"success": true or false, "reasoning": "<why>", "correction": "<what should change, or null>"}\
"""

OUTCOME_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["success", "reasoning"],
    "properties": {
        "success": {"type": "boolean"},
        "reasoning": {"type": "string"},
        "correction": {"type": ["string", "null"]},
    },
}


def format_log(records: Sequence[ExecutionRecord]) -> str:
    """Serialize the execution log the way the auditor sees it."""
    return json.dumps(
        [record.model_dump(mode="json", by_alias=True) for record in records],
        indent=2,
        ensure_ascii=False,
    )


def parse_outcome(text: str) -> ValidationOutcome:
    try:
        data = json.loads(strip_code_fences(text))
    except ValueError as exc:
        return ValidationOutcome(
            success=False,
            reasoning=f"Auditor response is not valid JSON: {exc}",
            error_kind=ErrorKind.OUTCOME_VALIDATION_FAILURE,
        )

    violations = schema.validate(data, OUTCOME_SCHEMA)
    if violations:
        return ValidationOutcome(
            success=False,
            reasoning=f"Auditor response failed validation: {schema.describe(violations)}",
            error_kind=ErrorKind.OUTCOME_VALIDATION_FAILURE,
        )

    return ValidationOutcome(
        success=data["success"],
        reasoning=data["reasoning"],
        correction=data.get("correction"),
    )


class OutcomeAuditor:
    def __init__(self, oracle, timeout: float | None = None) -> None:
        self._oracle = oracle
        self._timeout = timeout

    def validate(
        self,
        intent: str,
        records: Sequence[ExecutionRecord],
        *,
        cancel: threading.Event | None = None,
    ) -> ValidationOutcome:
        """
        One oracle round-trip. Returns a failed outcome instead of raising;
        only OperationCancelled propagates.
        """
        messages = [
            {"role": "system", "content": AUDITOR_PROMPT},
            {
                "role": "user",
                "content": (
                    f"Intent:\n{json.dumps(intent, ensure_ascii=False)}\n\n"
                    f"Execution log:\n{format_log(records)}"
                ),
            },
        ]

        try:
            response = self._oracle.chat(messages, json_mode=True, timeout=self._timeout, cancel=cancel)
        except OperationCancelled:
            raise
        except OracleUnavailable as exc:
            logger.error("Oracle unavailable while validating outcome: %s", exc)
            return ValidationOutcome(
                success=False, reasoning=str(exc), error_kind=ErrorKind.ORACLE_UNAVAILABLE
            )
        except Exception as exc:
            logger.exception("Outcome validation failed")
            return ValidationOutcome(
                success=False,
                reasoning=str(exc) or type(exc).__name__,
                error_kind=ErrorKind.OUTCOME_VALIDATION_FAILURE,
            )

        outcome = parse_outcome(response)
        if outcome.error_kind is not None:
            logger.warning("Unusable auditor response: %s", outcome.reasoning)
        return outcome
