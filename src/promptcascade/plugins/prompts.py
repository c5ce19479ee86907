"""Non-interactive recovery and preview prompts.

Used for unattended runs and as library defaults. Interactive console
versions live in the CLI.
"""

from collections.abc import Mapping
from typing import Any

import structlog

from promptcascade.contracts.enums import RecoveryDecision
from promptcascade.contracts.nodes import PromptNode

logger = structlog.get_logger(__name__)

DEFAULT_MAX_AUTO_RETRIES = 3


class AutoRecoveryPrompt:
    """Always answers with the same recovery decision.

    A ``retry`` answer is bounded per node: after ``max_auto_retries`` fresh
    budgets for the same node the prompt answers ``fallback`` instead, so an
    unattended run against a node that always fails still terminates.
    """

    def __init__(
        self,
        decision: RecoveryDecision = RecoveryDecision.STOP,
        *,
        max_auto_retries: int = DEFAULT_MAX_AUTO_RETRIES,
        fallback: RecoveryDecision = RecoveryDecision.STOP,
    ) -> None:
        if max_auto_retries < 0:
            raise ValueError("max_auto_retries must be >= 0")
        if fallback == RecoveryDecision.RETRY:
            raise ValueError("fallback must be stop or skip")
        self.decision = decision
        self.max_auto_retries = max_auto_retries
        self.fallback = fallback
        self._retries: dict[str, int] = {}

    def ask_recovery_decision(self, node: PromptNode, error_message: str) -> RecoveryDecision:
        if self.decision != RecoveryDecision.RETRY:
            return self.decision
        used = self._retries.get(node.node_id, 0)
        if used >= self.max_auto_retries:
            logger.warning(
                "Automatic retries exhausted",
                node_id=node.node_id,
                retries=used,
                fallback=self.fallback.value,
            )
            return self.fallback
        self._retries[node.node_id] = used + 1
        return RecoveryDecision.RETRY


class AutoConfirmPrompt:
    """Always answers the action preview with the same value."""

    def __init__(self, answer: bool = True) -> None:
        self.answer = answer

    def confirm_action(self, extracted_data: Any, config: Mapping[str, Any], node_name: str) -> bool:
        return self.answer
