"""Delivery sink that logs coaching outputs and keeps the most recent ones."""

from __future__ import annotations

import logging
from collections import deque

from coachloop.contracts import CoachingOutput
from coachloop.core.ports import DeliveryPort

logger = logging.getLogger(__name__)


class LoggingDelivery(DeliveryPort):
    def __init__(self, *, keep: int = 50) -> None:
        self._delivered: deque[CoachingOutput] = deque(maxlen=keep)

    @property
    def delivered(self) -> list[CoachingOutput]:
        return list(self._delivered)

    async def deliver(self, output: CoachingOutput) -> bool:
        self._delivered.append(output)
        logger.info(
            "coaching_output_delivered",
            extra={
                "output_id": output.id,
                "decision_id": output.decision_id,
                "priority": output.priority,
                "immediate": output.timing.immediate,
                "title": output.title,
                "coaching_message": output.message,
            },
        )
        return True
