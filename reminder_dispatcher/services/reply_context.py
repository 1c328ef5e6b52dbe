"""
Last-reminder context per recipient.

Remembers which checkpoint a recipient was most recently reminded about so
a later acknowledgment without an explicit checkpoint applies to the right
one. Fed by EscalationEngine.on_reminder_fired; cleared at midnight.
"""

from reminder_dispatcher.models.domain.recipient_domain import CheckpointType

MORNING_CUTOFF_HOUR = 12


class ReplyContextStore:
    def __init__(self):
        self._last_fired: dict[str, CheckpointType] = {}

    def remember(self, address: str, checkpoint: CheckpointType) -> None:
        self._last_fired[address] = checkpoint

    def get(self, address: str) -> CheckpointType | None:
        return self._last_fired.get(address)

    def forget(self, address: str) -> None:
        self._last_fired.pop(address, None)

    def clear_all(self) -> int:
        count = len(self._last_fired)
        self._last_fired.clear()
        return count

    def resolve_checkpoint(self, address: str, hour: int) -> CheckpointType:
        """Last reminded checkpoint, else morning before noon and evening after."""
        remembered = self.get(address)
        if remembered is not None:
            return remembered
        return CheckpointType.MORNING if hour < MORNING_CUTOFF_HOUR else CheckpointType.EVENING

    def __len__(self) -> int:
        return len(self._last_fired)
