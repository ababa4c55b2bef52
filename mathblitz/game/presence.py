"""Transport-session → participant mapping."""
from mathblitz.models.round import Participant


class PresenceTracker:
    """
    Keyed by transport-session id only; the same user id may appear under
    several sessions (reconnects, multiple tabs). Last write wins per sid.
    """

    def __init__(self):
        self._by_sid: dict[str, Participant] = {}

    def add(self, sid: str, user_id: str, username: str) -> Participant:
        participant = Participant(sid=sid, user_id=user_id, username=username)
        self._by_sid[sid] = participant
        return participant

    def remove(self, sid: str) -> Participant | None:
        return self._by_sid.pop(sid, None)

    def get(self, sid: str) -> Participant | None:
        return self._by_sid.get(sid)

    def count(self) -> int:
        return len(self._by_sid)

    def user_ids(self) -> set[str]:
        return {p.user_id for p in self._by_sid.values()}
