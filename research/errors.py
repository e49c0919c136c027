from __future__ import annotations


class SurveyError(Exception):
    pass


class TransportFailure(SurveyError):
    """Something outside the process (store, platform, completion service) failed."""


class PersistenceUnavailable(TransportFailure):
    pass


class CompletionUnavailable(TransportFailure):
    pass


class DispatchTimeout(TransportFailure):
    def __init__(self, channel_class: str, timeout_seconds: float):
        super().__init__(f"{channel_class} action timed out after {timeout_seconds:.1f}s")
        self.channel_class = channel_class
        self.timeout_seconds = timeout_seconds


class LoopExhausted(SurveyError):
    def __init__(self, max_steps: int):
        super().__init__(f"tool loop hit the step ceiling ({max_steps}) without a final reply")
        self.max_steps = max_steps


class SessionInconsistency(SurveyError):
    def __init__(self, responder_id: int, session_ids: list[str]):
        super().__init__(
            f"responder {responder_id} has {len(session_ids)} active sessions: {', '.join(session_ids)}"
        )
        self.responder_id = responder_id
        self.session_ids = list(session_ids)
