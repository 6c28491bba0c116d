"""Custom exceptions for the SEO pages agent."""


class SeoPagesAgentError(Exception):
    """Base exception for the SEO pages agent."""

    pass


class ConfigurationError(SeoPagesAgentError):
    """A required external capability is missing or misconfigured."""

    pass


class RedactionSkipped(SeoPagesAgentError):
    """A tool result field could not be inspected and was left untouched."""

    def __init__(self, field_name: str, reason: str):
        super().__init__(f"Redaction skipped for field '{field_name}': {reason}")
        self.field_name = field_name
        self.reason = reason


class ContextError(SeoPagesAgentError):
    """Context window errors."""

    pass


class ContextOverflowError(ContextError):
    """Serialized context exceeded the configured ceiling."""

    def __init__(self, current_chars: int, max_chars: int):
        super().__init__(
            f"Context overflow: {current_chars} > {max_chars} characters"
        )
        self.current_chars = current_chars
        self.max_chars = max_chars


class SkillError(SeoPagesAgentError):
    """Skill catalog errors."""

    pass


class SkillNotFoundError(SkillError):
    """Skill not found in registry."""

    def __init__(self, skill_id: str):
        super().__init__(f"Skill not found: {skill_id}")
        self.skill_id = skill_id


class LLMError(SeoPagesAgentError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """LLM API errors (rate limit, auth, etc.)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GenerationStreamError(LLMError):
    """Completion stream failed before a normal end event."""

    pass


class TaskError(SeoPagesAgentError):
    """Task lifecycle errors."""

    pass


class TaskConflictError(TaskError):
    """Another task is already running in the session."""

    def __init__(self, session_id: str, running_task_id: str):
        super().__init__(
            f"Session {session_id} already has a running task: {running_task_id}"
        )
        self.session_id = session_id
        self.running_task_id = running_task_id


class InvalidTaskTransitionError(TaskError):
    """Requested status change is not allowed by the task state machine."""

    def __init__(self, task_id: str, current: str, target: str):
        super().__init__(f"Task '{task_id}' cannot move from {current} to {target}")
        self.task_id = task_id
        self.current = current
        self.target = target


class PersistenceError(SeoPagesAgentError):
    """A read or write against the persistent store failed."""

    pass
