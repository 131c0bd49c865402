"""
Error taxonomy shared by every component.

- ValidationError: malformed input, nothing was written
- NotFoundError: unknown task / session / instruction for that user
- CollaboratorError: the AI, embedding or a tool collaborator failed

The core never retries any of these; retry policy belongs to whoever
scheduled the work.
"""


class AideError(Exception):
    pass


class ValidationError(AideError):
    pass


class NotFoundError(AideError):
    pass


class CollaboratorError(AideError):
    pass


class CollaboratorTimeout(CollaboratorError):
    pass


class RateLimited(CollaboratorError):
    pass


class InvalidResponse(CollaboratorError):
    pass


class ToolError(CollaboratorError):
    pass
