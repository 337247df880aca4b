"""Domain errors mapped to HTTP responses by the web API."""


class AppError(Exception):
    """Base class for errors that carry an API error code and HTTP status."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConversationNotFoundError(AppError):
    code = "CONVERSATION_NOT_FOUND"
    status_code = 404

    def __init__(self, conversation_id):
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class KnowledgeEntryNotFoundError(AppError):
    code = "KNOWLEDGE_ENTRY_NOT_FOUND"
    status_code = 404

    def __init__(self, entry_id):
        super().__init__(f"Knowledge entry not found: {entry_id}")
        self.entry_id = entry_id


class InvalidMessageRoleError(AppError):
    """Raised when a message role is neither 'user' nor 'assistant'."""

    code = "INVALID_MESSAGE_ROLE"
    status_code = 400

    def __init__(self, role):
        super().__init__(f"Invalid message role: {role}")
        self.role = role
