"""External collaborators: the Matrix chat client and the Gemini text client."""
