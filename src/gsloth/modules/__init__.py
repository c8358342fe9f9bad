"""
Command modules - ask, review and chat on top of the agent runner.
"""

from .ask import ask_question
from .chat import ChatSession, run_chat
from .prompts import system_prompt
from .review import report_rating, run_review, with_review_rate_middleware

__all__ = [
    "ask_question",
    "ChatSession",
    "run_chat",
    "system_prompt",
    "report_rating",
    "run_review",
    "with_review_rate_middleware",
]
