from .user import User
from .feedback import Feedback, STATUS_PENDING, STATUS_PROCESSED

__all__ = ["User", "Feedback", "STATUS_PENDING", "STATUS_PROCESSED"]
