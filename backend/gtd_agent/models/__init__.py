from gtd_agent.models.message import Message
from gtd_agent.models.person import Person
from gtd_agent.models.task import Task
from gtd_agent.models.user import User
from gtd_agent.models.user_context import UserContext

__all__ = ["User", "Person", "Task", "Message", "UserContext"]
