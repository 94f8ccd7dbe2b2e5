from .guild import Guild
from .user import User
from .guild_member import GuildMember
from .message import Message, ActivityCategory
from .guild_health import GuildHealth, ActivityLevel

__all__ = [
    "Guild",
    "User",
    "GuildMember",
    "Message",
    "ActivityCategory",
    "GuildHealth",
    "ActivityLevel",
]
