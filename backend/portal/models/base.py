from portal.models.user import AuthUser, AuthSession, RevokedToken, Profile
from portal.models.client import Client
from portal.models.file import File, FileAssignment, FileAccessLog
from portal.models.message import Message
from portal.models.news import News, NewsAssignment

__all__ = [
    "AuthUser",
    "AuthSession",
    "RevokedToken",
    "Profile",
    "Client",
    "File",
    "FileAssignment",
    "FileAccessLog",
    "Message",
    "News",
    "NewsAssignment",
]
