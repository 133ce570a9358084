import enum


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    CLIENT = "client"
    USER = "user"


class ClientStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class AccessType(str, enum.Enum):
    VIEW = "view"
    DOWNLOAD = "download"
    PREVIEW = "preview"


class MessageType(str, enum.Enum):
    ADMIN_TO_CLIENT = "admin_to_client"
    ADMIN_TO_USER = "admin_to_user"
    CLIENT_TO_USER = "client_to_user"
    CLIENT_TO_ADMIN = "client_to_admin"
    USER_TO_ADMIN = "user_to_admin"
    USER_TO_CLIENT = "user_to_client"


class TargetKind(str, enum.Enum):
    USER = "user"
    CLIENT = "client"
    BROADCAST = "broadcast"


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]
