from __future__ import annotations

from enum import StrEnum


class MessageType(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"


class ProposalStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class PresenceStatus(StrEnum):
    ONLINE = "online"
    RECENTLY_ONLINE = "recently_online"
    OFFLINE = "offline"


class CallSignalType(StrEnum):
    VIDEO_INVITE = "video_invite"
    VIDEO_ACCEPT = "video_accept"
    VIDEO_DECLINE = "video_decline"
    VIDEO_END = "video_end"
    VIDEO_JOIN = "video_join"


class CallDirection(StrEnum):
    OUTGOING = "outgoing"
    INCOMING = "incoming"


class CallStatus(StrEnum):
    RINGING = "ringing"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    ENDED = "ended"


class CallState(StrEnum):
    IDLE = "idle"
    INVITING = "inviting"
    RINGING_LOCAL = "ringing_local"  # our invite is out, peer's device rings
    RINGING_REMOTE = "ringing_remote"  # a peer's invite is ringing here
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    ENDED = "ended"


class NoticeLevel(StrEnum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"
