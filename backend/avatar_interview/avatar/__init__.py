from avatar_interview.avatar.client import AvatarProxyClient, AvatarSession, AvatarSessionInfo
from avatar_interview.avatar.speech import AvatarSpeechController

__all__ = ["AvatarProxyClient", "AvatarSession", "AvatarSessionInfo", "AvatarSpeechController"]
