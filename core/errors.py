from __future__ import annotations


class MusicError(Exception):
    """Base class for every error raised by the music core."""


class UserInputError(MusicError):
    """A command could not run as asked. The message is shown to the user."""

    default_message = "Invalid request."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class OutOfRange(UserInputError):
    default_message = "Pick a number from the search results."


class NoActiveSearch(UserInputError):
    default_message = "Search for a song first."


class NotInVoiceChannel(UserInputError):
    default_message = "Join a voice channel first."


class EmptyRankData(UserInputError):
    default_message = "No play history yet! Play some songs first."


class InvalidPlaylist(UserInputError):
    default_message = "That playlist is empty or invalid."


class TrackNotFound(UserInputError):
    default_message = "No result found for that query."


class LookupFailure(MusicError):
    pass


class PlaybackTransientError(MusicError):
    pass


class VoiceConnectionError(MusicError):
    pass


class PersistenceError(MusicError):
    pass
