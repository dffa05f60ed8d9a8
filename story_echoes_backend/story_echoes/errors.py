class StoryEchoesError(Exception):
    """Base class for every recoverable failure raised by the backend."""


class AnalysisFailure(StoryEchoesError):
    """The image call failed or returned something that is not a story."""


class NarrationFailure(StoryEchoesError):
    """Anything that prevents the opening paragraph from being heard."""


class SynthesisFailure(NarrationFailure):
    """The speech call failed or returned no audio payload."""


class DecodeError(NarrationFailure):
    """The audio bytes are not a supported encoding."""


class PlaybackError(NarrationFailure):
    """The audio output refused to start playback."""


class ChatFailure(StoryEchoesError):
    pass


class InvalidImageError(StoryEchoesError, ValueError):
    pass


class InvalidStateError(StoryEchoesError):
    pass


class EmptyMessageError(StoryEchoesError, ValueError):
    pass


class ConversationBusyError(StoryEchoesError):
    """A reply from the author is still outstanding."""
