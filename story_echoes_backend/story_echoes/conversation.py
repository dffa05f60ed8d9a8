import logging
from typing import Callable, List, Optional, Tuple
from .errors import ChatFailure, ConversationBusyError, EmptyMessageError
from .generation import GenerationAdapter
from .models import ChatSnapshot, ConversationTurn, Speaker, StoryRecord
from .prompts import CHAT_FALLBACK_MESSAGE, EMPTY_REPLY_MESSAGE

logger = logging.getLogger(__name__)


class ConversationSession:
    """
    Append-only transcript with the author persona for as long as the chat panel is open.

    The whole prior transcript is sent with every message, and the current story (if
    any) is folded into the persona's instructions.
    """

    def __init__(self, adapter: GenerationAdapter,
                 story_provider: Optional[Callable[[], Optional[StoryRecord]]] = None):
        self._adapter = adapter
        self._story_provider = story_provider
        self._turns: List[ConversationTurn] = []
        self.typing = False

    @property
    def turns(self) -> Tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    async def send(self, message: str) -> ConversationTurn:
        if not message or not message.strip():
            raise EmptyMessageError("message is empty")
        if self.typing:
            raise ConversationBusyError("the author is still answering")

        prior_turns = tuple(self._turns)
        self._turns.append(ConversationTurn(speaker=Speaker.USER, text=message))
        self.typing = True
        story = self._story_provider() if self._story_provider else None
        try:
            reply = await self._adapter.continue_chat(prior_turns, message, story=story)
            text = reply or EMPTY_REPLY_MESSAGE
        except ChatFailure as e:
            logger.error(f"Author reply failed: {e}")
            text = CHAT_FALLBACK_MESSAGE
        finally:
            self.typing = False

        turn = ConversationTurn(speaker=Speaker.PERSONA, text=text)
        self._turns.append(turn)
        return turn

    def snapshot(self) -> ChatSnapshot:
        return ChatSnapshot(turns=list(self._turns), typing=self.typing)
