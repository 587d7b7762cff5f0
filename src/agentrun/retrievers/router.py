"""
Query routing and retrieval augmentation.

Every configured retriever is queried for every turn, one after the
other; there is no selection or ranking.
"""

from __future__ import annotations

import logging
from typing import Sequence

from ..domain.entities import ChatMessage, Content
from ..domain.ports import IContentRetriever

logger = logging.getLogger(__name__)

AUGMENTATION_HEADER = "\n\nAnswer using the following information:\n"


class QueryRouter:
    """Fans a query out to every retriever and concatenates the results."""

    def __init__(self, retrievers: Sequence[IContentRetriever]):
        self.retrievers = list(retrievers)

    async def route(self, query: str) -> list[Content]:
        contents: list[Content] = []
        for retriever in self.retrievers:
            contents.extend(await retriever.retrieve(query))
        return contents


class RetrievalAugmentor:
    """Injects retrieved contents into the user message."""

    def __init__(self, router: QueryRouter):
        self.router = router

    async def augment(self, user_message: ChatMessage) -> tuple[ChatMessage, list[Content]]:
        """Return the augmented user message and the contents used.

        A turn with no retrieved content leaves the message unchanged.
        """
        contents = await self.router.route(user_message.content)
        if not contents:
            return user_message, []

        logger.debug(f"Injecting {len(contents)} retrieved contents into the user message")
        injected = "\n\n".join(content.text for content in contents)
        return ChatMessage.user(f"{user_message.content}{AUGMENTATION_HEADER}{injected}"), contents
