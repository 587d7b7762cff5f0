"""
Tool and retriever assembly.

Turns declared tool providers into one name-keyed tool map and declared
retriever providers into a single retrieval augmentor.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from ..domain.entities import RunContext, ToolSpecification
from ..domain.ports import IContentRetrieverProvider, IToolExecutor, IToolProvider
from ..retrievers.router import QueryRouter, RetrievalAugmentor

logger = logging.getLogger(__name__)


async def build_tools(
    providers: Sequence[IToolProvider],
    run_context: RunContext,
    extra_variables: dict[str, Any],
) -> dict[ToolSpecification, IToolExecutor]:
    """Assemble and merge the tools of every provider, in order.

    Tool names are not deduplicated: a later provider's tool replaces an
    earlier one with the same name.
    """
    by_name: dict[str, tuple[ToolSpecification, IToolExecutor]] = {}
    for provider in providers:
        tools = await provider.tools(run_context, extra_variables)
        for specification, executor in tools.items():
            if specification.name in by_name:
                logger.warning(
                    f"Tool {specification.name} is declared more than once, "
                    f"the one from {type(provider).__name__} wins"
                )
            by_name[specification.name] = (specification, executor)

    logger.info(f"Assembled {len(by_name)} tools from {len(providers)} providers")
    return dict(by_name.values())


def build_retrieval_augmentor(
    providers: Sequence[IContentRetrieverProvider],
    run_context: RunContext,
) -> Optional[RetrievalAugmentor]:
    """Route every query to every declared retriever; None when none are declared."""
    if not providers:
        return None
    retrievers = [provider.create(run_context) for provider in providers]
    return RetrievalAugmentor(QueryRouter(retrievers))
