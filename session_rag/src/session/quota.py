from session_rag.exception.custom_exception import QuotaExhausted
from session_rag.logger import GLOBAL_LOGGER as log
from session_rag.redis_cache.redis_client import QUOTA_EXHAUSTED, SessionStore
from session_rag.utils.thread_pool import run_sync


class QuotaManager:
    """
    Gates generation behind a per-session question budget.

    The check and the decrement are one store operation, so concurrent
    questions for the same session can never both spend the last unit and
    the counter never goes below zero.
    """

    def __init__(self, store: SessionStore):
        self.store = store

    async def check_and_consume(self, session_id: str) -> int:
        """
        Spend one unit and return what is left.
        Raises QuotaExhausted (remaining=0) when the budget is used up.
        """
        remaining = await run_sync(self.store.consume_token, session_id)

        if remaining == QUOTA_EXHAUSTED:
            log.warning("Quota exhausted", session_id=session_id)
            raise QuotaExhausted(session_id)

        log.info("Quota consumed | session_id=%s | remaining=%d", session_id, remaining)
        return remaining

    async def remaining(self, session_id: str) -> int:
        return await run_sync(self.store.get_tokens, session_id)

    async def reset(self, session_id: str) -> int:
        """Administrative reset back to the default budget."""
        await run_sync(self.store.reset_tokens, session_id)
        log.info("Quota reset", session_id=session_id, tokens=self.store.default_tokens)
        return self.store.default_tokens
