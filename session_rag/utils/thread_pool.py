import asyncio
import functools
from concurrent.futures import ThreadPoolExecutor

IO_POOL_VAL = ThreadPoolExecutor(max_workers=16)


def run_sync(func, *args, **kwargs):
    """
    Run blocking / CPU-heavy / IO-heavy code off the current event loop.
    This is crucial for:
    - FAISS search / insert / scan
    - Redis round trips (sync client)
    - Google embedding calls (LangChain)
    - PDF / web extraction
    """
    loop = asyncio.get_running_loop()
    return loop.run_in_executor(IO_POOL_VAL, functools.partial(func, *args, **kwargs))
