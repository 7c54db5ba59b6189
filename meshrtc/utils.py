import asyncio
import inspect
from collections.abc import Iterable
from typing import Any, Awaitable, Callable, TypeVar

I = TypeVar('I')
O = TypeVar('O')
R = TypeVar('R')

def remove_none_value(input: I, recursion: bool = False, check_circular: bool = True, ref_set: set[int] | None = None) -> I:
    if check_circular:
        ref_set = ref_set if ref_set is not None else set()
        if id(input) in ref_set:
            return input
        ref_set.add(id(input))
    if isinstance(input, dict):
        keys = list(input.keys())
        for k in keys:
            v = input[k]
            if v is None:
                del input[k]
            elif recursion:
                remove_none_value(v, recursion=recursion, check_circular=check_circular, ref_set=ref_set)
    elif isinstance(input, Iterable) and not isinstance(input, (str, bytes)):
        for e in input:
            remove_none_value(e, recursion=recursion, check_circular=check_circular, ref_set=ref_set)

    return input

def chain_future(
    future: asyncio.Future[I],
    then: Callable[[I], O] | Callable[[I], Awaitable[O]] | None = None,
    catch: Callable[[BaseException], Any] | Callable[[BaseException], Awaitable] | None = None
) -> asyncio.Future[O]:
    result = asyncio.Future(loop=future.get_loop())
    def callback(f: asyncio.Future[I]):
        if result.done():
            return
        if f.cancelled():
            result.cancel()
            return
        e = f.exception()
        if e is None:
            if then is not None:
                out = then(f.result())
                if inspect.isawaitable(out):
                    f_out = asyncio.ensure_future(out)
                    link_future(result, f_out)
                else:
                    result.set_result(out)
            else:
                result.set_result(f.result())
        else:
            if catch is not None:
                out = catch(e)
                if inspect.isawaitable(out):
                    f_out = asyncio.ensure_future(out)
                    link_future(result, f_out)
                else:
                    result.set_result(out)
            else:
                result.set_exception(e)
    future.add_done_callback(callback)
    return result

def link_future(this_future: asyncio.Future[I], target_future: asyncio.Future[I]) -> None:
    def on_done(f: asyncio.Future):
        if this_future.done():
            return
        if f.cancelled():
            this_future.cancel()
        else:
            e = f.exception()
            if e:
                this_future.set_exception(e)
            else:
                this_future.set_result(f.result())
    target_future.add_done_callback(on_done)

def resolved_future(value: Any = None) -> asyncio.Future:
    future = asyncio.get_running_loop().create_future()
    future.set_result(value)
    return future

def ensure_future(callback: Callable[..., R] | Callable[..., Awaitable[R]], *args, loop: asyncio.AbstractEventLoop | None = None, **kwargs) -> asyncio.Future[R]:
    """
    Invoke a callback that may be either plain or a coroutine function and
    always hand back a future. aiortc exposes some primitives synchronously
    (``RTCRtpSender.replaceTrack``) where other runtimes return awaitables.
    """
    exc = None
    try:
        res = callback(*args, **kwargs)
    except Exception as e:
        res = None
        exc = e
    if exc is None and inspect.isawaitable(res):
        future = asyncio.ensure_future(res, loop=loop)
    else:
        future = asyncio.Future(loop=loop or asyncio.get_running_loop())
        if exc is None:
            future.set_result(res)
        else:
            future.set_exception(exc)
    return future
