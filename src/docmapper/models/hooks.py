"""Lifecycle hooks.

Hooks are plain or async callables attached to a stage. Methods are marked
with ``@hook(...)`` inside the class body; standalone functions can be
attached with ``Document.add_hook``. Instance stages call ``hook(document,
*args)``; ``pre_fetch`` calls ``hook(document_cls, query)``.

    class User(Document):
        @hook(HookStage.PRE_SAVE)
        async def stamp(self) -> None:
            ...
"""

import asyncio
import inspect
from collections.abc import Iterable
from typing import Any, Awaitable, Callable

from docmapper.models.enums import HookStage

Hook = Callable[..., Awaitable[Any] | Any]

HOOK_ATTR = "__docmapper_hooks__"


def hook(*stages: HookStage | str) -> Callable[[Hook], Hook]:
    """Mark a method as a hook for one or more stages."""
    resolved = tuple(HookStage(stage) for stage in stages)
    if not resolved:
        raise TypeError("hook() requires at least one stage")

    def decorator(fn: Hook) -> Hook:
        target = getattr(fn, "__func__", fn)
        setattr(target, HOOK_ATTR, getattr(target, HOOK_ATTR, ()) + resolved)
        return fn

    return decorator


def collect_hooks(mro: Iterable[type]) -> dict[HookStage, list[Hook]]:
    """Collect decorated hooks across a class hierarchy, base classes first.

    A subclass attribute with the same name replaces the inherited hook; if
    the replacement is not decorated, the hook is dropped.
    """
    by_name: dict[str, tuple[Hook, tuple[HookStage, ...]]] = {}
    for klass in mro:
        for name, member in vars(klass).items():
            fn = getattr(member, "__func__", member)
            stages = getattr(fn, HOOK_ATTR, None) if callable(fn) else None
            if stages:
                by_name[name] = (fn, stages)
            elif name in by_name:
                del by_name[name]

    hooks: dict[HookStage, list[Hook]] = {stage: [] for stage in HookStage}
    for fn, stages in by_name.values():
        for stage in stages:
            hooks[stage].append(fn)
    return hooks


async def run_stage(hooks: Iterable[Hook], target: Any, *args: Any) -> None:
    """Run every hook of a stage concurrently and wait for all of them.

    The first hook to raise fails the stage.
    """
    pending = [_invoke(fn, target, *args) for fn in hooks]
    if pending:
        await asyncio.gather(*pending)


async def _invoke(fn: Hook, target: Any, *args: Any) -> None:
    result = fn(target, *args)
    if inspect.isawaitable(result):
        await result
