"""
Run DingTalk Stream connections for the configured accounts.

Usage:
    python -m dtbridge.ports.dingtalk --dispatcher <module:attr> [--config PATH] [--account ID ...]
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import inspect
import logging
import signal
from pathlib import Path
from typing import Any, List, Optional

from ...kernel.errors import ConfigError
from ...kernel.settings import list_account_ids, load_config
from ...util.obslog import setup_root_json_logging
from .channel import DingTalkChannel
from .inbound import CallableDispatcher, Dispatcher

logger = logging.getLogger("dtbridge.main")


def load_dispatcher(spec: str) -> Dispatcher:
    """Resolve `module:attr` to a Dispatcher (instance, subclass or async function)."""
    module_name, _, attr = (spec or "").partition(":")
    if not module_name or not attr:
        raise ConfigError(f"Invalid dispatcher spec {spec!r}; expected module:attr")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import dispatcher module {module_name}: {e}") from e
    target: Any = getattr(module, attr, None)
    if target is None:
        raise ConfigError(f"Dispatcher {attr} not found in {module_name}")
    if isinstance(target, Dispatcher):
        return target
    if inspect.isclass(target) and issubclass(target, Dispatcher):
        return target()
    if inspect.iscoroutinefunction(target):
        return CallableDispatcher(target)
    raise ConfigError(f"Dispatcher {spec} is not a Dispatcher or async function")


async def run(channel: DingTalkChannel, account_ids: List[str]) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    started = 0
    try:
        for account_id in account_ids:
            try:
                await channel.start_account(account_id)
                started += 1
            except ConfigError as e:
                logger.error("[dingtalk:%s] Start failed: %s", account_id, e, extra={"account_id": account_id})
        if not started:
            logger.error("No DingTalk account started")
            return 1
        logger.info("DingTalk bridge running for %d account(s)", started)
        await stop.wait()
        return 0
    finally:
        await channel.aclose()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="python -m dtbridge.ports.dingtalk")
    parser.add_argument("--dispatcher", required=True, help="host dispatcher as module:attr")
    parser.add_argument("--config", type=Path, default=None, help="config.yaml path")
    parser.add_argument("--account", action="append", default=[], help="account id (repeatable)")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)

    setup_root_json_logging(component="dtbridge", level=args.log_level)

    try:
        config = load_config(args.config)
        dispatcher = load_dispatcher(args.dispatcher)
    except ConfigError as e:
        print(f"[error] {e}")
        return 1

    account_ids = list(args.account) or list_account_ids(config)
    if not account_ids:
        print("[error] No DingTalk accounts configured")
        return 1

    async def _main() -> int:
        return await run(DingTalkChannel(config, dispatcher), account_ids)

    return asyncio.run(_main())


if __name__ == "__main__":
    raise SystemExit(main())
