"""Entry point for RSS Feed Notifier: python -m rssfeed_notifier"""

import asyncio
import logging
import uuid

from langchain_core.messages import HumanMessage

from rssfeed_notifier.agent import create_agent
from rssfeed_notifier.checker import FeedChecker
from rssfeed_notifier.config import Config, load_config
from rssfeed_notifier.database import Database
from rssfeed_notifier.dispatcher import Dispatcher, DiscordSink
from rssfeed_notifier.poller import FeedPoller
from rssfeed_notifier.tools import set_context

logger = logging.getLogger("rssfeed_notifier")

_NOISY_LOGGERS = ("httpx", "urllib3", "langchain", "anthropic")


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def new_thread() -> dict:
    return {"configurable": {"thread_id": uuid.uuid4().hex}}


async def ask(agent, text: str, thread: dict) -> str:
    """Send one message to the agent and return its reply text."""
    state = await asyncio.to_thread(
        agent.invoke, {"messages": [HumanMessage(content=text)]}, thread
    )
    return state["messages"][-1].content


async def chat_loop(agent) -> None:
    """Read operator messages from stdin until EOF."""
    print("RSS Feed Notifier is running. Ask me to manage feeds (Ctrl+D to quit).\n")
    thread = new_thread()

    while True:
        try:
            text = await asyncio.to_thread(input, "> ")
        except EOFError:
            break
        if not text.strip():
            continue

        try:
            reply = await ask(agent, text, thread)
        except Exception as e:
            logger.error("Agent call failed: %s", e)
            # A dangling tool call in the checkpoint poisons the thread
            if "tool_use" in str(e) and "tool_result" in str(e):
                thread = new_thread()
                print("\nConversation state was broken, starting a new one. Please repeat that.\n")
            else:
                print(f"\nError: {e}\n")
            continue
        print(f"\n{reply}\n")


async def main(cfg: Config | None = None) -> None:
    """Start the poller and the operator chat, and shut both down cleanly."""
    cfg = cfg or load_config()
    setup_logging(cfg.log_level)

    db = Database(cfg.db_path)
    db.connect()

    if not cfg.discord_token:
        logger.warning("DISCORD_TOKEN is not set; only webhook subscriptions can be delivered")

    sink = DiscordSink(bot_token=cfg.discord_token, timeout=cfg.feed_timeout)
    checker = FeedChecker(db, Dispatcher(sink), feed_timeout=cfg.feed_timeout)
    set_context(db, checker, cfg.guild_id)

    poller = FeedPoller(
        checker,
        db,
        interval=cfg.poll_interval,
        retention_days=cfg.history_retention_days,
        cleanup_interval=cfg.cleanup_interval,
    )

    agent = create_agent(checkpoint_db_path=cfg.checkpoint_path, model_name=cfg.agent_model)
    await poller.start()

    try:
        await chat_loop(agent)
    finally:
        logger.info("Shutting down")
        if await poller.stop(timeout=cfg.shutdown_timeout):
            db.close()
        else:
            # the abandoned cycle still uses the connection
            logger.warning("Leaving database open for the unfinished feed check")


def run() -> None:
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nGoodbye!")


if __name__ == "__main__":
    run()
