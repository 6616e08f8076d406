"""Chat agent that manages feed subscriptions through the tools module."""

import json
import logging
import sqlite3

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, SystemMessage, ToolMessage
from langgraph.checkpoint.sqlite import SqliteSaver
from langgraph.graph import END, START, MessagesState, StateGraph

from rssfeed_notifier import tools as feed_tools
from rssfeed_notifier.config import AGENT_MODEL, CHECKPOINT_DB_PATH

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are the RSS Feed Notifier assistant. You manage feed subscriptions that post new items to Discord channels.

You can:
- Subscribe a channel to an RSS or Atom feed, and unsubscribe
- List subscriptions, optionally by category
- Edit a subscription: name, color, mention role, category, keyword filters, rate limit, buttons
- Pause and resume subscriptions
- Deliver through a webhook with a custom name and avatar
- Test a subscription by posting its latest item right away
- Show feed health and posting statistics
- Export and import subscriptions as JSON
- Change server settings: alert channel, alert threshold, default color, buttons
- Clean up subscriptions of a deleted channel
- Find feed URLs for YouTube channels and subreddits

Subscribing needs a feed URL and a channel id. Ask for the channel id if it is missing.
For a YouTube channel or a subreddit, get the feed URL with youtube_feed or reddit_feed first.
Keyword filters are comma-separated. Include keywords need at least one match; exclude keywords reject any match.
Subscriptions are referred to by the numeric id shown by list_subscriptions. Look it up if the user names a feed instead.
When a tool returns an error, pass its message on as it is.
Ask before guessing when a request is ambiguous. Keep answers short."""

TOOLS = [
    feed_tools.subscribe_to_feed,
    feed_tools.list_subscriptions,
    feed_tools.unsubscribe,
    feed_tools.edit_subscription,
    feed_tools.set_webhook,
    feed_tools.pause_subscription,
    feed_tools.resume_subscription,
    feed_tools.test_subscription,
    feed_tools.feed_status,
    feed_tools.feed_stats,
    feed_tools.export_subscriptions,
    feed_tools.import_subscriptions,
    feed_tools.update_settings,
    feed_tools.cleanup_channel,
    feed_tools.youtube_feed,
    feed_tools.reddit_feed,
]


def run_tool_calls(message: AIMessage, tools_by_name: dict) -> list[ToolMessage]:
    """Execute every tool call on an AI message.

    A tool that raises gets an error result instead, so the model can
    report it and the conversation keeps going.
    """
    results = []
    for call in message.tool_calls:
        tool = tools_by_name.get(call["name"])
        if tool is None:
            content = json.dumps({"status": "error", "message": f"Unknown tool {call['name']}"})
        else:
            try:
                content = str(tool.invoke(call["args"]))
            except Exception as e:
                logger.exception("Tool %s failed", call["name"])
                content = json.dumps({"status": "error", "message": str(e)})
        results.append(ToolMessage(content=content, tool_call_id=call["id"]))
    return results


def build_graph(model, tools: list) -> StateGraph:
    """Wire the model and tools into a two-node loop."""
    bound = model.bind_tools(tools) if tools else model
    tools_by_name = {t.name: t for t in tools}

    def call_model(state: MessagesState):
        reply = bound.invoke([SystemMessage(content=SYSTEM_PROMPT), *state["messages"]])
        return {"messages": [reply]}

    def call_tools(state: MessagesState):
        return {"messages": run_tool_calls(state["messages"][-1], tools_by_name)}

    def route(state: MessagesState):
        if getattr(state["messages"][-1], "tool_calls", None):
            return "tools"
        return END

    graph = StateGraph(MessagesState)
    graph.add_node("model", call_model)
    graph.add_node("tools", call_tools)
    graph.add_edge(START, "model")
    graph.add_conditional_edges("model", route, ["tools", END])
    graph.add_edge("tools", "model")
    return graph


def create_agent(
    checkpoint_db_path: str = CHECKPOINT_DB_PATH,
    model_name: str = AGENT_MODEL,
    tools: list | None = None,
):
    """Create the compiled agent, checkpointing conversations to SQLite.

    Args:
        checkpoint_db_path: SQLite file for LangGraph checkpoints.
        model_name: Anthropic chat model to use.
        tools: Tools to expose. Defaults to TOOLS.
    """
    model = ChatAnthropic(model=model_name, temperature=0)
    graph = build_graph(model, TOOLS if tools is None else tools)
    checkpointer = SqliteSaver(sqlite3.connect(checkpoint_db_path, check_same_thread=False))
    return graph.compile(checkpointer=checkpointer)
