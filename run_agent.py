#!/usr/bin/env python3
"""
Interactive Agent Runner

Starts a terminal conversation with the agent: offers to resume one of the
most recent conversation logs (or starts a fresh one), then hands control to
the SessionCoordinator until the user types ``exit``.

Features:
- Resume from the ten most recently modified logs in the logs directory
- Prompt caching: permanent breakpoint on the system prompt, transient one
  on the newest assistant turn
- Automatic titling and file renaming every few user queries
- Local command execution tool for the model

Usage:
    python run_agent.py
    python run_agent.py --model=anthropic/claude-sonnet-4 --logs_dir=conversation-logs
    AGENT_NAME=Nova python run_agent.py --verbose
"""

import logging
from typing import Callable, List, Optional, Sequence

import fire
from openai import OpenAI

from agent.conversation_identity import ConversationIdentity, new_timestamp
from agent.errors import MalformedConversationError
from agent.message_store import MessageStore
from agent.model_client import ModelClient
from agent.session_coordinator import SessionCoordinator
from agent.session_persister import ConversationSummary, SessionPersister
from agent.title_generator import TitleGenerator
from agent.turns import Turn, TurnRole, render_text, system_turn
from luna_cli.config import AgentSettings, load_env, resolve_settings, validate_api_key
from tools import handle_tool_call

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """Hi! I'm {name}, your friendly personal assistant with full computer access!

WHO I AM:
- Your dedicated personal assistant who's always here to help
- I'm friendly, patient, and genuinely care about making your life easier
- I have full access to your computer's terminal and can help with any task

WHAT I CAN DO FOR YOU:
- Handle computer tasks - coding, file management, system operations
- Solve problems step-by-step, explaining everything clearly
- Write, edit, and organize your files and projects
- Automate repetitive tasks to save you time

MY APPROACH:
- I ask clarifying questions if I'm unsure about what you need
- I explain things in simple terms, but can go technical if you want
- I warn you about risky operations and suggest safer approaches
- I'm honest when I don't know something"""

RECAP_TURNS = 4
RECAP_CHARS = 100


def format_candidates(conversations: Sequence[ConversationSummary]) -> List[str]:
    """Rows of the resume selection table."""
    lines = [
        "─" * 80,
        "ID | Last Chat           | Topic / Last Message                | Messages",
        "─" * 80,
    ]
    for conv in conversations:
        modified = conv.last_modified.strftime("%m/%d %H:%M")
        lines.append(
            f"{str(conv.index).rjust(2)} | {modified.ljust(19)} | "
            f"{conv.display_title[:35].ljust(35)} | {conv.message_count}"
        )
    lines.append("─" * 80)
    return lines


def select_conversation(
    persister: SessionPersister,
    input_fn: Callable[[str], str] = input,
    output_fn: Callable[[str], None] = print,
) -> Optional[str]:
    """Offer recent conversations; return the chosen file name or None for fresh."""
    conversations = persister.list_conversations()
    if not conversations:
        output_fn("🌟 This looks like our first time chatting! I'm excited to meet you!\n")
        return None

    output_fn("📚 Here are our previous conversations - which one would you like to continue?")
    for line in format_candidates(conversations):
        output_fn(line)
    output_fn(f"✨ Choose a conversation number (1-{len(conversations)}) to continue, "
              "or press Enter to start fresh:")

    try:
        choice = input_fn("Your choice: ").strip()
    except (EOFError, KeyboardInterrupt):
        return None
    if not choice:
        return None
    for conv in conversations:
        if str(conv.index) == choice:
            return conv.file_name
    output_fn("🤔 Hmm, that doesn't look right. Let's start fresh instead!\n")
    return None


def recap_lines(turns: Sequence[Turn], agent_name: str) -> List[str]:
    """Short "where we left off" view of the last few user/assistant turns."""
    recent = [t for t in turns[-RECAP_TURNS:] if t.role in (TurnRole.USER, TurnRole.ASSISTANT)]
    lines = []
    for turn in recent:
        text = render_text(turn)
        if turn.role == TurnRole.USER:
            lines.append(f"You: {text}")
        else:
            suffix = "..." if len(text) > RECAP_CHARS else ""
            lines.append(f"{agent_name}: {text[:RECAP_CHARS]}{suffix}")
    return lines


def open_conversation(
    settings: AgentSettings,
    identity: ConversationIdentity,
    persister: SessionPersister,
    input_fn: Callable[[str], str] = input,
    output_fn: Callable[[str], None] = print,
):
    """Resume a chosen log or start a new conversation.

    Returns ``(store, record, resumed)``.
    """
    selected = select_conversation(persister, input_fn, output_fn)
    if selected:
        try:
            turns = persister.load_conversation(selected)
        except MalformedConversationError as e:
            logger.warning("Cannot resume %s: %s", selected, e)
            output_fn(f"❌ Could not load {selected}: {e}. Starting fresh instead.\n")
        else:
            record = identity.resolve(selected, new_timestamp())
            output_fn("\n🎉 Great! I'm back to continue our conversation!")
            output_fn(f"📂 I've loaded our {len(turns)} previous messages")
            if record.title:
                output_fn(f"💬 We were talking about: \"{record.title}\"")
            recap = recap_lines(turns, settings.agent_name)
            if recap:
                output_fn("\n🧭 Let me remind you where we left off:")
                output_fn("─" * 50)
                for line in recap:
                    output_fn(line)
                output_fn("─" * 50)
            output_fn("\nType 'exit' to quit\n")
            return MessageStore(turns), record, True

    record = identity.create(new_timestamp())
    store = MessageStore([system_turn(SYSTEM_PROMPT.format(name=settings.agent_name), cached=True)])
    output_fn("🌟 Perfect! Let's start a fresh conversation! What would you like to work on today?\n")
    return store, record, False


def build_session(
    settings: AgentSettings,
    client=None,
    input_fn: Callable[[str], str] = input,
    output_fn: Callable[[str], None] = print,
    show_details: bool = False,
) -> SessionCoordinator:
    """Wire store, identity, persistence and model calls into a coordinator."""
    client = client or OpenAI(base_url=settings.base_url, api_key=settings.api_key)

    identity = ConversationIdentity(settings.logs_dir)
    persister = SessionPersister(logs_dir=settings.logs_dir)
    persister.ensure_logs_dir()

    store, record, resumed = open_conversation(settings, identity, persister, input_fn, output_fn)
    persister.record = record

    def _print_command(name, arguments):
        output_fn(f"\n$ {arguments.get('command', name)}")

    model = ModelClient(
        client,
        settings.model,
        max_steps=settings.max_steps,
        tool_handler=lambda name, args: handle_tool_call(name, args, timeout=settings.command_timeout),
        on_text=output_fn,
        on_tool_call=_print_command,
    )
    titles = TitleGenerator(client, settings.model)

    return SessionCoordinator(
        store=store,
        identity=identity,
        persister=persister,
        generate=model.generate,
        input_fn=input_fn,
        output_fn=output_fn,
        title_fn=titles.generate,
        agent_name=settings.agent_name,
        enable_cache=settings.enable_cache,
        title_interval=settings.title_interval,
        resumed=resumed,
        show_details=show_details,
    )


def main(
    model: str = None,
    base_url: str = None,
    api_key: str = None,
    logs_dir: str = None,
    max_steps: int = None,
    no_cache: bool = False,
    verbose: bool = False,
):
    """
    Start an interactive conversation.

    Args:
        model (str): Model name (OpenRouter format: provider/model).
        base_url (str): Base URL of the OpenAI-compatible endpoint.
        api_key (str): API key. Uses OPENROUTER_API_KEY / ANTHROPIC_API_KEY / OPENAI_API_KEY if not provided.
        logs_dir (str): Directory for conversation logs. Defaults to ./conversation-logs.
        max_steps (int): Maximum model calls per exchange before asking to continue. Defaults to 5.
        no_cache (bool): Disable prompt-cache breakpoints.
        verbose (bool): Enable debug logging and per-exchange details.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    load_env()

    settings = resolve_settings({
        "model": model,
        "base_url": base_url,
        "api_key": api_key,
        "logs_dir": logs_dir,
        "max_steps": max_steps,
        "enable_cache": False if no_cache else None,
    })

    ok, message = validate_api_key(settings)
    if not ok:
        print(f"❌ {message}")
        print("Make sure to set OPENROUTER_API_KEY in your .env file")
        return

    print(f"✨ Hi there! I'm {settings.agent_name}, your personal assistant! Ready to help you with anything! 💫\n")
    coordinator = build_session(settings, show_details=verbose)
    coordinator.run()


def run():
    fire.Fire(main)


if __name__ == "__main__":
    run()
