"""Agent internals -- the conversation core used by run_agent.py.

Module Overview
---------------
This package contains the following components:

**turns.py**
    Turn data model: text vs. structured content, content parts, the cache
    marker helpers, and the durable JSON codec.

**message_store.py**
    Ordered append-only conversation log. Owns the seen-id set and
    reconciles each exchange's batch of turns into the log.

**cache_policy.py**
    Pure cache-breakpoint decisions, the offline marker cleaner, and the
    rendering of turns (and markers) into API messages.

**conversation_identity.py**
    Conversation id / title / file path: creation, resume-time repair of
    malformed ids, and collision-safe renames.

**session_persister.py**
    Full-log JSON writes, log loading, and resume-candidate listing.

**title_generator.py**
    Short conversation titles from the model, with a fixed fallback.

**model_client.py**
    One exchange against an OpenAI-compatible endpoint with a bounded
    tool-calling loop.

**session_coordinator.py**
    The interactive session state machine tying the above together.

Architecture
------------
1. **Pure decisions, owned state**: cache_policy decides, MessageStore
   mutates; counters and seen-id sets live on their owners, never globals.

2. **External calls behind callables**: the coordinator receives its model,
   title and input functions, so every component is testable without a
   network or a terminal.

3. **Failures as data where they are local**: tool and title failures become
   results; only a failed remote call ends the session.
"""
