"""HookRelay - event-driven webhook dispatch."""
