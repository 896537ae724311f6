"""
OneLine Services Package - timeline generation on top of a chat-completions upstream.

Core Services:
- timeline_orchestrator: Request orchestration (config resolution, grounding, modes)
- stream_relay: Upstream connection lifecycle, retries and streaming delivery
- sse_decoder: Incremental UTF-8 and event-stream line decoding
- timeline_parser: Tolerant parser for the sectioned timeline text format
- event_diff: Newly closed events and summary changes between parses
- search_grounding: SearXNG search results as grounding context
- process_callback: Progress tracking for long operations
"""
