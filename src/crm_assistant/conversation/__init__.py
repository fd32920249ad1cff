"""
Conversational layer.

This package contains:
- types: shared data structures (Message, Resolution, ConversationState, ...)
- relevance: in-domain check for incoming messages
- resolver_base, detail_resolvers, listing_resolvers, counting_resolver:
  the intent resolvers
- cascade: runs the resolvers in priority order
- prompt_composer: model prompts, chat modes and analysis payloads
- structure_detector: recover tables from model output
- orchestrator: main "brain" used by the UI to handle each message
"""
