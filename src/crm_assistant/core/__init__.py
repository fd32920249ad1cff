"""
Core data layer.

This package contains:
- snapshot_loader: fetch the CRM record collections into an EntitySnapshot
- entity_matcher: find-first lookups by id and by name, region keyword table
- time_windows: named and "son N gün/hafta/ay" time windows
- text_utils: Turkish-aware normalization and edit distance
- formatters: currency, date and listing text helpers
- llm_client: generative-language REST client
"""
