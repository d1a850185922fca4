"""
Email Analysis Pipeline.

Runs synced emails through a set of AI analyzers and persists the result:
- Categorizes, extracts actions and matches clients in parallel
- Detects events when the email is categorized as an event
- Saves the aggregated analysis and its side effects (actions, category, client link)
- Processes many emails in paced, concurrent batches
"""
