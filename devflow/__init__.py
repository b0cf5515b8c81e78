# DevFlow: kanban task tracking with snippets, reviews, prompts and AI helpers
#
# Components:
#   schema.py        - Records and closed enums (Task, Project, Snippet, ...)
#   board.py         - Column projection and the drag-and-drop state machine
#   reducer.py       - Single definition of a status change, local + persisted
#   store.py         - SQLite persistence layer
#   filters.py       - Task/snippet filtering and sorting, today view
#   llm.py           - Chat-completions client
#   assistant.py     - AI chat, task assistant, estimator, productivity insights
#   analytics.py     - Completion records, goals, productivity metrics
#   github_import.py - Repository import via the GitHub REST API
#   config.py        - YAML + environment configuration
