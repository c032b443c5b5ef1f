# Vangraph: project board with drag-and-drop ordering, sprints, specs and sign-off gates
#
# Components:
#   schema.py      - Data model (Issue, Project, Sprint, Spec, GovernanceGate, Profile)
#   positions.py   - Fractional position allocator and column rebalancing
#   reorder.py     - Optimistic drag-and-drop moves with rollback
#   store.py       - Storage backends (in-memory, SQLite)
#   issues.py      - Issue CRUD, filters and board grouping
#   projects.py    - Projects and headline stats
#   sprints.py     - Sprint lifecycle and burndown
#   analytics.py   - Velocity, status mix and recent activity
#   specs.py       - Versioned issue specs and approval
#   governance.py  - Human sign-off gates
#   profiles.py    - User settings
#   events.py      - In-process board event bus
#   config.py      - YAML / environment configuration
