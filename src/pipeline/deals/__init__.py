"""Deal pipeline -- stage model, kanban transitions and the stage workflow.

Provides the canonical Stage enum and alias resolution, pure board-move
helpers, the SQLAlchemy deal table, DealRepository for async CRUD and
DealStageService, which persists stage changes before queuing deal events.
"""
