"""Coffee recommendation chatbot service.

Main components:
- orchestrator.py: request pipeline (cache -> budget -> classify -> retrieve -> rank)
- intent_classifier.py / ranking.py: the two reasoning-service stages
- retrieval/: tiered graph retrieval and result shaping
- graph/: graph query executor interface and in-memory catalog
- main.py: FastAPI application
"""

# Keep package import free of side effects (no app construction here).
__all__ = []
