from stepwise_core.retrieval.service import Match, RetrievalService
from stepwise_core.retrieval.similarity import cosine_similarities, cosine_similarity

__all__ = ["Match", "RetrievalService", "cosine_similarities", "cosine_similarity"]
