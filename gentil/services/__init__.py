from .gamification_service import GamificationService, record_contribution

__all__ = ["GamificationService", "record_contribution"]
