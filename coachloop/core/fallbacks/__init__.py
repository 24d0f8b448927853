from coachloop.core.fallbacks.advice_fallback import fallback_title, generate_fallback_advice

__all__ = ["fallback_title", "generate_fallback_advice"]
