from .gemini import GeminiError, GroundedAnswer, generate_grounded_answer

__all__ = ["GeminiError", "GroundedAnswer", "generate_grounded_answer"]
