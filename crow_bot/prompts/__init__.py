from .templates import PromptBuilder, usable_reply

__all__ = ["PromptBuilder", "usable_reply"]
