"""sublate: LLM batch translation for subtitle projects."""

__version__ = "0.1.0"
