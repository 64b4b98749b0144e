__all__ = [
    "models",
    "errors",
    "response",
    "resource_codec",
    "llm_provider",
    "logging",
]
