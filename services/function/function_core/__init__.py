from .agent import Agent, Invoker
from .input import Prompt
from .service import Function, PipelineDetails, create_function_from_env

__all__ = [
    "Agent",
    "Invoker",
    "Prompt",
    "Function",
    "PipelineDetails",
    "create_function_from_env",
]
