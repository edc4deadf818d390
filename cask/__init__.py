from cask.cask_datatypes import (
    Mode, CompletenessStatus, Value, Error, NoMoreCode, StateChange,
    Page, SetNextInput, Quit, CasError, AbortEvaluation,
)
from cask.cask_runtime import Evaluator, evaluate_block, probe_completeness, enqueue_input
from cask.cask_dispatch import KernelTransport, RecordingTransport, ResultDispatcher
from cask.cask_interpreter import Interpreter
from cask.cask_config import KernelConfig, load_config

__all__ = [
    "Mode", "CompletenessStatus", "Value", "Error", "NoMoreCode", "StateChange",
    "Page", "SetNextInput", "Quit", "CasError", "AbortEvaluation",
    "Evaluator", "evaluate_block", "probe_completeness", "enqueue_input",
    "KernelTransport", "RecordingTransport", "ResultDispatcher",
    "Interpreter", "KernelConfig", "load_config",
]
