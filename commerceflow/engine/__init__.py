"""Flow engine: template resolution, conditions, graph analysis and execution."""

from .code_executor import CodeExecutor, CodeResult
from .conditions import CompiledCondition, ConditionError, compile_condition
from .executor import FlowExecutor, execute_and_wait, run_flow_sync
from .graph import ValidationIssue, available_variables, ensure_valid, topological_order, upstream_node_ids, validate_flow
from .operations import OPERATIONS, OperationContext, OperationSpec
from .variables import ExecutionContext, interpolate, resolve

__all__ = [
    "CodeExecutor",
    "CodeResult",
    "CompiledCondition",
    "ConditionError",
    "ExecutionContext",
    "FlowExecutor",
    "OPERATIONS",
    "OperationContext",
    "OperationSpec",
    "ValidationIssue",
    "available_variables",
    "compile_condition",
    "execute_and_wait",
    "ensure_valid",
    "interpolate",
    "resolve",
    "run_flow_sync",
    "topological_order",
    "upstream_node_ids",
    "validate_flow",
]
