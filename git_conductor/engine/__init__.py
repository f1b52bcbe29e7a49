"""Workflow composition and execution engine.

Key Components:
    - WorkflowContext / State / Checkpoint: per-execution context with append-only history
    - WorkflowStep variants: AnalysisStep, RefactoringStep, TestingStep, DocumentationStep
    - WorkflowBuilder / ComposedWorkflow: ordered, conditional and parallel composition
    - SequentialExecutionEngine: timeouts, rollback, resource cap
    - Execution strategies: optimized (caching), batch, smart (history-based reordering)
    - AutomationManager / GATE_POLICY: automation level resolution and gating

Example:
    >>> from git_conductor.engine import SequentialExecutionEngine, WorkflowBuilder
    >>> workflow = WorkflowBuilder("docs").add_step(step).build()
    >>> result = await SequentialExecutionEngine().execute(workflow, context)
"""

from git_conductor.engine.automation import GATE_POLICY, AutomationManager, ConfidenceSignals, GatePolicy
from git_conductor.engine.builder import ComposedWorkflow, WorkflowBuilder
from git_conductor.engine.context import Checkpoint, State, WorkflowContext
from git_conductor.engine.execution import SequentialExecutionEngine
from git_conductor.engine.queue import ExecutionQueue, ResourceManager
from git_conductor.engine.steps import (
    AnalysisStep,
    DocumentationStep,
    RefactoringStep,
    StepPriority,
    TestingStep,
    WorkflowStep,
)
from git_conductor.engine.strategies import (
    BatchSequentialStrategy,
    ExecutionStrategy,
    OptimizedSequentialStrategy,
    SmartSequentialStrategy,
    StepHistory,
    get_execution_strategy,
    register_strategy,
)

__all__ = [
    "GATE_POLICY",
    "AnalysisStep",
    "AutomationManager",
    "BatchSequentialStrategy",
    "Checkpoint",
    "ComposedWorkflow",
    "ConfidenceSignals",
    "DocumentationStep",
    "ExecutionQueue",
    "ExecutionStrategy",
    "GatePolicy",
    "OptimizedSequentialStrategy",
    "RefactoringStep",
    "ResourceManager",
    "SequentialExecutionEngine",
    "SmartSequentialStrategy",
    "State",
    "StepHistory",
    "StepPriority",
    "TestingStep",
    "WorkflowBuilder",
    "WorkflowContext",
    "WorkflowStep",
    "get_execution_strategy",
    "register_strategy",
]
