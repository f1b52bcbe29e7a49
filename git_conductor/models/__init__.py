"""Domain models for the workflow engine.

Key Models:
    - Task: Immutable development task handed to the engine
    - StepResult: Outcome of a single workflow step
    - BranchResult / PullRequestResult / ReviewResult / MergeResult: Git stage results
    - AuditRecord: Immutable audit trail entry
    - GitWorkflowResult: User-visible outcome of a whole workflow
    - AnalysisReport: Validated analyzer output (pydantic)

Example:
    >>> from git_conductor.models.domain import Task
    >>> task = Task(id="abc12345", type="feature", title="Add export")
"""
