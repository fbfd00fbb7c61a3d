"""Case state gate for billing workflows.

A pure function of the case and the requested workflow:

- any workflow against an Archived case is rejected;
- only insurer-linked cases are billed;
- a fixed-fee invoice needs the case Open or InLitigation;
- a mileage claim needs the case InLitigation, since only then is a
  court district assigned.
"""

from lexbill.core.exceptions import WorkflowRejectedError
from lexbill.models.domain import Case, CaseKind, CaseState, GateDecision, WorkflowKind

_ALLOWED_STATES: dict[WorkflowKind, frozenset[CaseState]] = {
    WorkflowKind.FIXED_FEE_INVOICE: frozenset({CaseState.OPEN, CaseState.IN_LITIGATION}),
    WorkflowKind.MILEAGE_CLAIM: frozenset({CaseState.IN_LITIGATION}),
}


def authorize(case: Case, workflow: WorkflowKind) -> GateDecision:
    """Decide whether ``workflow`` may run against ``case``."""
    if case.state == CaseState.ARCHIVED:
        return GateDecision(allowed=False, reason="Archived cases cannot generate documents")
    if case.kind != CaseKind.INSURER_LINKED:
        return GateDecision(
            allowed=False,
            reason=(
                "Billing documents are only issued for insurer-linked cases, "
                f"not {case.kind.value}"
            ),
        )
    if case.state not in _ALLOWED_STATES[workflow]:
        return GateDecision(
            allowed=False,
            reason=f"Workflow {workflow.value} is not allowed in state {case.state.value}",
        )
    return GateDecision(allowed=True)


def ensure_authorized(case: Case, workflow: WorkflowKind) -> None:
    """Raise WorkflowRejectedError when the gate refuses ``workflow``."""
    decision = authorize(case, workflow)
    if not decision.allowed:
        raise WorkflowRejectedError(
            decision.reason or "Workflow rejected",
            details={
                "case_id": case.id,
                "workflow": workflow.value,
                "state": case.state.value,
                "kind": case.kind.value,
            },
        )
