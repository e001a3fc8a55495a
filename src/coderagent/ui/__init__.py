from .plan_dialog import PLAN_OPTIONS, PlanApprovalModal, PlanDecision, PlanReviewApp, read_plan

__all__ = ["PLAN_OPTIONS", "PlanApprovalModal", "PlanDecision", "PlanReviewApp", "read_plan"]
