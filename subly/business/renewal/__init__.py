from subly.business.renewal.policy import RenewalDecision, evaluate_monthly_renewal, monthly_target_date

__all__ = ["RenewalDecision", "evaluate_monthly_renewal", "monthly_target_date"]
