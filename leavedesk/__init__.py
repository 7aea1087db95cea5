"""LeaveDesk: leave balances, approvals, comp-off and year-end settlement."""
