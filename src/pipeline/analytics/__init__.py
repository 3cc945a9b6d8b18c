"""Pipeline analytics -- the proposal conversion funnel and its report."""
