"""Business services for team membership and seat billing."""
